from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from impfrust.domain.models import Snapshot

"""
In-process result cache.

Holds the latest published `Snapshot`. Publishing swaps one reference to a frozen
value, so readers:
- never take a lock and never wait on an in-flight refresh,
- always see either the previous or the new snapshot, never a mix.

A failed refresh simply does not publish; the last good snapshot keeps being served
(stale-but-available).
"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    """Publish counters (swapped wholesale, like the snapshot itself)."""

    publishes: int = 0
    rejected: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"publishes": int(self.publishes), "rejected": int(self.rejected)}


class ResultCache:
    """Single-writer / multi-reader cell for the current snapshot."""

    def __init__(self) -> None:
        self._snapshot: Snapshot | None = None
        self._stats = CacheStats()
        # Serializes writers only; `read()` never touches it.
        self._write_lock = threading.Lock()

    def publish(self, snapshot: Snapshot) -> bool:
        """Replace the current snapshot; returns False if `snapshot` is older than it."""
        with self._write_lock:
            current = self._snapshot
            if current is not None and snapshot.generation < current.generation:
                logger.warning(
                    "Rejected out-of-order snapshot generation=%s (current=%s)",
                    snapshot.generation,
                    current.generation,
                )
                self._stats = CacheStats(publishes=self._stats.publishes, rejected=self._stats.rejected + 1)
                return False
            self._snapshot = snapshot
            self._stats = CacheStats(publishes=self._stats.publishes + 1, rejected=self._stats.rejected)
            return True

    def read(self) -> Snapshot | None:
        """Return the latest snapshot, or None before the first successful refresh."""
        return self._snapshot

    @property
    def initialized(self) -> bool:
        return self._snapshot is not None

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def age_seconds(self, now: float | None = None) -> float | None:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        current = time.time() if now is None else now
        return max(0.0, current - snapshot.generated_at_unix)

    def is_stale(self, max_age_seconds: float, now: float | None = None) -> bool:
        """True if nothing was published yet or the snapshot is older than `max_age_seconds`."""
        age = self.age_seconds(now)
        return age is None or age > max_age_seconds
