"""Detect records that were not present in the previously seen snapshot."""

from __future__ import annotations

import threading

from impfrust.domain.models import AvailabilityRecord, Snapshot


class NewSlotTracker:
    """Remembers the ids of the last snapshot only.

    An id that disappears and later comes back is reported again, because a slot that
    was booked and then freed up is news to whoever is waiting for it.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def diff(self, snapshot: Snapshot) -> list[AvailabilityRecord]:
        with self._lock:
            fresh = [r for r in snapshot.records if r.id not in self._seen]
            self._seen = snapshot.ids()
        return fresh
