"""
Polling scheduler.

Drives the upstream client with a three-state machine:

    IDLE --timer--> FETCHING --success--> IDLE
                        |  ^
                 failure|  |retry timer
                        v  |
                      BACKOFF

- `tick()` performs one complete transition synchronously and returns the delay until
  the next tick, which keeps the state machine testable without threads or sleeps.
- `start()` runs ticks in a single daemon thread; it is the only writer of the
  `ResultCache`.
- Stats are frozen values swapped wholesale, so `/api/status` readers never wait on
  a fetch in flight.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Sequence

from impfrust.config.settings import PollerSettings
from impfrust.core.cache import ResultCache
from impfrust.core.geo import SearchArea, filter_records
from impfrust.domain.models import Snapshot
from impfrust.ingestion.upstream import FailureKind, FetchFailure, FetchOutcome, FetchSuccess, UpstreamClient

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class TickReport:
    """Observable result of exactly one tick."""

    tick: int
    started_at_unix: float
    duration_ms: int
    outcome: str
    records_seen: int
    records_accepted: int
    state_after: SchedulerState
    delay_seconds: float
    error: str | None = None


@dataclass(frozen=True)
class SchedulerStats:
    state: SchedulerState = SchedulerState.IDLE
    ticks: int = 0
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    backoff_seconds: float = 0.0
    next_delay_seconds: float | None = None
    last_success_at_unix: float | None = None
    last_failure_at_unix: float | None = None
    last_error: dict[str, str] | None = None
    history: tuple[TickReport, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["state"] = self.state.value
        out["history"] = [{**asdict(r), "state_after": r.state_after.value} for r in self.history]
        return out


class PollingScheduler:
    """Periodic fetch -> geofilter -> publish loop with exponential backoff."""

    def __init__(
        self,
        *,
        client: UpstreamClient,
        cache: ResultCache,
        area: SearchArea,
        settings: PollerSettings,
        listeners: Sequence[SnapshotListener] = (),
    ):
        self._client = client
        self._cache = cache
        self._area = area
        self._settings = settings
        self._listeners = list(listeners)
        self._history: deque[TickReport] = deque(maxlen=int(settings.history_size))
        self._generation = 0
        self._stats = SchedulerStats(backoff_seconds=float(settings.backoff_base_seconds))
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._thread_lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        return self._stats.state

    def stats(self) -> SchedulerStats:
        return self._stats

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def backoff_for(self, consecutive_failures: int) -> float:
        """Backoff after `consecutive_failures` failures in a row: base, 2x base, 4x base, ... capped."""
        base = float(self._settings.backoff_base_seconds)
        cap = float(self._settings.backoff_max_seconds)
        if consecutive_failures <= 0:
            return base
        # Clamp the exponent; 2**n overflows float math long before anyone waits that long.
        return min(cap, base * (2 ** min(consecutive_failures - 1, 62)))

    def _in_quiet_hours(self, now_unix: float) -> bool:
        quiet = self._settings.quiet_hours
        if not quiet.enabled:
            return False
        hour = datetime.fromtimestamp(now_unix, tz=timezone.utc).hour
        if quiet.start_hour <= quiet.end_hour:
            return quiet.start_hour <= hour <= quiet.end_hour
        return hour >= quiet.start_hour or hour <= quiet.end_hour

    def normal_interval(self, now_unix: float | None = None) -> float:
        """Delay after a success: fixed interval plus optional jitter (slower in quiet hours)."""
        now_unix = time.time() if now_unix is None else now_unix
        if self._in_quiet_hours(now_unix):
            quiet = self._settings.quiet_hours
            interval, jitter = float(quiet.interval_seconds), float(quiet.interval_jitter_seconds)
        else:
            interval = float(self._settings.interval_seconds)
            jitter = float(self._settings.interval_jitter_seconds)
        return interval + (random.uniform(0, jitter) if jitter > 0 else 0.0)

    def _fetch(self) -> FetchOutcome:
        try:
            return self._client.fetch()
        except Exception as exc:
            logger.exception("Upstream client raised instead of returning a failure outcome")
            return FetchFailure(FailureKind.UNREACHABLE, f"{type(exc).__name__}: {exc}")

    def _notify(self, snapshot: Snapshot) -> None:
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)

    def _build_snapshot(self, outcome: FetchSuccess, now: float) -> Snapshot:
        accepted = filter_records(outcome.records, self._area)
        snapshot = Snapshot(
            records=tuple(accepted),
            generated_at_unix=now,
            generation=self._generation + 1,
            records_seen=len(outcome.records),
        )
        self._generation = snapshot.generation
        return snapshot

    def tick(self) -> float:
        """Run one fetch and state transition; returns seconds until the next tick."""
        stats = self._stats
        tick_no = stats.ticks + 1
        started = time.time()
        t0 = time.monotonic()
        self._stats = replace(stats, state=SchedulerState.FETCHING)

        outcome = self._fetch()
        now = time.time()

        snapshot: Snapshot | None = None
        if isinstance(outcome, FetchSuccess):
            try:
                snapshot = self._build_snapshot(outcome, now)
            except Exception as exc:
                logger.exception("Could not build a snapshot from the upstream records")
                outcome = FetchFailure(FailureKind.MALFORMED_RESPONSE, f"{type(exc).__name__}: {exc}")
        elif not isinstance(outcome, FetchFailure):
            outcome = FetchFailure(
                FailureKind.MALFORMED_RESPONSE, f"unexpected fetch outcome {type(outcome).__name__}"
            )
        duration_ms = int((time.monotonic() - t0) * 1000)

        if snapshot is None:
            failures_in_row = stats.consecutive_failures + 1
            backoff = self.backoff_for(failures_in_row)
            delay = backoff
            if outcome.retry_after_seconds is not None:
                delay = min(float(self._settings.backoff_max_seconds), max(delay, outcome.retry_after_seconds))
            logger.warning(
                "Upstream fetch failed kind=%s (%s); retrying in %.2fs (consecutive failures: %s)",
                outcome.kind.value,
                outcome.message,
                delay,
                failures_in_row,
            )
            report = TickReport(
                tick=tick_no,
                started_at_unix=started,
                duration_ms=duration_ms,
                outcome=outcome.kind.value,
                records_seen=0,
                records_accepted=0,
                state_after=SchedulerState.BACKOFF,
                delay_seconds=delay,
                error=outcome.message or None,
            )
            self._history.append(report)
            self._stats = replace(
                stats,
                state=SchedulerState.BACKOFF,
                ticks=tick_no,
                failures=stats.failures + 1,
                consecutive_failures=failures_in_row,
                backoff_seconds=backoff,
                next_delay_seconds=delay,
                last_failure_at_unix=now,
                last_error={"kind": outcome.kind.value, "message": outcome.message},
                history=tuple(self._history),
            )
            return delay

        self._cache.publish(snapshot)
        delay = self.normal_interval(now)
        logger.info(
            "Published snapshot generation=%s accepted=%s seen=%s; next fetch in %.0fs",
            snapshot.generation,
            len(snapshot),
            snapshot.records_seen,
            delay,
        )
        report = TickReport(
            tick=tick_no,
            started_at_unix=started,
            duration_ms=duration_ms,
            outcome="success",
            records_seen=snapshot.records_seen,
            records_accepted=len(snapshot),
            state_after=SchedulerState.IDLE,
            delay_seconds=delay,
        )
        self._history.append(report)
        self._stats = replace(
            stats,
            state=SchedulerState.IDLE,
            ticks=tick_no,
            successes=stats.successes + 1,
            consecutive_failures=0,
            backoff_seconds=self.backoff_for(0),
            next_delay_seconds=delay,
            last_success_at_unix=now,
            history=tuple(self._history),
        )
        self._notify(snapshot)
        return delay

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        """Tick until `stop()` is called; the first fetch happens immediately."""
        stop_event = self._stop if stop_event is None else stop_event
        logger.info(
            "Polling started for (%.6f, %.6f) radius=%.1fkm",
            self._area.center.lat,
            self._area.center.lon,
            self._area.radius_km,
        )
        while not stop_event.is_set():
            delay = self.tick()
            if stop_event.wait(max(0.0, delay)):
                break
        logger.info("Polling stopped")

    def start(self) -> None:
        with self._thread_lock:
            if self._thread is not None and self._thread.is_alive() and not self._stop.is_set():
                return
            # A thread left over from a timed-out stop() keeps its own, already set, event.
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self.run_forever, args=(self._stop,), name="impfrust-poller", daemon=True
            )
            self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit; an in-flight fetch is allowed to finish or time out."""
        with self._thread_lock:
            self._stop.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop.is_set()
