"""
API routes.

Endpoints:
- GET `/api/appointments`: the current geofiltered snapshot (503 before the first refresh).
- GET `/api/status`: poller state, counters, backoff and recent tick history.
- GET `/api/search-area`: the fixed search centre and radius.
- GET `/healthz`: liveness.

Routes only read the `ResultCache` and scheduler stats; none of them ever fetch upstream.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException, Request

from impfrust.domain.models import SearchAreaOut, SnapshotOut
from impfrust.runtime import Runtime

router = APIRouter()


def _runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "NOT_CONFIGURED", "message": "Service runtime is not initialized."},
        )
    return runtime


@router.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@router.get("/api/appointments", response_model=SnapshotOut)
def get_appointments(request: Request) -> SnapshotOut:
    """Return the last successfully published snapshot, flagged stale when too old."""
    runtime = _runtime(request)
    snapshot = runtime.cache.read()
    if snapshot is None:
        retry_after = max(1, int(runtime.scheduler.stats().next_delay_seconds or 5))
        raise HTTPException(
            status_code=503,
            detail={"code": "NOT_READY", "message": "No successful refresh yet."},
            headers={"Retry-After": str(retry_after)},
        )
    return SnapshotOut.build(
        snapshot,
        runtime.area,
        now_unix=time.time(),
        stale_after_seconds=runtime.settings.poller.stale_after_seconds,
    )


@router.get("/api/status")
def get_status(request: Request) -> dict:
    runtime = _runtime(request)
    now = time.time()
    age = runtime.cache.age_seconds(now)
    return {
        "poller": {**runtime.scheduler.stats().as_dict(), "running": runtime.scheduler.running},
        "cache": {
            **runtime.cache.stats.as_dict(),
            "initialized": runtime.cache.initialized,
            "age_seconds": round(age, 3) if age is not None else None,
            "stale": runtime.cache.is_stale(runtime.settings.poller.stale_after_seconds, now),
        },
    }


@router.get("/api/search-area", response_model=SearchAreaOut)
def get_search_area(request: Request) -> SearchAreaOut:
    return SearchAreaOut.from_area(_runtime(request).area)
