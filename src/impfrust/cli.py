"""
impfrust CLI entrypoint.

    impfrust --lat 49.488888 --long 8.469167 --radius 150

Serves the HTTP API (uvicorn) on `$PORT` while the poller refreshes in the background.
`--once` runs a single fetch/filter cycle and prints the snapshot instead, which is
handy for checking an upstream mapping before deploying.
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Any

import uvicorn

from impfrust.config.overrides import apply_settings_overrides
from impfrust.config.settings import InvalidConfigurationError, Settings, get_settings
from impfrust.core.logging import configure_logging
from impfrust.domain.models import SnapshotOut
from impfrust.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)


def _overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Map CLI flags onto the nested settings layout (None means "not given")."""
    return {
        "app": {"host": args.host, "port": args.port},
        "search": {"lat": args.lat, "lon": args.lon, "radius_km": args.radius},
        "upstream": {"url": args.upstream_url},
        "poller": {"interval_seconds": args.interval},
    }


def _print_snapshot(runtime: Runtime, *, as_json: bool) -> None:
    snapshot = runtime.cache.read()
    if snapshot is None:
        return
    out = SnapshotOut.build(
        snapshot,
        runtime.area,
        now_unix=time.time(),
        stale_after_seconds=runtime.settings.poller.stale_after_seconds,
    )
    if as_json:
        print(json.dumps(out.model_dump(mode="json"), ensure_ascii=False, indent=2))
        return

    print(f"Generated at: {out.generated_at.isoformat()}")
    print(f"Accepted {out.count} of {out.records_seen} records within {runtime.area.radius_km:g}km")
    for i, item in enumerate(out.appointments, start=1):
        label = item.payload.get("title") or item.payload.get("name") or item.id
        print(f"{i:>3}. {label} ({item.distance_km:.1f}km)  {item.earliest.isoformat()}")


def _cmd_once(settings: Settings, args: argparse.Namespace) -> int:
    runtime = build_runtime(settings, notify=False)
    runtime.scheduler.tick()
    stats = runtime.scheduler.stats()
    if stats.successes == 0:
        error = stats.last_error or {}
        logger.error("Fetch failed: %s %s", error.get("kind"), error.get("message"))
        return 1
    _print_snapshot(runtime, as_json=bool(args.json))
    return 0


def _cmd_serve(settings: Settings) -> int:
    from impfrust.api.app import create_app

    runtime = build_runtime(settings)
    app = create_app(runtime)
    # Keep our dictConfig instead of uvicorn's default logging setup.
    uvicorn.run(app, host=settings.app.host, port=int(settings.app.port), log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the impfrust CLI."""
    parser = argparse.ArgumentParser(
        prog="impfrust", description="Poll nearby appointment slots and serve them over HTTP."
    )
    parser.add_argument("--lat", type=float, default=None, help="Search centre latitude (degrees).")
    parser.add_argument("--long", dest="lon", type=float, default=None, help="Search centre longitude (degrees).")
    parser.add_argument("--radius", type=float, default=None, help="Search radius in kilometres.")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None, help="HTTP port (default: $PORT or 8080).")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between successful polls.")
    parser.add_argument("--upstream-url", dest="upstream_url", type=str, default=None)
    parser.add_argument("--once", action="store_true", help="Fetch once, print the snapshot and exit.")
    parser.add_argument("--json", action="store_true", help="With --once: output machine-readable JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by the `impfrust` console script."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = apply_settings_overrides(get_settings(), _overrides_from_args(args))
        configure_logging(settings)
        if args.once:
            return _cmd_once(settings, args)
        return _cmd_serve(settings)
    except InvalidConfigurationError as exc:
        logging.basicConfig()
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
