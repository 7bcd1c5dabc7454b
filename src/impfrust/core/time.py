"""
Time parsing and timezone normalization.

Upstream feeds mix offset-aware (`2021-05-29T10:15:00+02:00`) and naive timestamps.
Everything is normalized to timezone-aware datetimes so slot windows compare safely.
"""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo


def ensure_tz(dt: datetime, timezone: str) -> datetime:
    """Ensure `dt` has tzinfo; attach `timezone` if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo(timezone))
    return dt


def parse_datetime(value: str, timezone: str) -> datetime:
    """Parse ISO-8601 datetime string and ensure tzinfo is present.

    Notes:
    - Accepts a trailing `Z` (UTC) and converts it to `+00:00` for `fromisoformat`.
    - If the parsed value is naive, the provided `timezone` is attached.

    Raises:
        ValueError: If `value` is not an ISO-8601 string.
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO-8601 string, got {type(value).__name__}")
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    return ensure_tz(dt, timezone)


def from_unix(ts: float) -> datetime:
    """Convert a unix timestamp into an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=dt_timezone.utc)
