"""
Availability feed client (generic JSON over HTTP).

This module is responsible only for:
- issuing exactly one GET per `fetch()` with a bounded timeout,
- mapping the configured JSON shape onto `AvailabilityRecord`s,
- translating every failure into a `FetchFailure` kind.

The wire format is deployment-specific, so the item list location and the field
names come from `settings.upstream` rather than being hard-coded. The optional
keyword filter (`upstream.keywords`) drops unrelated services here; geofiltering and
retries happen in the poller.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

import httpx

from impfrust.config.settings import InvalidConfigurationError, Settings
from impfrust.core.geo import Coordinate, SearchArea
from impfrust.core.http import get_json
from impfrust.core.time import parse_datetime
from impfrust.domain.models import AvailabilityRecord, TimeWindow
from impfrust.ingestion.upstream import FailureKind, FetchFailure, FetchOutcome, FetchSuccess

logger = logging.getLogger(__name__)


class MalformedFeedError(ValueError):
    """The upstream answered, but not with a usable list of records."""


class HttpFeedClient:
    """Fetches one JSON listing per call and parses it into records."""

    def __init__(self, settings: Settings, area: SearchArea):
        if not settings.upstream.url:
            raise InvalidConfigurationError("upstream.url is not configured. Set IMPFRUST_UPSTREAM_URL.")
        self._settings = settings
        self._area = area
        for template in [settings.upstream.url, *settings.upstream.params.values()]:
            try:
                self._format_template(template)
            except (KeyError, IndexError, ValueError) as exc:
                raise InvalidConfigurationError(
                    f"Invalid placeholder in upstream template {template!r}; use {{lat}}, {{lon}}, {{radius_km}}"
                ) from exc

    @staticmethod
    def _parse_retry_after_seconds(value: str | None) -> float | None:
        if not value:
            return None
        try:
            seconds = float(value)
        except ValueError:
            return None
        return seconds if seconds >= 0 else None

    def _format_template(self, value: str) -> str:
        # Geo-ball style endpoints take the search centre in the URL itself.
        return value.format(
            lat=self._area.center.lat,
            lon=self._area.center.lon,
            radius_km=self._area.radius_km,
        )

    def _request(self) -> Any:
        upstream = self._settings.upstream
        return get_json(
            self._format_template(str(upstream.url)),
            params={k: self._format_template(v) for k, v in upstream.params.items()} or None,
            headers=dict(upstream.headers) or None,
            timeout_seconds=upstream.timeout_seconds,
        )

    def fetch(self) -> FetchOutcome:
        try:
            payload = self._request()
        except httpx.TimeoutException as exc:
            return FetchFailure(FailureKind.TIMEOUT, f"upstream timed out: {exc}")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            return FetchFailure(
                FailureKind.UNREACHABLE,
                f"upstream responded with status={status}",
                retry_after_seconds=self._parse_retry_after_seconds(exc.response.headers.get("Retry-After")),
            )
        except httpx.HTTPError as exc:
            return FetchFailure(FailureKind.UNREACHABLE, f"{type(exc).__name__}: {exc}")
        except ValueError as exc:
            return FetchFailure(FailureKind.MALFORMED_RESPONSE, f"invalid JSON: {exc}")

        try:
            records = self.parse_payload(payload)
        except MalformedFeedError as exc:
            return FetchFailure(FailureKind.MALFORMED_RESPONSE, str(exc))
        logger.debug("Upstream returned %s records", len(records))
        return FetchSuccess(records=tuple(records))

    def _items(self, payload: Any) -> list[Any]:
        node = payload
        path = self._settings.upstream.items_path.strip()
        for part in [p for p in path.split(".") if p]:
            if not isinstance(node, Mapping) or part not in node:
                raise MalformedFeedError(f"response has no '{path}' list")
            node = node[part]
        if not isinstance(node, list):
            raise MalformedFeedError(f"expected a list at '{path or '<root>'}', got {type(node).__name__}")
        return node

    def parse_payload(self, payload: Any) -> list[AvailabilityRecord]:
        """Turn a decoded JSON body into records; any bad item rejects the whole body."""
        records = [self._parse_item(item, index) for index, item in enumerate(self._items(payload))]
        if not self._settings.upstream.keywords.active:
            return records
        kept = [r for r in records if self._matches_keywords(r)]
        if len(kept) != len(records):
            logger.debug("Keyword filter dropped %s of %s records", len(records) - len(kept), len(records))
        return kept

    def _matches_keywords(self, record: AvailabilityRecord) -> bool:
        keywords = self._settings.upstream.keywords
        text = str(record.payload.get(keywords.payload_field) or "").casefold()
        if keywords.include and not any(k.casefold() in text for k in keywords.include):
            return False
        return not any(k.casefold() in text for k in keywords.exclude)

    def _parse_item(self, item: Any, index: int) -> AvailabilityRecord:
        fields = self._settings.upstream.fields
        if not isinstance(item, Mapping):
            raise MalformedFeedError(f"item {index} is not an object")

        missing = [name for name in (fields.id, fields.lat, fields.lon, fields.start) if item.get(name) is None]
        if missing:
            raise MalformedFeedError(f"item {index} is missing {', '.join(missing)}")

        try:
            lat = float(item[fields.lat])
            lon = float(item[fields.lon])
        except (TypeError, ValueError) as exc:
            raise MalformedFeedError(f"item {index} has non-numeric coordinates") from exc
        if not (math.isfinite(lat) and math.isfinite(lon)) or not (-90 <= lat <= 90 and -180 <= lon <= 180):
            raise MalformedFeedError(f"item {index} has out-of-range coordinates ({lat}, {lon})")

        tz = self._settings.app.timezone
        try:
            earliest = parse_datetime(item[fields.start], tz)
            raw_end = item.get(fields.end)
            latest = parse_datetime(raw_end, tz) if raw_end is not None else earliest
            window = TimeWindow(earliest=earliest, latest=latest)
        except ValueError as exc:
            raise MalformedFeedError(f"item {index} has an invalid time window: {exc}") from exc

        consumed = {fields.id, fields.lat, fields.lon, fields.start, fields.end}
        return AvailabilityRecord(
            id=str(item[fields.id]),
            location=Coordinate(lat=lat, lon=lon),
            window=window,
            payload={k: v for k, v in item.items() if k not in consumed},
        )
