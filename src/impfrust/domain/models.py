"""
Domain models.

Two families live here:
- frozen dataclasses for the polling core (`AvailabilityRecord`, `Snapshot`). They are
  built by ingestion, never mutated, and shared across threads by reference.
- Pydantic response models for the HTTP surface, so JSON output stays consistent
  between the API and `impfrust --once --json`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, Field

from impfrust.core.geo import Coordinate, SearchArea, haversine_km
from impfrust.core.time import from_unix


@dataclass(frozen=True)
class TimeWindow:
    """Earliest/latest valid timestamp of a slot (both timezone-aware)."""

    earliest: datetime
    latest: datetime

    def __post_init__(self) -> None:
        if self.latest < self.earliest:
            raise ValueError("window.latest must not be before window.earliest")


@dataclass(frozen=True)
class AvailabilityRecord:
    """One bookable slot as reported by the upstream feed."""

    id: str
    location: Coordinate
    window: TimeWindow
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def label(self) -> str:
        for key in ("title", "name"):
            value = self.payload.get(key)
            if value:
                return str(value)
        return self.id


@dataclass(frozen=True)
class Snapshot:
    """The geofiltered result set of one successful refresh."""

    records: tuple[AvailabilityRecord, ...]
    generated_at_unix: float
    generation: int
    records_seen: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def ids(self) -> set[str]:
        return {r.id for r in self.records}

    @property
    def generated_at(self) -> datetime:
        return from_unix(self.generated_at_unix)


class GeoPointOut(BaseModel):
    lat: float
    lon: float


class SearchAreaOut(BaseModel):
    center: GeoPointOut
    radius_km: float

    @classmethod
    def from_area(cls, area: SearchArea) -> "SearchAreaOut":
        return cls(center=GeoPointOut(lat=area.center.lat, lon=area.center.lon), radius_km=area.radius_km)


class AppointmentOut(BaseModel):
    """One availability record as served to HTTP clients."""

    id: str
    lat: float
    lon: float
    distance_km: float
    earliest: datetime
    latest: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: AvailabilityRecord, area: SearchArea) -> "AppointmentOut":
        return cls(
            id=record.id,
            lat=record.location.lat,
            lon=record.location.lon,
            distance_km=round(haversine_km(area.center, record.location), 3),
            earliest=record.window.earliest,
            latest=record.window.latest,
            payload=dict(record.payload),
        )


class SnapshotOut(BaseModel):
    """Current snapshot plus the freshness info readers need to judge staleness."""

    generation: int
    generated_at: datetime
    age_seconds: float = Field(..., ge=0)
    stale: bool
    records_seen: int
    count: int
    search_area: SearchAreaOut
    appointments: list[AppointmentOut] = Field(default_factory=list)

    @classmethod
    def build(
        cls, snapshot: Snapshot, area: SearchArea, *, now_unix: float, stale_after_seconds: float
    ) -> "SnapshotOut":
        age = max(0.0, now_unix - snapshot.generated_at_unix)
        return cls(
            generation=snapshot.generation,
            generated_at=snapshot.generated_at,
            age_seconds=round(age, 3),
            stale=age > stale_after_seconds,
            records_seen=snapshot.records_seen,
            count=len(snapshot),
            search_area=SearchAreaOut.from_area(area),
            appointments=[AppointmentOut.from_record(r, area) for r in snapshot.records],
        )
