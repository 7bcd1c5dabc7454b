from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from impfrust.domain.models import AvailabilityRecord

"""
Geospatial helpers.

A spherical-earth haversine is precise enough for "is this slot within N km of me";
no GIS dependency is needed. Nothing in this module validates coordinates: the
search centre is validated by settings and upstream points by the feed parser.
"""

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Coordinate:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


@dataclass(frozen=True)
class SearchArea:
    """Fixed centre + radius (km) for one running instance."""

    center: Coordinate
    radius_km: float


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Compute great-circle distance in kilometres between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, h)))


def within_radius(area: SearchArea, point: Coordinate) -> bool:
    """Return True if `point` lies inside `area` (boundary inclusive)."""
    return haversine_km(area.center, point) <= area.radius_km


def filter_records(records: Iterable["AvailabilityRecord"], area: SearchArea) -> list["AvailabilityRecord"]:
    """Keep records inside `area`, then dedupe by record id (first in-radius occurrence wins).

    Upstream order is preserved. An out-of-radius copy never shadows an in-radius one.
    """
    seen: set[str] = set()
    out: list[AvailabilityRecord] = []
    for record in records:
        if not within_radius(area, record.location):
            continue
        if record.id in seen:
            continue
        seen.add(record.id)
        out.append(record)
    return out
