import math
from datetime import datetime, timezone

import pytest

from impfrust.core.geo import EARTH_RADIUS_KM, Coordinate, SearchArea, filter_records, haversine_km, within_radius
from impfrust.domain.models import AvailabilityRecord, TimeWindow


HEIDELBERG = Coordinate(lat=49.39875, lon=8.672434)


def _north_of(center: Coordinate, km: float) -> Coordinate:
    return Coordinate(lat=center.lat + math.degrees(km / EARTH_RADIUS_KM), lon=center.lon)


def _record(record_id: str, location: Coordinate) -> AvailabilityRecord:
    t = datetime(2021, 5, 29, 10, 15, tzinfo=timezone.utc)
    return AvailabilityRecord(id=record_id, location=location, window=TimeWindow(earliest=t, latest=t))


@pytest.mark.parametrize(
    "a,b",
    [
        (HEIDELBERG, Coordinate(lat=49.488888, lon=8.469167)),
        (Coordinate(lat=0.0, lon=179.9), Coordinate(lat=0.0, lon=-179.9)),
        (Coordinate(lat=90.0, lon=0.0), Coordinate(lat=-90.0, lon=0.0)),
        (Coordinate(lat=-33.86, lon=151.21), Coordinate(lat=51.5, lon=-0.12)),
    ],
)
def test_haversine_is_symmetric(a, b):
    assert haversine_km(a, b) == haversine_km(b, a)


def test_haversine_zero_for_same_point():
    assert haversine_km(HEIDELBERG, HEIDELBERG) == 0


def test_haversine_known_distance_heidelberg_mannheim():
    # Heidelberg centre -> Mannheim centre is roughly 17.7 km as the crow flies.
    d = haversine_km(HEIDELBERG, Coordinate(lat=49.488888, lon=8.469167))
    assert 17.0 < d < 18.5


def test_haversine_antipodal_points_do_not_raise():
    d = haversine_km(Coordinate(lat=0.0, lon=0.0), Coordinate(lat=0.0, lon=180.0))
    assert d == pytest.approx(math.pi * EARTH_RADIUS_KM)


def test_within_radius_boundary_is_inclusive():
    point = _north_of(HEIDELBERG, 42.0)
    area = SearchArea(center=HEIDELBERG, radius_km=haversine_km(HEIDELBERG, point))
    assert within_radius(area, point)


def test_within_radius_zero_radius_only_matches_centre():
    area = SearchArea(center=HEIDELBERG, radius_km=0)
    assert within_radius(area, HEIDELBERG)
    assert not within_radius(area, _north_of(HEIDELBERG, 0.001))


def test_filter_records_heidelberg_scenario():
    area = SearchArea(center=HEIDELBERG, radius_km=150)
    records = [
        _record("10km", _north_of(HEIDELBERG, 10)),
        _record("149.999km", _north_of(HEIDELBERG, 149.999)),
        _record("150.001km", _north_of(HEIDELBERG, 150.001)),
        _record("151km", _north_of(HEIDELBERG, 151)),
    ]
    assert [r.id for r in filter_records(records, area)] == ["10km", "149.999km"]


def test_filter_records_keeps_upstream_order_and_drops_duplicate_ids():
    area = SearchArea(center=HEIDELBERG, radius_km=50)
    first = _record("a", _north_of(HEIDELBERG, 5))
    dup = _record("a", _north_of(HEIDELBERG, 6))
    records = [_record("c", _north_of(HEIDELBERG, 1)), first, dup, _record("b", _north_of(HEIDELBERG, 2))]

    out = filter_records(records, area)

    assert [r.id for r in out] == ["c", "a", "b"]
    assert out[1].location == first.location


@pytest.mark.parametrize("reverse", [False, True])
def test_filter_records_out_of_radius_duplicate_does_not_depend_on_order(reverse):
    area = SearchArea(center=HEIDELBERG, radius_km=10)
    inside = _record("x", _north_of(HEIDELBERG, 1))
    records = [_record("x", _north_of(HEIDELBERG, 20)), inside]
    if reverse:
        records.reverse()

    out = filter_records(records, area)

    assert out == [inside]
