from datetime import datetime, timedelta, timezone

import httpx
import pytest

from impfrust.config.settings import InvalidConfigurationError, UpstreamKeywordSettings, get_settings
from impfrust.core.geo import Coordinate, SearchArea
from impfrust.ingestion.feed_client import HttpFeedClient
from impfrust.ingestion.upstream import FailureKind, FetchFailure, FetchSuccess


AREA = SearchArea(center=Coordinate(lat=49.39875, lon=8.672434), radius_km=100)


def _settings(**upstream_updates):
    settings = get_settings()
    update = {"url": "https://feed.example.test/slots", "items_path": "results"}
    update.update(upstream_updates)
    upstream = settings.upstream.model_copy(update=update)
    return settings.model_copy(update={"upstream": upstream})


def _item(**overrides):
    item = {
        "id": "doc-1:svc-7:2021-05-29T10:15",
        "lat": 49.41,
        "lon": 8.69,
        "start": "2021-05-29T10:15:00+02:00",
        "end": "2021-05-29T10:30:00+02:00",
        "title": "Corona-Impfung (BioNTech)",
        "name": "Praxis Dr. Example",
    }
    item.update(overrides)
    return item


def _raise(exc):
    def fake_get_json(*_args, **_kwargs):
        raise exc

    return fake_get_json


def test_fetch_parses_records_in_upstream_order(monkeypatch):
    payload = {"results": [_item(), _item(id="second", lat=52.52, lon=13.405, end=None)]}
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", lambda *_a, **_k: payload)

    outcome = HttpFeedClient(_settings(), AREA).fetch()

    assert isinstance(outcome, FetchSuccess)
    first, second = outcome.records
    assert first.id == "doc-1:svc-7:2021-05-29T10:15"
    assert first.location == Coordinate(lat=49.41, lon=8.69)
    assert first.window.earliest == datetime(2021, 5, 29, 10, 15, tzinfo=timezone(timedelta(hours=2)))
    assert first.window.latest - first.window.earliest == timedelta(minutes=15)
    assert first.payload == {"title": "Corona-Impfung (BioNTech)", "name": "Praxis Dr. Example"}
    # Outside the radius, but the client never geofilters.
    assert second.id == "second"
    assert second.window.latest == second.window.earliest


def test_naive_timestamps_get_configured_timezone(monkeypatch):
    payload = {"results": [_item(start="2021-05-29T10:15:00", end=None)]}
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", lambda *_a, **_k: payload)

    outcome = HttpFeedClient(_settings(), AREA).fetch()

    assert outcome.records[0].window.earliest.tzinfo is not None
    assert outcome.records[0].window.earliest.utcoffset() == timedelta(hours=2)


def test_custom_field_names_and_root_list(monkeypatch):
    settings = _settings(items_path="")
    fields = settings.upstream.fields.model_copy(update={"id": "ref_id", "lat": "latitude", "lon": "longitude", "start": "slot"})
    settings = settings.model_copy(
        update={"upstream": settings.upstream.model_copy(update={"fields": fields})}
    )
    payload = [{"ref_id": 42, "latitude": "49.4", "longitude": "8.7", "slot": "2021-05-29T10:15:00Z"}]
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", lambda *_a, **_k: payload)

    outcome = HttpFeedClient(settings, AREA).fetch()

    assert isinstance(outcome, FetchSuccess)
    assert outcome.records[0].id == "42"
    assert outcome.records[0].location == Coordinate(lat=49.4, lon=8.7)


def test_url_and_params_expand_search_area(monkeypatch):
    calls = []

    def fake_get_json(url, *, params=None, headers=None, timeout_seconds=15):
        calls.append((url, params, timeout_seconds))
        return {"results": []}

    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", fake_get_json)
    settings = _settings(
        url="https://feed.example.test/geoball/{lat}_{lon}_{radius_km}",
        params={"output": "json", "radius": "{radius_km}"},
        timeout_seconds=3,
    )

    outcome = HttpFeedClient(settings, AREA).fetch()

    assert outcome == FetchSuccess(records=())
    assert calls == [
        ("https://feed.example.test/geoball/49.39875_8.672434_100", {"output": "json", "radius": "100"}, 3)
    ]


def test_timeout_maps_to_timeout(monkeypatch):
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", _raise(httpx.ReadTimeout("slow")))
    outcome = HttpFeedClient(_settings(), AREA).fetch()
    assert isinstance(outcome, FetchFailure)
    assert outcome.kind is FailureKind.TIMEOUT


def test_connect_error_maps_to_unreachable(monkeypatch):
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", _raise(httpx.ConnectError("refused")))
    outcome = HttpFeedClient(_settings(), AREA).fetch()
    assert outcome.kind is FailureKind.UNREACHABLE
    assert outcome.retry_after_seconds is None


def test_status_error_maps_to_unreachable_with_retry_after(monkeypatch):
    request = httpx.Request("GET", "https://feed.example.test/slots")
    response = httpx.Response(429, request=request, headers={"Retry-After": "7"})
    monkeypatch.setattr(
        "impfrust.ingestion.feed_client.get_json",
        _raise(httpx.HTTPStatusError("429", request=request, response=response)),
    )

    outcome = HttpFeedClient(_settings(), AREA).fetch()

    assert outcome.kind is FailureKind.UNREACHABLE
    assert outcome.retry_after_seconds == 7.0
    assert "429" in outcome.message


def test_invalid_json_maps_to_malformed(monkeypatch):
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", _raise(ValueError("Expecting value")))
    outcome = HttpFeedClient(_settings(), AREA).fetch()
    assert outcome.kind is FailureKind.MALFORMED_RESPONSE


@pytest.mark.parametrize(
    "payload",
    [
        {"code": 2000, "message": "There are no open slots"},
        {"results": {"not": "a list"}},
        {"results": ["not an object"]},
        {"results": [_item(id=None)]},
        {"results": [_item(lat="north")]},
        {"results": [_item(lat=91.0)]},
        {"results": [_item(lon=float("nan"))]},
        {"results": [_item(start="next tuesday")]},
        {"results": [_item(end="2021-05-29T09:00:00+02:00")]},
        {"results": [_item(), _item(start=12345)]},
    ],
)
def test_bad_payloads_map_to_malformed(monkeypatch, payload):
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", lambda *_a, **_k: payload)
    outcome = HttpFeedClient(_settings(), AREA).fetch()
    assert isinstance(outcome, FetchFailure)
    assert outcome.kind is FailureKind.MALFORMED_RESPONSE


def test_missing_url_is_a_configuration_error():
    with pytest.raises(InvalidConfigurationError, match="upstream.url"):
        HttpFeedClient(_settings(url=None), AREA)


def test_unknown_url_placeholder_is_a_configuration_error():
    with pytest.raises(InvalidConfigurationError, match="placeholder"):
        HttpFeedClient(_settings(url="https://feed.example.test/{city}/slots"), AREA)


def test_keyword_filter_keeps_first_doses_only(monkeypatch):
    payload = {
        "results": [
            _item(id="first-dose"),
            _item(id="second-dose", title="Corona-Impfung Zweitimpfung"),
            _item(id="checkup", title="Vorsorgeuntersuchung"),
            _item(id="untitled", title=None),
        ]
    }
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", lambda *_a, **_k: payload)
    keywords = UpstreamKeywordSettings(include=["IMPFUNG"], exclude=["zweit"])

    outcome = HttpFeedClient(_settings(keywords=keywords), AREA).fetch()

    assert isinstance(outcome, FetchSuccess)
    assert [r.id for r in outcome.records] == ["first-dose"]


def test_keyword_filter_on_custom_payload_field(monkeypatch):
    payload = {"results": [_item(id="a", name="Praxis Nord"), _item(id="b", name="Klinik Süd")]}
    monkeypatch.setattr("impfrust.ingestion.feed_client.get_json", lambda *_a, **_k: payload)
    keywords = UpstreamKeywordSettings(payload_field="name", exclude=["klinik"])

    outcome = HttpFeedClient(_settings(keywords=keywords), AREA).fetch()

    assert [r.id for r in outcome.records] == ["a"]
