"""Tests for range query validation and the ISO-8601 boundary."""
from unittest import mock

import pytest

from seriesflow.errors import InvalidRange, StoreUnavailable
from seriesflow.query import RangeQueryService, parse_instant
from seriesflow.series import SeriesRange


def test_rejects_inverted_range(query_service):
    with pytest.raises(InvalidRange):
        query_service.query("singapore", 2000, 1000)


def test_equal_bounds_are_allowed(query_service, store, clock):
    store.append("singapore", clock(), 5.0)
    points = query_service.query("singapore", clock(), clock()).points
    assert [p.value for p in points] == [5.0]


def test_missing_key_uses_default_entity(query_service, store, clock):
    store.append("Singapore", clock(), 28.0)

    for key in (None, "", "   "):
        result = query_service.query(key, clock() - 1, clock())
        assert result.series_key == "singapore"
        assert len(result.points) == 1


def test_store_errors_pass_through():
    store = mock.Mock()
    store.query.side_effect = StoreUnavailable("connection refused")
    service = RangeQueryService(store)

    with pytest.raises(StoreUnavailable):
        service.query("singapore", 0, 1)


def test_every_call_requeries_the_store():
    store = mock.Mock()
    store.query.return_value = SeriesRange("singapore", 0, 1, [])
    service = RangeQueryService(store)

    service.query("singapore", 0, 1)
    service.query("singapore", 0, 1)
    assert store.query.call_count == 2


def test_parse_instant():
    assert parse_instant("1970-01-01T00:00:01Z") == 1000
    assert parse_instant("1970-01-01T00:00:01.500+00:00") == 1500
    assert parse_instant("1970-01-01T01:00:00+01:00") == 0
    assert parse_instant("1970-01-01T00:00:02") == 2000


def test_parse_instant_rejects_garbage():
    for value in ("", "yesterday", "2024-13-45T00:00:00Z"):
        with pytest.raises(InvalidRange):
            parse_instant(value)


def test_get_series_payload(query_service, store):
    store.append("singapore", 1_700_000_000_000, 26.0)

    payload = query_service.get_series(
        "Singapore", "2023-11-14T22:13:00Z", "2023-11-14T22:14:00Z"
    )

    assert payload == {
        "key": "singapore",
        "from": "2023-11-14T22:13:00Z",
        "to": "2023-11-14T22:14:00Z",
        "points": [{"ts": 1_700_000_000_000, "value": 26.0}],
    }


def test_get_series_inverted_range(query_service):
    with pytest.raises(InvalidRange):
        query_service.get_series(None, "2024-01-02T00:00:00Z", "2024-01-01T00:00:00Z")
