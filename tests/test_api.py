"""Tests for the HTTP and WebSocket request layer."""
import pytest
from fastapi.testclient import TestClient

from conftest import FixedSource

from seriesflow.backends import InMemoryBackend
from seriesflow.config import Config
from seriesflow.main import build_api, build_session
from seriesflow.series import Sample


@pytest.fixture
def api():
    config = Config(store={"backend": "memory"}, ingestion={"entities": []})
    api = build_api(config, backend=InMemoryBackend(), source=FixedSource(26.0))
    yield api
    api.loops.stop_all()


@pytest.fixture
def client(api):
    return TestClient(api.app)


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_current_reading_is_stored(client):
    response = client.get("/weather", params={"city": "Singapore"})
    assert response.status_code == 200
    body = response.json()
    assert body["city"] == "Singapore"
    assert body["value"] == 26.0

    series = client.get("/weather/series", params={
        "city": "SINGAPORE",
        "from": "2000-01-01T00:00:00Z",
        "to": "2100-01-01T00:00:00Z",
    })
    assert series.status_code == 200
    payload = series.json()
    assert payload["key"] == "singapore"
    assert [p["value"] for p in payload["points"]] == [26.0]


def test_series_defaults_to_default_entity(client):
    client.get("/weather")
    series = client.get("/weather/series", params={
        "from": "2000-01-01T00:00:00Z",
        "to": "2100-01-01T00:00:00Z",
    })
    assert series.json()["key"] == "singapore"
    assert len(series.json()["points"]) == 1


def test_series_for_unseen_city_is_empty(client):
    response = client.get("/weather/series", params={
        "city": "Atlantis",
        "from": "2024-01-01T00:00:00Z",
        "to": "2024-01-02T00:00:00Z",
    })
    assert response.status_code == 200
    assert response.json()["points"] == []


def test_inverted_range_is_client_error(client):
    response = client.get("/weather/series", params={
        "from": "2024-01-02T00:00:00Z",
        "to": "2024-01-01T00:00:00Z",
    })
    assert response.status_code == 400


def test_missing_bounds_rejected(client):
    assert client.get("/weather/series").status_code == 422


def test_metrics_endpoint(client):
    client.get("/weather")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "store_appends_total 1.0" in response.text


def test_log_level(client):
    assert client.post("/control/loglevel", json={"level": "debug"}).status_code == 200
    assert client.post("/control/loglevel", json={"level": "loud"}).status_code == 400


def test_live_stream(api, client):
    with client.websocket_connect("/weather/live?city=Singapore") as websocket:
        api.broadcast.publish("singapore", Sample(1, 99.0))
        assert websocket.receive_json() == {"ts": 1, "value": 99.0}

        client.get("/weather", params={"city": "singapore"})
        assert websocket.receive_json()["value"] == 26.0


def test_live_subscription_does_not_touch_store(api, client):
    with client.websocket_connect("/weather/live?city=Atlantis"):
        assert api.broadcast.subscriber_count("atlantis") == 1

    assert api.store.query("atlantis", 0, 10**13).points == []
    assert api.loops.loops == {}
    assert client.get("/status").json()["loops"] == {}


def test_session_uses_window_configuration():
    config = Config(
        store={"backend": "memory"},
        ingestion={"entities": []},
        window={"capacity": 50, "ranges": {"15m": 900, "1h": 3600}},
    )
    api = build_api(config, backend=InMemoryBackend(), source=FixedSource(26.0))

    session = build_session(api, "Singapore", "15m")

    assert session.window.capacity == 50
    assert session.duration_ms == 900_000
    session.select_range("1h")
    assert session.duration_ms == 3_600_000
    with pytest.raises(ValueError):
        session.select_range("6h")
