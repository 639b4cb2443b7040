import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import api
from analytics.view import AggregationView
from db.visit_log import MemoryVisitLog, VisitLog
from models.analytics import TimeWindow
from models.visit import VisitRecord

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
ADMIN = {"X-Admin-Key": "secret"}


class UnreachableVisitLog(VisitLog):
    name = "unreachable"

    async def append(self, record):
        return False

    def subscribe(self, query, on_slice, on_error=None):
        raise ConnectionError("no route to host")


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(api, "ADMIN_ACCESS_KEY", "secret")
    monkeypatch.setattr(api.settings, "mongodb_uri", None)
    monkeypatch.setattr(api.settings, "redis_url", None)
    with TestClient(api.app) as test_client:
        yield test_client


def test_startup_uses_memory_log_without_mongodb(client):
    assert isinstance(api.visit_log, MemoryVisitLog)


def test_track_visit_then_analytics(client):
    response = client.post(
        "/api/visits",
        json={"path": "/about", "referrer": "https://t.me/champions", "loadTime": 420},
        headers={"User-Agent": IPHONE_UA, "X-Forwarded-For": "10.0.0.7, 172.16.0.1"},
    )
    assert response.status_code == 202
    assert response.json() == {"ok": True}

    response = client.get("/api/analytics", params={"window": "1h"}, headers=ADMIN)
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "live"
    assert data["window"] == "1h"

    snapshot = data["snapshot"]
    assert snapshot["totalVisits"] == 1
    assert snapshot["topPages"] == [["/about", 1]]
    assert snapshot["deviceData"] == [["Mobile", 1]]
    assert snapshot["browserData"] == [["Safari", 1]]
    assert snapshot["avgLoadTime"] == 420
    assert snapshot["uniqueVisitors"] == 1
    assert snapshot["recentVisits"][0]["ip"] == "10.0.0.7"
    assert snapshot["topCountries"] == []


def test_track_visit_falls_back_to_url_path(client):
    client.post("/api/visits", json={"url": "https://champions.et/athletes/kenenisa"})

    snapshot = client.get("/api/analytics", headers=ADMIN).json()["snapshot"]
    assert snapshot["topPages"] == [["/athletes/kenenisa", 1]]


def test_track_visit_rejects_negative_load_time(client):
    response = client.post("/api/visits", json={"path": "/", "loadTime": -5})
    assert response.status_code == 422


def test_analytics_requires_admin_key(client):
    assert client.get("/api/analytics").status_code == 403
    assert client.get("/api/analytics", headers={"X-Admin-Key": "wrong"}).status_code == 403
    assert client.get("/api/analytics/stream").status_code == 403


def test_admin_key_from_query_param(client):
    assert client.get("/api/analytics", params={"key": "secret"}).status_code == 200


def test_empty_admin_key_disables_access(client, monkeypatch):
    monkeypatch.setattr(api, "ADMIN_ACCESS_KEY", "")
    assert client.get("/api/analytics", headers={"X-Admin-Key": ""}).status_code == 403


def test_invalid_window_is_rejected(client):
    response = client.get("/api/analytics", params={"window": "2w"}, headers=ADMIN)
    assert response.status_code == 422


def test_limit_caps_slice(client):
    for i in range(4):
        client.post("/api/visits", json={"path": f"/news/{i}"})

    data = client.get("/api/analytics", params={"limit": 2}, headers=ADMIN).json()
    assert data["maxRecords"] == 2
    assert data["snapshot"]["totalVisits"] == 2


def test_unavailable_log_returns_503(client, monkeypatch):
    monkeypatch.setattr(api, "visit_log", UnreachableVisitLog())
    response = client.get("/api/analytics", headers=ADMIN)
    assert response.status_code == 503


def test_windows(client):
    data = client.get("/api/analytics/windows").json()
    assert data["windows"] == ["1h", "24h", "7d", "30d", "all"]
    assert data["default"] == "24h"
    assert data["profiles"] == ["rich", "simple"]


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["visit_log"] == "memory"
    assert data["mongodb_connected"] is False
    assert data["cache_backend"] == "memory"


@pytest.fixture
def stream_views(monkeypatch, memory_log):
    """Point the API at an in-memory log and collect the views it opens."""
    views = []

    class RecordingView(AggregationView):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            views.append(self)

    monkeypatch.setattr(api, "visit_log", memory_log)
    monkeypatch.setattr(api, "AggregationView", RecordingView)
    return views


def connected_request(disconnected=False):
    request = MagicMock()
    request.is_disconnected = AsyncMock(return_value=disconnected)
    return request


@pytest.mark.asyncio
async def test_stream_emits_live_event_then_disposes(stream_views, memory_log):
    await memory_log.append(VisitRecord(path="/athletes"))

    response = await api.stream_analytics(connected_request(), window=TimeWindow.ALL_TIME, limit=None)
    assert response.media_type == "text/event-stream"

    event = await response.body_iterator.__anext__()
    assert event.startswith("data: ") and event.endswith("\n\n")
    data = json.loads(event[len("data: "):])
    assert data["state"] == "live"
    assert data["window"] == "all"
    assert data["snapshot"]["topPages"] == [["/athletes", 1]]

    await response.body_iterator.aclose()
    assert stream_views[0].disposed


@pytest.mark.asyncio
async def test_stream_emits_event_per_change(stream_views, memory_log):
    response = await api.stream_analytics(connected_request(), window=TimeWindow.ALL_TIME, limit=None)

    first = json.loads((await response.body_iterator.__anext__())[len("data: "):])
    await memory_log.append(VisitRecord(path="/news"))
    second = json.loads((await response.body_iterator.__anext__())[len("data: "):])

    assert first["snapshot"]["totalVisits"] == 0
    assert second["snapshot"]["totalVisits"] == 1
    await response.body_iterator.aclose()


@pytest.mark.asyncio
async def test_stream_disposes_view_on_disconnect(stream_views):
    response = await api.stream_analytics(connected_request(disconnected=True),
                                          window=TimeWindow.LAST_DAY, limit=None)

    with pytest.raises(StopAsyncIteration):
        await response.body_iterator.__anext__()
    assert stream_views[0].disposed
