"""
test_api.py — HTTP API end to end with an in-memory store and fake
upstream clients.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest
from fastapi.testclient import TestClient

from backend.pumpwatch.forecast.forecast_client import ForecastSeries, HourlyForecast
from backend.pumpwatch.ingestion.feed_parser import parse_feed
from backend.pumpwatch.ingestion.models import FeedFamily, PumpLocation
from backend.pumpwatch.main import create_app
from backend.pumpwatch.radar.models import BoundingBox, RadarFrame
from backend.pumpwatch.radar.reflectivity import ColorLegend
from backend.pumpwatch.services import ServiceContainer
from backend.pumpwatch.storage.memory_store import InMemoryRecordStore


# ═══════════════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════════════

ROSTER = [
    PumpLocation("Wet", -6.2, 106.8),
    PumpLocation("Dry", -6.35, 106.95),
]

FEEDS = {
    FeedFamily.RAINFALL: [{"nama": "Sta Wet", "lat": -6.201, "lng": 106.801, "val": "3"}],
    FeedFamily.WATER_LEVEL: [
        {"NAMA_PINTU_AIR": "Gate", "LATITUDE": "-6,34", "LONGITUDE": "106,95", "TINGGI_AIR": "120"},
    ],
}


class FakeFeedClient:
    async def fetch(self, family):
        return parse_feed(family, FEEDS[family])

    async def close(self):
        pass


class FakeRadarClient:
    async def capture_frame(self):
        image = np.zeros((200, 200, 4), dtype=np.uint8)
        image[90:111, 90:111] = (254, 254, 0, 255)  # 35 dBZ over "Wet"
        return RadarFrame(
            station="JAK",
            image=image,
            bounds=BoundingBox.from_overlay([-6.0, 106.6], [-6.4, 107.0]),
            legend=ColorLegend.from_hex([5, 35], ["#07fef6", "#fefe00"]),
            captured_at=datetime.now(timezone.utc),
            radar_time="14:00",
        )

    async def close(self):
        pass


class FakeForecastClient:
    async def fetch_hourly(self, latitude, longitude):
        now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
        return ForecastSeries(latitude, longitude, "Asia/Jakarta", [
            HourlyForecast(now, 27.0, 1.0, 1.2, 40.0, 61),
        ])

    async def close(self):
        pass


@pytest.fixture
def client():
    services = ServiceContainer(
        store=InMemoryRecordStore(),
        roster=ROSTER,
        feed_client=FakeFeedClient(),
        radar_client=FakeRadarClient(),
        forecast_client=FakeForecastClient(),
    )
    with TestClient(create_app(services, start_jobs=False)) as test_client:
        yield test_client


# ═══════════════════════════════════════════════════════════════════════════
# Root / health / middleware
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_root(self, client):
        body = client.get("/").json()
        assert "jobs" in body["modules"]

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["success"]
        assert body["pumps"] == 2
        assert body["store"] == "InMemoryRecordStore"
        assert body["jobs"] == {
            "forecast-fetch": "stopped",
            "forecast-verify": "stopped",
            "monitor": "stopped",
            "pump-sync": "stopped",
        }

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
        assert response.headers["X-Process-Time"].endswith("ms")

    def test_unsafe_request_id_replaced(self, client):
        response = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        assert response.headers["X-Request-ID"] != "bad id with spaces"

    def test_unknown_route_uses_envelope(self, client):
        response = client.get("/api/v1/nowhere")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Jobs
# ═══════════════════════════════════════════════════════════════════════════

class TestJobs:

    def test_list(self, client):
        jobs = client.get("/api/v1/jobs").json()["jobs"]
        assert [j["name"] for j in jobs] == ["forecast-fetch", "forecast-verify", "monitor", "pump-sync"]

    def test_start_stop(self, client):
        started = client.post("/api/v1/jobs/monitor/start").json()
        assert started["job"]["status"] == "running"
        assert started["job"]["next_run_at"] is not None
        stopped = client.post("/api/v1/jobs/monitor/stop").json()
        assert stopped["job"]["status"] == "stopped"

    def test_restart_with_schedule(self, client):
        body = client.post("/api/v1/jobs/pump-sync/restart", json={"schedule": "*/10 * * * *"}).json()
        assert body["job"]["schedule"] == "*/10 * * * *"
        assert body["job"]["status"] == "running"

    def test_restart_invalid_schedule(self, client):
        response = client.post("/api/v1/jobs/pump-sync/restart", json={"schedule": "often"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"

    def test_unknown_job(self, client):
        response = client.get("/api/v1/jobs/ghost")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "JOB_NOT_FOUND"
        assert client.post("/api/v1/jobs/ghost/start").status_code == 404

    def test_unknown_action(self, client):
        response = client.post("/api/v1/jobs/monitor/pause")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_trigger_stopped_job(self, client):
        body = client.post("/api/v1/jobs/pump-sync/trigger").json()
        assert body["run"]["ok"]
        assert body["run"]["source"] == "manual"
        assert body["job"]["status"] == "stopped"
        assert body["job"]["last_run_at"] is not None
        assert body["job"]["run_count"] == 1


# ═══════════════════════════════════════════════════════════════════════════
# Pumps
# ═══════════════════════════════════════════════════════════════════════════

class TestPumps:

    def test_empty_before_sync(self, client):
        body = client.get("/api/v1/pumps/latest").json()
        assert body["count"] == 0

    def test_latest_after_sync(self, client):
        client.post("/api/v1/jobs/pump-sync/trigger")
        pumps = client.get("/api/v1/pumps/latest").json()["pumps"]
        assert {p["pump_name"] for p in pumps} == {"Wet", "Dry"}
        wet = next(p for p in pumps if p["pump_name"] == "Wet")
        assert wet["rainfall"]["value"] == 3.0
        assert wet["rainfall"]["nearest_station_name"] == "Sta Wet"
        assert wet["water_level"]["value"] == 120.0

    def test_history_today(self, client):
        client.post("/api/v1/jobs/pump-sync/trigger")
        body = client.get("/api/v1/pumps/history", params={"pump_name": "Wet"}).json()
        assert len(body["rainfall"]) == 1
        assert len(body["water_level"]) == 1

    def test_history_requires_pump(self, client):
        assert client.get("/api/v1/pumps/history").status_code == 422

    def test_locations(self, client):
        client.post("/api/v1/jobs/pump-sync/trigger")
        body = client.get("/api/v1/pumps/locations").json()
        assert [p["name"] for p in body["roster"]] == ["Wet", "Dry"]
        assert body["with_history"] == ["Dry", "Wet"]


# ═══════════════════════════════════════════════════════════════════════════
# Monitor
# ═══════════════════════════════════════════════════════════════════════════

class TestMonitor:

    def test_check_on_demand(self, client):
        body = client.post("/api/v1/monitor/check", json={"threshold": 2.0, "save_all": True}).json()
        assert body["success"]
        assert body["total_checked"] == 2
        assert body["alert_count"] == 1
        assert body["alerts"][0]["pump_name"] == "Wet"

        job = client.get("/api/v1/jobs/monitor").json()["job"]
        assert job["run_count"] == 0

    def test_check_without_body(self, client):
        assert client.post("/api/v1/monitor/check").json()["total_checked"] == 2

    def test_samples(self, client):
        client.post("/api/v1/monitor/check", json={"save_all": True})
        everything = client.get("/api/v1/monitor/samples").json()
        alerts = client.get("/api/v1/monitor/samples", params={"alerts_only": True}).json()
        assert everything["count"] == 2
        assert alerts["count"] == 1

    def test_invalid_threshold(self, client):
        assert client.post("/api/v1/monitor/check", json={"threshold": -1}).status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
# Forecasts + accuracy
# ═══════════════════════════════════════════════════════════════════════════

def _point(target_time: str, precipitation: float = 3.0) -> dict:
    return {
        "location_name": "Wet", "lat": -6.2, "lng": 106.8,
        "target_time": target_time, "precipitation": precipitation, "probability": 80,
    }


class TestForecasts:

    def test_submit_and_find(self, client):
        body = client.post("/api/v1/forecasts", json={"points": [_point("2024-01-15T14:00:00")]}).json()
        assert body["inserted"] == 1
        assert body["ids"][0] is not None

        found = client.get("/api/v1/forecasts", params={"location_name": "Wet"}).json()
        assert found["count"] == 1
        # naive input is local Jakarta time
        assert found["forecasts"][0]["target_time"] == "2024-01-15T14:00:00+07:00"
        assert found["forecasts"][0]["verified"] is False

    def test_empty_batch_rejected(self, client):
        assert client.post("/api/v1/forecasts", json={"points": []}).status_code == 422

    def test_collector_job(self, client):
        body = client.post("/api/v1/jobs/forecast-fetch/trigger").json()
        assert body["run"]["ok"]
        assert body["run"]["result"]["inserted"] == 2


class TestAccuracy:

    def test_verify_and_score(self, client):
        now = datetime.now(timezone.utc)
        client.post("/api/v1/forecasts", json={"points": [_point(now.isoformat())]})
        client.post("/api/v1/jobs/pump-sync/trigger")

        end = (now + timedelta(minutes=1)).isoformat()
        verified = client.post("/api/v1/accuracy/verify", json={"end": end}).json()
        assert verified["verified"] == 1
        assert verified["unmatched"] == 0

        body = client.get(
            "/api/v1/accuracy/metrics", params={"location_name": "Wet", "end": end},
        ).json()
        metrics = body["metrics"]
        assert metrics["verified_forecasts"] == 1
        assert metrics["metrics"]["mae"] == 0.0
        assert metrics["threshold_mm"] == 2.0

        history = client.get("/api/v1/accuracy/history", params={"location_name": "Wet"}).json()
        assert history["count"] == 1

    def test_metrics_without_data(self, client):
        body = client.get("/api/v1/accuracy/metrics", params={"location_name": "Nowhere"}).json()
        assert body["metrics"] is None
        assert "Nowhere" in body["message"]

    def test_inverted_period(self, client):
        response = client.get("/api/v1/accuracy/metrics", params={
            "location_name": "Wet",
            "start": "2024-01-16T00:00:00+00:00",
            "end": "2024-01-15T00:00:00+00:00",
        })
        assert response.status_code == 422
