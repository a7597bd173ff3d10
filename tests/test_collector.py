"""
test_collector.py — forecast collection across the pump roster.

Covers:
    • Provider courtesy limits (concurrency cap, spacing between request starts)
    • Per-pump fetch failures counted while the rest of the run is stored
    • One batch insert per run, store failures reported in the summary

Run with:
    pytest tests/test_collector.py -v
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone

import httpx

from backend.pumpwatch.core.errors import StoreError, UpstreamUnavailableError
from backend.pumpwatch.forecast.collector import ForecastCollector
from backend.pumpwatch.forecast.forecast_client import ForecastSeries, HourlyForecast
from backend.pumpwatch.ingestion.models import PumpLocation
from backend.pumpwatch.storage.memory_store import InMemoryRecordStore


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

ROSTER = [
    PumpLocation("Pompa Kali Item", -6.15, 106.83),
    PumpLocation("Pompa Pluit", -6.12, 106.79),
    PumpLocation("Pompa Cideng", -6.17, 106.81),
    PumpLocation("Pompa Setiabudi", -6.21, 106.83),
    PumpLocation("Pompa Kelapa Gading", -6.16, 106.90),
]
START = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)


def _series(lat: float, lng: float, hours: int = 3) -> ForecastSeries:
    return ForecastSeries(
        latitude=lat,
        longitude=lng,
        timezone="Asia/Jakarta",
        hours=[
            HourlyForecast(
                time=START + timedelta(hours=i), temperature=27.0, rain=0.4,
                precipitation=0.4, probability=60.0, weather_code=61,
            )
            for i in range(hours)
        ],
    )


class CountingForecastClient:
    """Records request starts and the peak number of requests in flight."""

    def __init__(self, hold_s: float = 0.03, failures=None):
        self.hold_s = hold_s
        self.failures = failures or {}
        self.starts = []
        self.in_flight = 0
        self.peak = 0

    async def fetch_hourly(self, latitude, longitude):
        self.starts.append(time.monotonic())
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.hold_s)
            error = self.failures.get((latitude, longitude))
            if error is not None:
                raise error
            return _series(latitude, longitude)
        finally:
            self.in_flight -= 1

    async def close(self):
        pass


class CountingStore(InMemoryRecordStore):

    def __init__(self):
        super().__init__()
        self.forecast_batches = []

    async def insert_forecasts(self, points):
        self.forecast_batches.append(len(points))
        return await super().insert_forecasts(points)


class BrokenStore(InMemoryRecordStore):

    async def insert_forecasts(self, points):
        raise StoreError("insert_forecasts", "database is locked")


# ═══════════════════════════════════════════════════════════════════════════
# Rate limiting
# ═══════════════════════════════════════════════════════════════════════════

class TestRateLimit:

    def test_concurrency_cap(self):
        client = CountingForecastClient(hold_s=0.05)
        collector = ForecastCollector(
            ROSTER, client, InMemoryRecordStore(), concurrency=2, request_delay_s=0.0,
        )
        summary = asyncio.run(collector.collect())

        assert summary.ok
        assert len(client.starts) == len(ROSTER)
        assert client.peak <= 2

    def test_request_starts_are_spaced(self):
        delay = 0.02
        client = CountingForecastClient(hold_s=0.0)
        collector = ForecastCollector(
            ROSTER, client, InMemoryRecordStore(), concurrency=3, request_delay_s=delay,
        )
        asyncio.run(collector.collect())

        starts = sorted(client.starts)
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert len(gaps) == len(ROSTER) - 1
        # loop timers may fire a clock tick early
        assert min(gaps) >= delay - 0.005


# ═══════════════════════════════════════════════════════════════════════════
# Failure isolation
# ═══════════════════════════════════════════════════════════════════════════

class TestFailures:

    def test_failed_pumps_counted_rest_stored(self):
        pluit, cideng = ROSTER[1], ROSTER[2]
        client = CountingForecastClient(hold_s=0.0, failures={
            (pluit.lat, pluit.lng): UpstreamUnavailableError("forecast", "HTTP 503"),
            (cideng.lat, cideng.lng): httpx.TooManyRedirects("redirect loop"),
        })
        store = CountingStore()
        collector = ForecastCollector(ROSTER, client, store, concurrency=2, request_delay_s=0.0)
        summary = asyncio.run(collector.collect())

        assert set(summary.failed_pumps) == {"Pompa Pluit", "Pompa Cideng"}
        assert "TooManyRedirects" in summary.failed_pumps["Pompa Cideng"]
        assert "HTTP 503" in summary.failed_pumps["Pompa Pluit"]
        assert len(summary.points_per_pump) == 3
        assert summary.inserted == 9
        assert summary.ok

        stored = asyncio.run(store.find_forecasts())
        assert {p.location_name for p in stored} == {
            "Pompa Kali Item", "Pompa Setiabudi", "Pompa Kelapa Gading",
        }

        d = summary.to_dict()
        assert d["succeeded"] == 3
        assert d["failed"] == 2

    def test_every_pump_failing_is_an_error(self):
        failures = {
            (p.lat, p.lng): UpstreamUnavailableError("forecast", "HTTP 503") for p in ROSTER
        }
        client = CountingForecastClient(hold_s=0.0, failures=failures)
        collector = ForecastCollector(
            ROSTER, client, InMemoryRecordStore(), concurrency=2, request_delay_s=0.0,
        )
        summary = asyncio.run(collector.collect())

        assert not summary.ok
        assert summary.inserted == 0
        assert len(summary.failed_pumps) == len(ROSTER)


# ═══════════════════════════════════════════════════════════════════════════
# Storage
# ═══════════════════════════════════════════════════════════════════════════

class TestStorage:

    def test_single_batch_insert(self):
        store = CountingStore()
        collector = ForecastCollector(
            ROSTER, CountingForecastClient(hold_s=0.0), store, concurrency=2, request_delay_s=0.0,
        )
        summary = asyncio.run(collector.collect())

        assert store.forecast_batches == [len(ROSTER) * 3]
        assert summary.inserted == len(ROSTER) * 3
        assert summary.points_per_pump["Pompa Pluit"] == 3

    def test_points_carry_pump_and_fetch_time(self):
        store = InMemoryRecordStore()
        collector = ForecastCollector(
            ROSTER[:1], CountingForecastClient(hold_s=0.0), store, request_delay_s=0.0,
        )
        summary = asyncio.run(collector.collect())

        stored = asyncio.run(store.find_forecasts(location_name="Pompa Kali Item"))
        assert [p.target_time for p in stored] == [START + timedelta(hours=i) for i in range(3)]
        assert all(p.fetched_at == summary.fetched_at for p in stored)
        assert stored[0].lat == ROSTER[0].lat

    def test_store_error_reported(self):
        collector = ForecastCollector(
            ROSTER, CountingForecastClient(hold_s=0.0), BrokenStore(),
            concurrency=2, request_delay_s=0.0,
        )
        summary = asyncio.run(collector.collect())

        assert not summary.ok
        assert summary.inserted == 0
        assert len(summary.points_per_pump) == len(ROSTER)
        assert "database is locked" in summary.errors[0]
