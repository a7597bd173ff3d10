"""
test_fusion_engine.py — nearest-station fusion of both feeds onto the roster.

Covers:
    • Pure ``fuse`` join (one record per pump with a valid station, gaps otherwise)
    • Full cycle with a fake feed client and the in-memory store
    • Family isolation: one feed down or one batch rejected never blocks the other
    • Read-side views (latest merged view, per-day history)

Run with:
    pytest tests/test_fusion_engine.py -v
"""

from __future__ import annotations

import asyncio
from dataclasses import FrozenInstanceError
from datetime import date, datetime, timedelta, timezone

import pytest

from backend.pumpwatch.core.errors import StoreError, UpstreamUnavailableError
from backend.pumpwatch.ingestion.feed_parser import ParsedFeed, parse_feed
from backend.pumpwatch.ingestion.fusion_engine import SensorFusionEngine, fuse
from backend.pumpwatch.ingestion.models import FeedFamily, PumpLocation
from backend.pumpwatch.ingestion.views import latest_pump_view, list_pump_names, pump_history
from backend.pumpwatch.storage.memory_store import InMemoryRecordStore


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

FETCHED_AT = datetime(2024, 1, 15, 7, 0, tzinfo=timezone.utc)

PUMP_A = PumpLocation("A", -6.20, 106.80)
PUMP_B = PumpLocation("B", -6.30, 106.90)

RAINFALL_FEED = [
    {"nama": "Sta1", "lat": -6.201, "lng": 106.801, "val": "2,5"},
    {"nama": "Ghost", "lat": 0, "lng": 0, "val": "99"},
]
WATER_FEED = {"data": [
    {"NAMA_PINTU_AIR": "Gate", "LATITUDE": "-6,29", "LONGITUDE": "106,91", "TINGGI_AIR": "140"},
]}


class FakeFeedClient:
    """Stands in for FeedClient; values are ParsedFeed or an exception to raise."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    async def fetch(self, family: FeedFamily) -> ParsedFeed:
        self.calls.append(family)
        result = self.results[family]
        if isinstance(result, Exception):
            raise result
        return result


class RejectingStore(InMemoryRecordStore):
    """Rejects water-level batches only."""

    async def insert_fused(self, records):
        if records and records[0].family == FeedFamily.WATER_LEVEL:
            raise StoreError("insert_fused", "disk full")
        return await super().insert_fused(records)


def _feeds():
    return {
        FeedFamily.RAINFALL: parse_feed(FeedFamily.RAINFALL, RAINFALL_FEED),
        FeedFamily.WATER_LEVEL: parse_feed(FeedFamily.WATER_LEVEL, WATER_FEED["data"]),
    }


# ═══════════════════════════════════════════════════════════════════════════
# fuse
# ═══════════════════════════════════════════════════════════════════════════

class TestFuse:

    def test_scenario_single_pump(self):
        rain = parse_feed(FeedFamily.RAINFALL, RAINFALL_FEED)
        records, gaps = fuse([PUMP_A], rain.observations, FeedFamily.RAINFALL, FETCHED_AT)
        assert gaps == []
        assert len(records) == 1
        rec = records[0]
        assert rec.pump_name == "A"
        assert rec.value == 2.5
        assert rec.nearest_station_name == "Sta1"
        assert rec.distance_km == pytest.approx(0.16, abs=0.005)
        assert rec.fetched_at == FETCHED_AT

    def test_one_record_per_pump(self):
        rain = parse_feed(FeedFamily.RAINFALL, RAINFALL_FEED)
        records, gaps = fuse([PUMP_A, PUMP_B], rain.observations, FeedFamily.RAINFALL, FETCHED_AT)
        assert [r.pump_name for r in records] == ["A", "B"]
        # Ghost (0,0) never wins, even for B
        assert all(r.nearest_station_name == "Sta1" for r in records)
        assert gaps == []

    def test_gap_when_no_valid_station(self):
        ghost_only = parse_feed(FeedFamily.RAINFALL, [RAINFALL_FEED[1]])
        records, gaps = fuse([PUMP_A, PUMP_B], ghost_only.observations, FeedFamily.RAINFALL, FETCHED_AT)
        assert records == []
        assert gaps == ["A", "B"]

    def test_location_code_attached(self):
        pump = PumpLocation("Pulomas 2", -6.168, 106.88)
        rain = parse_feed(FeedFamily.RAINFALL, RAINFALL_FEED)
        records, _ = fuse([pump], rain.observations, FeedFamily.RAINFALL, FETCHED_AT)
        assert records[0].location_code == "pulomas"

    def test_records_are_immutable(self):
        rain = parse_feed(FeedFamily.RAINFALL, RAINFALL_FEED)
        records, _ = fuse([PUMP_A], rain.observations, FeedFamily.RAINFALL, FETCHED_AT)
        with pytest.raises(FrozenInstanceError):
            records[0].value = 99.0


# ═══════════════════════════════════════════════════════════════════════════
# Cycle
# ═══════════════════════════════════════════════════════════════════════════

class TestRunCycle:

    def test_both_families_persisted(self):
        store = InMemoryRecordStore()
        engine = SensorFusionEngine([PUMP_A, PUMP_B], FakeFeedClient(_feeds()), store)
        summary = asyncio.run(engine.run_cycle(FETCHED_AT))

        assert summary.ok
        rain = summary.outcomes[FeedFamily.RAINFALL]
        water = summary.outcomes[FeedFamily.WATER_LEVEL]
        assert rain.inserted == 2
        assert rain.fetched == 2
        assert water.inserted == 2

        latest = asyncio.run(store.latest_fused(FeedFamily.RAINFALL))
        assert {r.pump_name for r in latest} == {"A", "B"}

    def test_feed_down_does_not_block_other(self):
        results = _feeds()
        results[FeedFamily.WATER_LEVEL] = UpstreamUnavailableError("sensor-feed", "HTTP 503")
        store = InMemoryRecordStore()
        engine = SensorFusionEngine([PUMP_A], FakeFeedClient(results), store)
        summary = asyncio.run(engine.run_cycle(FETCHED_AT))

        assert not summary.ok
        assert summary.outcomes[FeedFamily.RAINFALL].inserted == 1
        assert summary.outcomes[FeedFamily.WATER_LEVEL].error
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert "water_level" in summary.errors[0]

    def test_store_rejection_isolated(self):
        store = RejectingStore()
        engine = SensorFusionEngine([PUMP_A], FakeFeedClient(_feeds()), store)
        summary = asyncio.run(engine.run_cycle(FETCHED_AT))

        assert summary.outcomes[FeedFamily.RAINFALL].ok
        assert "disk full" in summary.outcomes[FeedFamily.WATER_LEVEL].error
        assert len(asyncio.run(store.latest_fused(FeedFamily.RAINFALL))) == 1

    def test_gaps_counted_not_failed(self):
        results = _feeds()
        results[FeedFamily.RAINFALL] = parse_feed(FeedFamily.RAINFALL, [RAINFALL_FEED[1]])
        engine = SensorFusionEngine([PUMP_A], FakeFeedClient(results), InMemoryRecordStore())
        summary = asyncio.run(engine.run_cycle(FETCHED_AT))

        assert summary.ok
        assert summary.outcomes[FeedFamily.RAINFALL].gaps == ["A"]
        assert summary.to_dict()["families"]["rainfall"]["coverage_gaps"] == 1


# ═══════════════════════════════════════════════════════════════════════════
# Views
# ═══════════════════════════════════════════════════════════════════════════

class TestViews:

    def _run_two_cycles(self):
        store = InMemoryRecordStore()
        roster = [PUMP_A, PUMP_B]

        async def go():
            engine = SensorFusionEngine(roster, FakeFeedClient(_feeds()), store)
            await engine.run_cycle(FETCHED_AT)
            wetter = _feeds()
            wetter[FeedFamily.RAINFALL] = parse_feed(FeedFamily.RAINFALL, [
                {"nama": "Sta1", "lat": -6.201, "lng": 106.801, "val": "4"},
                {"nama": "Sta2", "lat": -6.301, "lng": 106.901, "val": "7,5"},
            ])
            engine.feed_client = FakeFeedClient(wetter)
            await engine.run_cycle(FETCHED_AT + timedelta(minutes=5))

        asyncio.run(go())
        return store

    def test_latest_view_sorted_by_rainfall(self):
        store = self._run_two_cycles()
        rows = asyncio.run(latest_pump_view(store))
        assert [r["pump_name"] for r in rows] == ["B", "A"]
        assert rows[0]["rainfall"]["value"] == 7.5
        assert rows[0]["water_level"]["value"] == 140.0
        assert rows[1]["rainfall"]["value"] == 4.0

    def test_history_ascending(self):
        store = self._run_two_cycles()
        history = asyncio.run(pump_history(store, "A", date(2024, 1, 15)))
        values = [r["value"] for r in history["rainfall"]]
        assert values == [2.5, 4.0]
        assert len(history["water_level"]) == 2

    def test_history_other_day_empty(self):
        store = self._run_two_cycles()
        history = asyncio.run(pump_history(store, "A", date(2024, 1, 16)))
        assert history["rainfall"] == []

    def test_pump_names(self):
        store = self._run_two_cycles()
        assert asyncio.run(list_pump_names(store)) == ["A", "B"]
