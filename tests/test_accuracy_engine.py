"""
test_accuracy_engine.py — forecast verification against fused rainfall,
metric snapshots and history.

Run with:
    pytest tests/test_accuracy_engine.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.pumpwatch.accuracy.accuracy_engine import AccuracyEngine, nearest_in_time
from backend.pumpwatch.accuracy.models import ForecastPoint, ForecastVerification
from backend.pumpwatch.core.errors import StoreError
from backend.pumpwatch.ingestion.models import FeedFamily, FusedRecord
from backend.pumpwatch.storage.memory_store import InMemoryRecordStore


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

T0 = datetime(2024, 1, 15, 6, 0, tzinfo=timezone.utc)
PUMP = "Kelinci"


def _reading(value: float, observed: datetime, family=FeedFamily.RAINFALL, pump=PUMP) -> FusedRecord:
    return FusedRecord(
        pump_name=pump,
        location_code="kelinci",
        family=family,
        lat=-6.1614,
        lng=106.8375,
        nearest_station_name="Sta Kelinci",
        distance_km=0.4,
        value=value,
        status_label="Light Rain",
        fetched_at=observed + timedelta(minutes=2),
        source_observed_at=observed,
    )


def _forecast(hour: int, precipitation: float, probability=None, location=PUMP) -> ForecastPoint:
    return ForecastPoint(
        location_name=location,
        lat=-6.1614,
        lng=106.8375,
        target_time=T0 + timedelta(hours=hour),
        precipitation=precipitation,
        probability=probability,
        weather_code=61,
        fetched_at=T0 - timedelta(days=1),
    )


def _seed(store, readings, forecasts):
    async def go():
        await store.insert_fused(readings)
        await store.insert_forecasts(forecasts)
    asyncio.run(go())


# ═══════════════════════════════════════════════════════════════════════════
# nearest_in_time
# ═══════════════════════════════════════════════════════════════════════════

class TestNearestInTime:

    def test_picks_closest_within_tolerance(self):
        readings = [_reading(1.0, T0 - timedelta(minutes=4)), _reading(2.0, T0 + timedelta(minutes=1))]
        times = [r.observed_time for r in readings]
        match = nearest_in_time(T0, readings, times, timedelta(minutes=5))
        assert match.value == 2.0

    def test_tie_prefers_earlier(self):
        readings = [_reading(1.0, T0 - timedelta(minutes=3)), _reading(2.0, T0 + timedelta(minutes=3))]
        times = [r.observed_time for r in readings]
        assert nearest_in_time(T0, readings, times, timedelta(minutes=5)).value == 1.0

    def test_outside_tolerance(self):
        readings = [_reading(1.0, T0 + timedelta(minutes=6))]
        times = [r.observed_time for r in readings]
        assert nearest_in_time(T0, readings, times, timedelta(minutes=5)) is None

    def test_boundary_inclusive(self):
        readings = [_reading(1.0, T0 + timedelta(minutes=5))]
        times = [r.observed_time for r in readings]
        assert nearest_in_time(T0, readings, times, timedelta(minutes=5)) is not None

    def test_empty(self):
        assert nearest_in_time(T0, [], [], timedelta(minutes=5)) is None


# ═══════════════════════════════════════════════════════════════════════════
# verify
# ═══════════════════════════════════════════════════════════════════════════

class TestVerify:

    def test_matches_and_unmatched(self):
        store = InMemoryRecordStore()
        _seed(
            store,
            [
                _reading(3.0, T0 + timedelta(minutes=2)),
                _reading(0.0, T0 + timedelta(hours=1, minutes=-1)),
                _reading(9.9, T0 + timedelta(hours=1), family=FeedFamily.WATER_LEVEL),
            ],
            [_forecast(0, 2.5), _forecast(1, 0.0), _forecast(2, 1.0)],
        )
        engine = AccuracyEngine(store, tolerance_minutes=5, threshold_mm=2.0)
        result = asyncio.run(engine.verify(T0, T0 + timedelta(hours=3)))

        assert (result.verified, result.unmatched, result.failed) == (2, 1, 0)
        assert result.ok

        points = asyncio.run(store.find_forecasts(location_name=PUMP))
        first, second, third = points
        assert first.verification.actual_value == 3.0
        assert first.verification.time_delta_minutes == pytest.approx(2.0)
        assert first.verification.source_station == "Sta Kelinci"
        assert first.precipitation == 2.5
        assert second.verification.actual_value == 0.0
        assert second.verification.time_delta_minutes == pytest.approx(-1.0)
        assert third.verification is None

    def test_other_location_readings_ignored(self):
        store = InMemoryRecordStore()
        _seed(store, [_reading(3.0, T0, pump="Elsewhere")], [_forecast(0, 2.5)])
        result = asyncio.run(AccuracyEngine(store).verify(T0, T0 + timedelta(hours=1)))
        assert result.verified == 0
        assert result.unmatched == 1

    def test_second_pass_is_noop(self):
        store = InMemoryRecordStore()
        _seed(store, [_reading(3.0, T0)], [_forecast(0, 2.5)])
        engine = AccuracyEngine(store)
        asyncio.run(engine.verify(T0, T0 + timedelta(hours=1)))
        again = asyncio.run(engine.verify(T0, T0 + timedelta(hours=1)))
        assert again.verified == 0
        assert again.unmatched == 0

    def test_store_error_counts_as_failed(self):
        class BrokenAttach(InMemoryRecordStore):
            async def attach_verification(self, verification):
                raise StoreError("attach_verification", "locked")

        store = BrokenAttach()
        _seed(store, [_reading(3.0, T0)], [_forecast(0, 2.5)])
        result = asyncio.run(AccuracyEngine(store).verify(T0, T0 + timedelta(hours=1)))
        assert result.failed == 1
        assert not result.ok
        assert "locked" in result.errors[0]

    def test_verification_is_write_once(self):
        store = InMemoryRecordStore()
        _seed(store, [], [_forecast(0, 2.5)])
        point = asyncio.run(store.find_forecasts())[0]
        verification = ForecastVerification(
            forecast_id=point.id, actual_value=1.0, actual_time=T0,
            time_delta_minutes=0.0, source_station="S", verified_at=T0,
        )
        asyncio.run(store.attach_verification(verification))
        with pytest.raises(StoreError):
            asyncio.run(store.attach_verification(verification))


# ═══════════════════════════════════════════════════════════════════════════
# calculate_metrics / history
# ═══════════════════════════════════════════════════════════════════════════

class TestMetrics:

    def test_none_without_verified_points(self):
        store = InMemoryRecordStore()
        _seed(store, [], [_forecast(0, 2.5)])
        engine = AccuracyEngine(store)
        assert asyncio.run(engine.calculate_metrics(PUMP, T0, T0 + timedelta(hours=1))) is None
        assert asyncio.run(engine.history()) == []

    def test_perfect_forecast(self):
        store = InMemoryRecordStore()
        _seed(
            store,
            [_reading(v, T0 + timedelta(hours=h)) for h, v in enumerate([0.0, 3.0, 6.0])],
            [_forecast(h, v, probability=p) for h, (v, p) in enumerate([(0.0, 0), (3.0, 100), (6.0, 100)])],
        )
        engine = AccuracyEngine(store, threshold_mm=2.0)

        async def go():
            await engine.verify(T0, T0 + timedelta(hours=3))
            return await engine.calculate_metrics(PUMP, T0, T0 + timedelta(hours=3))

        result = asyncio.run(go())
        assert result.mae == 0.0
        assert result.rmse == 0.0
        assert result.bias == 0.0
        assert result.correlation == pytest.approx(1.0)
        assert result.brier_score == 0.0
        assert result.accuracy == 1.0
        assert result.rainy_total == 2
        assert result.dry_total == 1
        assert result.verified_forecasts == 3
        assert result.reliability == "Excellent"
        assert result.threshold_mm == 2.0

    def test_history_newest_first_and_capped(self):
        store = InMemoryRecordStore()
        _seed(store, [_reading(1.0, T0)], [_forecast(0, 2.0)])
        engine = AccuracyEngine(store, history_limit=2)

        async def go():
            await engine.verify(T0, T0 + timedelta(hours=1))
            for _ in range(3):
                await engine.calculate_metrics(PUMP, T0, T0 + timedelta(hours=1))
            return await engine.history(PUMP, limit=10)

        history = asyncio.run(go())
        assert len(history) == 2
        assert history[0].id > history[1].id

    def test_not_persisted_on_request(self):
        store = InMemoryRecordStore()
        _seed(store, [_reading(1.0, T0)], [_forecast(0, 2.0)])
        engine = AccuracyEngine(store)

        async def go():
            await engine.verify(T0, T0 + timedelta(hours=1))
            await engine.calculate_metrics(PUMP, T0, T0 + timedelta(hours=1), persist=False)
            return await engine.history()

        assert asyncio.run(go()) == []

    def test_to_dict_shape(self):
        store = InMemoryRecordStore()
        _seed(store, [_reading(1.0, T0)], [_forecast(0, 2.0)])
        engine = AccuracyEngine(store)

        async def go():
            await engine.verify(T0, T0 + timedelta(hours=1))
            return await engine.calculate_metrics(PUMP, T0, T0 + timedelta(hours=1))

        d = asyncio.run(go()).to_dict()
        assert d["location"]["name"] == PUMP
        assert d["metrics"]["mae"] == pytest.approx(1.0)
        assert d["metrics"]["correlation"] is None
