"""
Forecast verification and accuracy scoring.

Verification pairs each unverified forecast hour with the rainfall reading
fused for the same pump whose observation time is nearest to the forecast's
target time, within ``VERIFY_TOLERANCE_MINUTES``. The pairing is stored as
a write-once companion record; the forecast itself is never rewritten.

    verify(start, end)                → {verified, failed, unmatched}
    calculate_metrics(loc, start, end) → AccuracyMetrics | None
    history(loc, limit)               → newest snapshots first
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from backend.pumpwatch.accuracy import metrics as m
from backend.pumpwatch.accuracy.models import (
    AccuracyMetrics,
    ForecastPoint,
    ForecastVerification,
    VerificationResult,
)
from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import StoreError
from backend.pumpwatch.ingestion.models import FeedFamily, FusedRecord
from backend.pumpwatch.storage.base import RecordStore

logger = logging.getLogger(__name__)

# Upper padding when loading candidate readings: a reading observed inside the
# window may have been fetched (and stamped) up to this much later.
FETCH_LAG = timedelta(hours=6)


def nearest_in_time(
    target: datetime, readings: List[FusedRecord], times: List[datetime], tolerance: timedelta,
) -> Optional[FusedRecord]:
    """Reading whose time is closest to ``target`` within ``tolerance``; earlier wins ties."""
    i = bisect.bisect_left(times, target)
    best: Optional[FusedRecord] = None
    best_delta = tolerance
    for j in (i - 1, i):
        if 0 <= j < len(times):
            delta = abs(times[j] - target)
            if delta <= best_delta and (best is None or delta < best_delta):
                best, best_delta = readings[j], delta
    return best


class AccuracyEngine:
    """
    Usage:
        engine = AccuracyEngine(store)
        counts = await engine.verify(start, end)
        metrics = await engine.calculate_metrics("Kelinci", start, end)
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        tolerance_minutes: Optional[float] = None,
        threshold_mm: Optional[float] = None,
        history_limit: Optional[int] = None,
    ):
        self.store = store
        self.tolerance = timedelta(
            minutes=tolerance_minutes if tolerance_minutes is not None else settings.VERIFY_TOLERANCE_MINUTES
        )
        # One definition of "it rained", shared with the radar alert threshold
        self.threshold_mm = (
            threshold_mm if threshold_mm is not None else settings.RAIN_ALERT_THRESHOLD_MM_H
        )
        self.history_limit = history_limit or settings.METRICS_HISTORY_LIMIT

    # ── Verification ──

    async def _readings_for(
        self, location: str, start: datetime, end: datetime,
    ) -> tuple:
        records = await self.store.fused_history(
            family=FeedFamily.RAINFALL,
            pump_name=location,
            start=start - self.tolerance,
            end=end + self.tolerance + FETCH_LAG,
        )
        readings = [r for r in records if r.value is not None]
        readings.sort(key=lambda r: r.observed_time)
        return readings, [r.observed_time for r in readings]

    async def verify(self, start: datetime, end: datetime) -> VerificationResult:
        """
        Verify unverified forecasts with ``target_time`` in [start, end].

        Forecasts with no reading inside the tolerance stay unverified and
        are counted as ``unmatched``. ``failed`` counts store errors only.
        """
        result = VerificationResult(start=start, end=end)
        pending = await self.store.find_forecasts(start=start, end=end, verified=False)

        by_location: Dict[str, List[ForecastPoint]] = defaultdict(list)
        for point in pending:
            by_location[point.location_name].append(point)

        now = datetime.now(timezone.utc)
        for location, points in by_location.items():
            try:
                readings, times = await self._readings_for(location, start, end)
            except StoreError as e:
                result.failed += len(points)
                result.errors.append(e.message)
                continue

            for point in points:
                reading = nearest_in_time(point.target_time, readings, times, self.tolerance)
                if reading is None:
                    result.unmatched += 1
                    continue
                delta = (reading.observed_time - point.target_time).total_seconds() / 60.0
                try:
                    await self.store.attach_verification(ForecastVerification(
                        forecast_id=point.id,
                        actual_value=float(reading.value),
                        actual_time=reading.observed_time,
                        time_delta_minutes=delta,
                        source_station=reading.nearest_station_name,
                        verified_at=now,
                    ))
                    result.verified += 1
                except StoreError as e:
                    result.failed += 1
                    result.errors.append(e.message)

        logger.info(
            "Verification %s → %s: %d verified, %d unmatched, %d failed",
            start.isoformat(), end.isoformat(), result.verified, result.unmatched, result.failed,
            extra={"verified": result.verified},
        )
        return result

    # ── Metrics ──

    async def calculate_metrics(
        self, location: str, start: datetime, end: datetime, *, persist: bool = True,
    ) -> Optional[AccuracyMetrics]:
        """Aggregate verified forecasts; None when there are none."""
        points = await self.store.find_forecasts(location_name=location, start=start, end=end)
        verified = [p for p in points if p.verification is not None]
        if not verified:
            logger.info("No verified forecasts for %s in period", location)
            return None

        predicted = [p.precipitation for p in verified]
        actual = [p.verification.actual_value for p in verified]
        probabilities = [p.probability for p in verified]

        mae_value = m.mae(predicted, actual)
        correlation = m.pearson(predicted, actual)
        table = m.contingency(predicted, actual, self.threshold_mm)
        errors = [abs(p - a) for p, a in zip(predicted, actual)]

        result = AccuracyMetrics(
            location_name=location,
            lat=verified[0].lat,
            lng=verified[0].lng,
            period_start=start,
            period_end=end,
            total_forecasts=len(points),
            verified_forecasts=len(verified),
            threshold_mm=self.threshold_mm,
            mae=mae_value,
            rmse=m.rmse(predicted, actual),
            bias=m.bias(predicted, actual),
            correlation=correlation,
            brier_score=m.brier_score(probabilities, actual, self.threshold_mm),
            accuracy=table.accuracy,
            precision=table.precision,
            recall=table.recall,
            f1_score=table.f1,
            rainy_correct=table.tp,
            rainy_total=table.rainy_total,
            dry_correct=table.tn,
            dry_total=table.dry_total,
            avg_predicted=sum(predicted) / len(predicted),
            avg_actual=sum(actual) / len(actual),
            max_error=max(errors),
            reliability=m.reliability_rating(mae_value, correlation),
            calculated_at=datetime.now(timezone.utc),
        )

        if persist:
            await self.store.insert_metrics(result)
        return result

    async def history(self, location: Optional[str] = None, limit: Optional[int] = None) -> List[AccuracyMetrics]:
        """Past snapshots, newest first, capped at ``METRICS_HISTORY_LIMIT``."""
        cap = min(limit or self.history_limit, self.history_limit)
        return await self.store.metrics_history(location_name=location, limit=cap)
