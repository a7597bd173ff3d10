"""
SQL record store — SQLAlchemy 2.0 async ORM.

Every bulk insert runs in one transaction, so a failed batch leaves no
partial cycle behind. The latest-per-pump view is an explicit
``GROUP BY pump_name / MAX(fetched_at)`` join.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.pumpwatch.accuracy.models import AccuracyMetrics, ForecastPoint, ForecastVerification
from backend.pumpwatch.core.database import close_db, create_engine_and_sessions, init_db
from backend.pumpwatch.core.errors import StoreError
from backend.pumpwatch.ingestion.models import FeedFamily, FusedRecord, PumpLocation
from backend.pumpwatch.radar.models import ReflectivitySample
from backend.pumpwatch.radar.reflectivity import RainIntensity
from backend.pumpwatch.storage.base import RecordStore, latest_per_key
from backend.pumpwatch.storage.tables import (
    AccuracySnapshotRow,
    ForecastPointRow,
    ForecastVerificationRow,
    FusedRecordRow,
    ReflectivitySampleRow,
)

logger = logging.getLogger(__name__)

_METRIC_FIELDS = (
    "location_name", "lat", "lng", "period_start", "period_end", "total_forecasts",
    "verified_forecasts", "threshold_mm", "mae", "rmse", "bias", "correlation",
    "brier_score", "accuracy", "precision", "recall", "f1_score", "rainy_correct",
    "rainy_total", "dry_correct", "dry_total", "avg_predicted", "avg_actual",
    "max_error", "reliability", "calculated_at",
)


# ── Row ↔ model conversion ──

def _fused_to_row(r: FusedRecord) -> FusedRecordRow:
    return FusedRecordRow(
        family=r.family.value, pump_name=r.pump_name, location_code=r.location_code,
        lat=r.lat, lng=r.lng, nearest_station_name=r.nearest_station_name,
        distance_km=r.distance_km, value=r.value, status_label=r.status_label,
        fetched_at=r.fetched_at, source_observed_at=r.source_observed_at,
    )


def _row_to_fused(row: FusedRecordRow) -> FusedRecord:
    return FusedRecord(
        pump_name=row.pump_name, location_code=row.location_code,
        family=FeedFamily(row.family), lat=row.lat, lng=row.lng,
        nearest_station_name=row.nearest_station_name, distance_km=row.distance_km,
        value=row.value, status_label=row.status_label, fetched_at=row.fetched_at,
        source_observed_at=row.source_observed_at, id=row.id,
    )


def _sample_to_row(s: ReflectivitySample) -> ReflectivitySampleRow:
    return ReflectivitySampleRow(
        pump_name=s.pump.name, lat=s.pump.lat, lng=s.pump.lng, dbz=s.dbz,
        rain_rate_mm_h=s.rain_rate_mm_h, intensity=s.intensity.value,
        confidence=s.confidence, captured_at=s.captured_at, radar_station=s.radar_station,
        radar_time=s.radar_time, should_alert=s.should_alert, failed=s.failed, error=s.error,
    )


def _row_to_sample(row: ReflectivitySampleRow) -> ReflectivitySample:
    return ReflectivitySample(
        pump=PumpLocation(row.pump_name, row.lat, row.lng), dbz=row.dbz,
        rain_rate_mm_h=row.rain_rate_mm_h, intensity=RainIntensity(row.intensity),
        confidence=row.confidence, captured_at=row.captured_at,
        radar_station=row.radar_station, radar_time=row.radar_time,
        should_alert=row.should_alert, failed=row.failed, error=row.error, id=row.id,
    )


def _row_to_forecast(
    row: ForecastPointRow, ver: Optional[ForecastVerificationRow],
) -> ForecastPoint:
    verification = None
    if ver is not None:
        verification = ForecastVerification(
            forecast_id=ver.forecast_id, actual_value=ver.actual_value,
            actual_time=ver.actual_time, time_delta_minutes=ver.time_delta_minutes,
            source_station=ver.source_station, verified_at=ver.verified_at,
        )
    return ForecastPoint(
        location_name=row.location_name, lat=row.lat, lng=row.lng,
        target_time=row.target_time, precipitation=row.precipitation,
        probability=row.probability, weather_code=row.weather_code,
        fetched_at=row.fetched_at, temperature=row.temperature, rain=row.rain,
        id=row.id, verification=verification,
    )


class SqlRecordStore(RecordStore):
    """
    Usage:
        store = SqlRecordStore("sqlite+aiosqlite:///:memory:")
        await store.init()
        await store.insert_fused(records)
    """

    def __init__(self, url: str, *, echo: bool = False):
        self.url = url
        self.engine, self.sessions = create_engine_and_sessions(url, echo=echo)

    async def init(self) -> None:
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise StoreError("init", str(e)) from e

    async def close(self) -> None:
        await close_db(self.engine)

    async def _add_all(self, operation: str, rows: list) -> list:
        if not rows:
            return rows
        try:
            async with self.sessions() as session:
                async with session.begin():
                    session.add_all(rows)
                    await session.flush()
        except SQLAlchemyError as e:
            logger.error("Store %s failed", operation, exc_info=True)
            raise StoreError(operation, str(e), rows=len(rows)) from e
        return rows

    async def _select(self, operation: str, stmt):
        try:
            async with self.sessions() as session:
                result = await session.execute(stmt)
                return result.all()
        except SQLAlchemyError as e:
            logger.error("Store %s failed", operation, exc_info=True)
            raise StoreError(operation, str(e)) from e

    # ── Fused ──

    async def insert_fused(self, records: Sequence[FusedRecord]) -> int:
        rows = await self._add_all("insert_fused", [_fused_to_row(r) for r in records])
        return len(rows)

    async def latest_fused(self, family: FeedFamily) -> List[FusedRecord]:
        newest = (
            select(
                FusedRecordRow.pump_name.label("pump_name"),
                func.max(FusedRecordRow.fetched_at).label("max_fetched"),
            )
            .where(FusedRecordRow.family == family.value)
            .group_by(FusedRecordRow.pump_name)
            .subquery()
        )
        stmt = (
            select(FusedRecordRow)
            .join(
                newest,
                and_(
                    FusedRecordRow.pump_name == newest.c.pump_name,
                    FusedRecordRow.fetched_at == newest.c.max_fetched,
                ),
            )
            .where(FusedRecordRow.family == family.value)
            .order_by(FusedRecordRow.id)
        )
        rows = [_row_to_fused(r) for (r,) in await self._select("latest_fused", stmt)]
        # Two batches stamped with the same fetched_at: keep one per pump
        return latest_per_key(rows, key=lambda r: r.pump_name, timestamp=lambda r: r.fetched_at)

    async def fused_history(
        self,
        *,
        family: Optional[FeedFamily] = None,
        pump_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        ascending: bool = True,
    ) -> List[FusedRecord]:
        stmt = select(FusedRecordRow)
        if family is not None:
            stmt = stmt.where(FusedRecordRow.family == family.value)
        if pump_name is not None:
            stmt = stmt.where(FusedRecordRow.pump_name == pump_name)
        if start is not None:
            stmt = stmt.where(FusedRecordRow.fetched_at >= start)
        if end is not None:
            stmt = stmt.where(FusedRecordRow.fetched_at <= end)
        if ascending:
            stmt = stmt.order_by(FusedRecordRow.fetched_at.asc(), FusedRecordRow.id.asc())
        else:
            stmt = stmt.order_by(FusedRecordRow.fetched_at.desc(), FusedRecordRow.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_row_to_fused(r) for (r,) in await self._select("fused_history", stmt)]

    async def distinct_pump_names(self) -> List[str]:
        stmt = select(FusedRecordRow.pump_name).distinct().order_by(FusedRecordRow.pump_name)
        return [name for (name,) in await self._select("distinct_pump_names", stmt)]

    # ── Samples ──

    async def insert_samples(self, samples: Sequence[ReflectivitySample]) -> int:
        rows = await self._add_all("insert_samples", [_sample_to_row(s) for s in samples])
        return len(rows)

    async def recent_samples(
        self, *, pump_name: Optional[str] = None, alerts_only: bool = False, limit: int = 100,
    ) -> List[ReflectivitySample]:
        stmt = select(ReflectivitySampleRow)
        if pump_name is not None:
            stmt = stmt.where(ReflectivitySampleRow.pump_name == pump_name)
        if alerts_only:
            stmt = stmt.where(ReflectivitySampleRow.should_alert.is_(True))
        stmt = stmt.order_by(
            ReflectivitySampleRow.captured_at.desc(), ReflectivitySampleRow.id.desc(),
        ).limit(limit)
        return [_row_to_sample(r) for (r,) in await self._select("recent_samples", stmt)]

    # ── Forecasts ──

    async def insert_forecasts(self, points: Sequence[ForecastPoint]) -> int:
        rows = [
            ForecastPointRow(
                location_name=p.location_name, lat=p.lat, lng=p.lng,
                target_time=p.target_time, precipitation=p.precipitation,
                probability=p.probability, weather_code=p.weather_code,
                temperature=p.temperature, rain=p.rain, fetched_at=p.fetched_at,
            )
            for p in points
        ]
        await self._add_all("insert_forecasts", rows)
        for point, row in zip(points, rows):
            point.id = row.id
        return len(rows)

    async def find_forecasts(
        self,
        *,
        location_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        verified: Optional[bool] = None,
    ) -> List[ForecastPoint]:
        stmt = select(ForecastPointRow, ForecastVerificationRow).outerjoin(
            ForecastVerificationRow,
            ForecastVerificationRow.forecast_id == ForecastPointRow.id,
        )
        if location_name is not None:
            stmt = stmt.where(ForecastPointRow.location_name == location_name)
        if start is not None:
            stmt = stmt.where(ForecastPointRow.target_time >= start)
        if end is not None:
            stmt = stmt.where(ForecastPointRow.target_time <= end)
        if verified is True:
            stmt = stmt.where(ForecastVerificationRow.forecast_id.is_not(None))
        elif verified is False:
            stmt = stmt.where(ForecastVerificationRow.forecast_id.is_(None))
        stmt = stmt.order_by(ForecastPointRow.target_time.asc(), ForecastPointRow.id.asc())
        return [_row_to_forecast(p, v) for p, v in await self._select("find_forecasts", stmt)]

    async def attach_verification(self, verification: ForecastVerification) -> None:
        row = ForecastVerificationRow(
            forecast_id=verification.forecast_id,
            actual_value=verification.actual_value,
            actual_time=verification.actual_time,
            time_delta_minutes=verification.time_delta_minutes,
            source_station=verification.source_station,
            verified_at=verification.verified_at,
        )
        try:
            async with self.sessions() as session:
                async with session.begin():
                    if await session.get(ForecastPointRow, verification.forecast_id) is None:
                        raise StoreError(
                            "attach_verification", "unknown forecast",
                            forecast_id=verification.forecast_id,
                        )
                    session.add(row)
        except IntegrityError as e:
            raise StoreError(
                "attach_verification", "forecast already verified",
                forecast_id=verification.forecast_id,
            ) from e
        except SQLAlchemyError as e:
            logger.error("Store attach_verification failed", exc_info=True)
            raise StoreError("attach_verification", str(e)) from e

    # ── Metrics ──

    async def insert_metrics(self, metrics: AccuracyMetrics) -> int:
        row = AccuracySnapshotRow(**{f: getattr(metrics, f) for f in _METRIC_FIELDS})
        await self._add_all("insert_metrics", [row])
        metrics.id = row.id
        return row.id

    async def metrics_history(
        self, *, location_name: Optional[str] = None, limit: int = 10,
    ) -> List[AccuracyMetrics]:
        stmt = select(AccuracySnapshotRow)
        if location_name is not None:
            stmt = stmt.where(AccuracySnapshotRow.location_name == location_name)
        stmt = stmt.order_by(
            AccuracySnapshotRow.calculated_at.desc(), AccuracySnapshotRow.id.desc(),
        ).limit(limit)
        return [
            AccuracyMetrics(id=r.id, **{f: getattr(r, f) for f in _METRIC_FIELDS})
            for (r,) in await self._select("metrics_history", stmt)
        ]
