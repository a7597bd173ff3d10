"""
In-process record store for development and tests.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from backend.pumpwatch.accuracy.models import AccuracyMetrics, ForecastPoint, ForecastVerification
from backend.pumpwatch.core.errors import StoreError
from backend.pumpwatch.ingestion.models import FeedFamily, FusedRecord
from backend.pumpwatch.radar.models import ReflectivitySample
from backend.pumpwatch.storage.base import RecordStore, latest_per_key

logger = logging.getLogger(__name__)


def _in_range(value: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryRecordStore(RecordStore):
    """Lists guarded only by the event loop; every batch lands in one step."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._fused: List[FusedRecord] = []
        self._samples: List[ReflectivitySample] = []
        self._forecasts: Dict[int, ForecastPoint] = {}
        self._verifications: Dict[int, ForecastVerification] = {}
        self._metrics: List[AccuracyMetrics] = []

    # ── Fused ──

    async def insert_fused(self, records: Sequence[FusedRecord]) -> int:
        batch = [replace(r, id=next(self._ids)) for r in records]
        self._fused.extend(batch)
        return len(batch)

    async def latest_fused(self, family: FeedFamily) -> List[FusedRecord]:
        rows = [r for r in self._fused if r.family == family]
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
        rows = [
            r for r in self._fused
            if (family is None or r.family == family)
            and (pump_name is None or r.pump_name == pump_name)
            and _in_range(r.fetched_at, start, end)
        ]
        rows.sort(key=lambda r: (r.fetched_at, r.id or 0), reverse=not ascending)
        return rows[:limit] if limit is not None else rows

    async def distinct_pump_names(self) -> List[str]:
        return sorted({r.pump_name for r in self._fused})

    # ── Samples ──

    async def insert_samples(self, samples: Sequence[ReflectivitySample]) -> int:
        batch = [replace(s, id=next(self._ids)) for s in samples]
        self._samples.extend(batch)
        return len(batch)

    async def recent_samples(
        self, *, pump_name: Optional[str] = None, alerts_only: bool = False, limit: int = 100,
    ) -> List[ReflectivitySample]:
        rows = [
            s for s in self._samples
            if (pump_name is None or s.pump.name == pump_name)
            and (not alerts_only or s.should_alert)
        ]
        rows.sort(key=lambda s: (s.captured_at, s.id or 0), reverse=True)
        return rows[:limit]

    # ── Forecasts ──

    async def insert_forecasts(self, points: Sequence[ForecastPoint]) -> int:
        for point in points:
            point.id = next(self._ids)
            self._forecasts[point.id] = replace(point, verification=None)
        return len(points)

    async def find_forecasts(
        self,
        *,
        location_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        verified: Optional[bool] = None,
    ) -> List[ForecastPoint]:
        rows = []
        for fid, point in self._forecasts.items():
            if location_name is not None and point.location_name != location_name:
                continue
            if not _in_range(point.target_time, start, end):
                continue
            is_verified = fid in self._verifications
            if verified is not None and is_verified != verified:
                continue
            rows.append(replace(point, verification=self._verifications.get(fid)))
        rows.sort(key=lambda p: (p.target_time, p.id or 0))
        return rows

    async def attach_verification(self, verification: ForecastVerification) -> None:
        fid = verification.forecast_id
        if fid not in self._forecasts:
            raise StoreError("attach_verification", "unknown forecast", forecast_id=fid)
        if fid in self._verifications:
            raise StoreError("attach_verification", "forecast already verified", forecast_id=fid)
        self._verifications[fid] = verification

    # ── Metrics ──

    async def insert_metrics(self, metrics: AccuracyMetrics) -> int:
        metrics.id = next(self._ids)
        self._metrics.append(metrics)
        return metrics.id

    async def metrics_history(
        self, *, location_name: Optional[str] = None, limit: int = 10,
    ) -> List[AccuracyMetrics]:
        rows = [m for m in self._metrics if location_name is None or m.location_name == location_name]
        rows.sort(key=lambda m: (m.calculated_at, m.id or 0), reverse=True)
        return rows[:limit]
