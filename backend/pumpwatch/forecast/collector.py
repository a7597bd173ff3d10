"""
Forecast collection — hourly forecasts for every pump, stored as one batch.

Calls to the forecast provider are capped (``FORECAST_CONCURRENCY``) and
spaced (``FORECAST_REQUEST_DELAY_S``) to stay within its courtesy limits.
A pump whose fetch fails is counted and skipped; the run still stores
everything that did arrive.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from backend.pumpwatch.accuracy.models import ForecastPoint
from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import ConfigurationError, PumpWatchError, StoreError
from backend.pumpwatch.forecast.forecast_client import ForecastClient, ForecastSeries
from backend.pumpwatch.ingestion.models import PumpLocation
from backend.pumpwatch.storage.base import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class CollectionSummary:
    fetched_at: datetime
    points_per_pump: Dict[str, int] = field(default_factory=dict)
    failed_pumps: Dict[str, str] = field(default_factory=dict)
    inserted: int = 0
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "fetched_at": self.fetched_at.isoformat(),
            "succeeded": len(self.points_per_pump),
            "failed": len(self.failed_pumps),
            "points_per_pump": dict(self.points_per_pump),
            "failed_pumps": dict(self.failed_pumps),
            "inserted": self.inserted,
            "duration_ms": round(self.duration_ms, 1),
            "errors": list(self.errors),
        }


def series_to_points(pump: PumpLocation, series: ForecastSeries, fetched_at: datetime) -> List[ForecastPoint]:
    return [
        ForecastPoint(
            location_name=pump.name,
            lat=pump.lat,
            lng=pump.lng,
            target_time=hour.time,
            precipitation=hour.precipitation,
            probability=hour.probability,
            weather_code=hour.weather_code,
            fetched_at=fetched_at,
            temperature=hour.temperature,
            rain=hour.rain,
        )
        for hour in series.hours
    ]


class ForecastCollector:
    """
    Usage:
        collector = ForecastCollector(roster, ForecastClient(), store)
        summary = await collector.collect()
    """

    def __init__(
        self,
        roster: Sequence[PumpLocation],
        forecast_client: ForecastClient,
        store: RecordStore,
        *,
        concurrency: Optional[int] = None,
        request_delay_s: Optional[float] = None,
    ):
        self.roster = list(roster)
        self.forecast_client = forecast_client
        self.store = store
        self.concurrency = concurrency or settings.FORECAST_CONCURRENCY
        self.request_delay_s = (
            request_delay_s if request_delay_s is not None else settings.FORECAST_REQUEST_DELAY_S
        )
        self._last_request_time: float = 0.0
        self._pacing = asyncio.Lock()

    async def _rate_limit(self) -> None:
        """Enforce the minimum interval between request starts."""
        async with self._pacing:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.request_delay_s:
                await asyncio.sleep(self.request_delay_s - elapsed)
            self._last_request_time = time.monotonic()

    async def _fetch_pump(
        self, pump: PumpLocation, semaphore: asyncio.Semaphore, fetched_at: datetime,
    ) -> List[ForecastPoint]:
        async with semaphore:
            await self._rate_limit()
            series = await self.forecast_client.fetch_hourly(pump.lat, pump.lng)
        return series_to_points(pump, series, fetched_at)

    async def collect(self) -> CollectionSummary:
        """Fetch every pump's forecast and store the run as one batch."""
        start = time.perf_counter()
        fetched_at = datetime.now(timezone.utc)
        summary = CollectionSummary(fetched_at=fetched_at)
        semaphore = asyncio.Semaphore(self.concurrency)

        results = await asyncio.gather(
            *(self._fetch_pump(p, semaphore, fetched_at) for p in self.roster),
            return_exceptions=True,
        )

        points: List[ForecastPoint] = []
        for pump, result in zip(self.roster, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                reason = (
                    result.message if isinstance(result, PumpWatchError)
                    else f"{type(result).__name__}: {result}"
                )
                summary.failed_pumps[pump.name] = reason
                logger.warning("Forecast fetch failed for %s: %s", pump.name, reason,
                               extra={"pump": pump.name})
            else:
                summary.points_per_pump[pump.name] = len(result)
                points.extend(result)

        if points:
            try:
                summary.inserted = await self.store.insert_forecasts(points)
            except StoreError as e:
                summary.errors.append(e.message)
                logger.error("Storing forecast batch failed: %s", e.message)
        if self.roster and not summary.points_per_pump:
            summary.errors.append("No forecast could be fetched for any pump")

        summary.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Forecast run: %d/%d pumps, %d points stored",
            len(summary.points_per_pump), len(self.roster), summary.inserted,
            extra={"inserted": summary.inserted, "duration_ms": summary.duration_ms},
        )
        return summary


async def save_forecast_points(store: RecordStore, points: Sequence[ForecastPoint]) -> int:
    """Store manually submitted forecast points as one batch."""
    for point in points:
        if point.target_time.tzinfo is None:
            raise ConfigurationError(
                f"target_time for {point.location_name!r} must be timezone-aware",
                field="target_time",
            )
        if point.fetched_at.tzinfo is None:
            point.fetched_at = point.fetched_at.replace(tzinfo=timezone.utc)
    return await store.insert_forecasts(points)
