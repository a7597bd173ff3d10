"""
Process wiring — one container holding the store, clients, engines and
the job scheduler, built once at startup and handed to the API layer.

Registered jobs:
    monitor          radar check for every pump
    pump-sync        sensor fusion cycle (rainfall + water level)
    forecast-fetch   hourly forecast collection for every pump
    forecast-verify  verify forecasts of the last FORECAST_VERIFY_LOOKBACK_HOURS
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from backend.pumpwatch.accuracy.accuracy_engine import AccuracyEngine
from backend.pumpwatch.accuracy.models import VerificationResult
from backend.pumpwatch.core.config import Settings, settings as default_settings
from backend.pumpwatch.forecast.collector import ForecastCollector
from backend.pumpwatch.forecast.forecast_client import ForecastClient
from backend.pumpwatch.ingestion.feed_client import FeedClient
from backend.pumpwatch.ingestion.fusion_engine import SensorFusionEngine
from backend.pumpwatch.ingestion.models import PumpLocation
from backend.pumpwatch.ingestion.roster import load_roster
from backend.pumpwatch.radar.monitor_engine import MonitorEngine
from backend.pumpwatch.radar.radar_client import RadarClient
from backend.pumpwatch.scheduler.job_scheduler import JobScheduler
from backend.pumpwatch.storage import RecordStore, create_store

logger = logging.getLogger(__name__)

MONITOR_JOB = "monitor"
PUMP_SYNC_JOB = "pump-sync"
FORECAST_FETCH_JOB = "forecast-fetch"
FORECAST_VERIFY_JOB = "forecast-verify"


class ServiceContainer:
    """
    Usage:
        services = ServiceContainer()
        await services.startup()        # store init + timers + auto-start
        ...
        await services.shutdown()

    Every collaborator can be injected, which is how tests swap in an
    in-memory store or mock-transport clients.
    """

    def __init__(
        self,
        *,
        config: Optional[Settings] = None,
        store: Optional[RecordStore] = None,
        roster: Optional[Sequence[PumpLocation]] = None,
        feed_client: Optional[FeedClient] = None,
        radar_client: Optional[RadarClient] = None,
        forecast_client: Optional[ForecastClient] = None,
        scheduler: Optional[JobScheduler] = None,
    ):
        self.config = config or default_settings
        self.store = store or create_store(self.config.DATABASE_URL, echo=self.config.DATABASE_ECHO)
        self.roster: List[PumpLocation] = list(
            roster if roster is not None else load_roster(self.config.ROSTER_KML_PATH)
        )

        self.feed_client = feed_client or FeedClient()
        self.radar_client = radar_client or RadarClient()
        self.forecast_client = forecast_client or ForecastClient()

        self.fusion = SensorFusionEngine(self.roster, self.feed_client, self.store)
        self.monitor = MonitorEngine(
            self.roster, self.radar_client, self.store,
            threshold_mm_h=self.config.RAIN_ALERT_THRESHOLD_MM_H,
        )
        self.collector = ForecastCollector(self.roster, self.forecast_client, self.store)
        self.accuracy = AccuracyEngine(
            self.store, threshold_mm=self.config.RAIN_ALERT_THRESHOLD_MM_H,
        )

        self.scheduler = scheduler or JobScheduler(
            timezone_name=self.config.TIMEZONE, job_timeout_s=self.config.JOB_TIMEOUT_S,
        )
        self._register_jobs()

    # ── Jobs ──

    async def verify_recent(self) -> VerificationResult:
        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=self.config.FORECAST_VERIFY_LOOKBACK_HOURS)
        return await self.accuracy.verify(start, end)

    def _register_jobs(self) -> None:
        cfg = self.config
        self.scheduler.register(MONITOR_JOB, cfg.MONITOR_SCHEDULE, self.monitor.check)
        self.scheduler.register(PUMP_SYNC_JOB, cfg.PUMP_SYNC_SCHEDULE, self.fusion.run_cycle)
        self.scheduler.register(FORECAST_FETCH_JOB, cfg.FORECAST_FETCH_SCHEDULE, self.collector.collect)
        self.scheduler.register(FORECAST_VERIFY_JOB, cfg.FORECAST_VERIFY_SCHEDULE, self.verify_recent)

    def _auto_start_flags(self):
        cfg = self.config
        return (
            (MONITOR_JOB, cfg.MONITOR_AUTO_START),
            (PUMP_SYNC_JOB, cfg.PUMP_SYNC_AUTO_START),
            (FORECAST_FETCH_JOB, cfg.FORECAST_FETCH_AUTO_START),
            (FORECAST_VERIFY_JOB, cfg.FORECAST_VERIFY_AUTO_START),
        )

    # ── Lifecycle ──

    async def startup(self, *, start_jobs: bool = True) -> None:
        await self.store.init()
        self.scheduler.start_timers()
        if start_jobs:
            for name, enabled in self._auto_start_flags():
                if enabled:
                    self.scheduler.start(name)
        logger.info(
            "Services ready: %d pumps, jobs %s",
            len(self.roster), ", ".join(self.scheduler.names()),
        )

    async def shutdown(self) -> None:
        self.scheduler.shutdown()
        self.monitor.close()
        for client in (self.feed_client, self.radar_client, self.forecast_client):
            await client.close()
        await self.store.close()
        logger.info("Services stopped")
