"""
Sensor fusion — join the pump roster against both station feeds.

For every pump and every feed family the nearest valid station becomes one
``FusedRecord``. A pump with no valid station in a feed is a coverage gap
(logged, counted), never an error. Each family's batch is appended in one
bulk insert, and one family failing never blocks the other.

Cycle:
    1. FETCH    both feeds concurrently (each with its own request timeout)
    2. FUSE     nearest station per pump (pure, ``fuse``)
    3. PERSIST  one bulk insert per family
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from backend.pumpwatch.core.errors import PumpWatchError, StoreError
from backend.pumpwatch.ingestion.feed_client import FeedClient
from backend.pumpwatch.ingestion.location_codes import location_code
from backend.pumpwatch.ingestion.models import (
    FamilyOutcome,
    FeedFamily,
    FusedRecord,
    FusionSummary,
    PumpLocation,
    SensorObservation,
)
from backend.pumpwatch.spatial.geo_math import nearest
from backend.pumpwatch.storage.base import RecordStore

logger = logging.getLogger(__name__)


def fuse(
    roster: Sequence[PumpLocation],
    observations: Sequence[SensorObservation],
    family: FeedFamily,
    fetched_at: datetime,
) -> Tuple[List[FusedRecord], List[str]]:
    """
    Nearest-station join for one feed family.

    Returns (records, gap_pump_names). Distances are rounded to 2 decimals.
    """
    records: List[FusedRecord] = []
    gaps: List[str] = []

    for pump in roster:
        match = nearest(pump, observations)
        if match is None:
            gaps.append(pump.name)
            continue
        station, distance = match
        records.append(FusedRecord(
            pump_name=pump.name,
            location_code=location_code(pump.name) or "",
            family=family,
            lat=pump.lat,
            lng=pump.lng,
            nearest_station_name=station.station_name,
            distance_km=round(distance, 2),
            value=station.value,
            status_label=station.status_label,
            fetched_at=fetched_at,
            source_observed_at=station.observed_at,
        ))

    return records, gaps


class SensorFusionEngine:
    """
    Usage:
        engine = SensorFusionEngine(roster, FeedClient(), store)
        summary = await engine.run_cycle()
        print(summary.to_dict())
    """

    def __init__(
        self,
        roster: Sequence[PumpLocation],
        feed_client: FeedClient,
        store: RecordStore,
    ):
        self.roster = list(roster)
        self.feed_client = feed_client
        self.store = store

    async def run_cycle(self, fetched_at: Optional[datetime] = None) -> FusionSummary:
        """Run one fetch-fuse-persist cycle; never raises for partial failure."""
        start = time.perf_counter()
        fetched_at = fetched_at or datetime.now(timezone.utc)
        summary = FusionSummary(fetched_at=fetched_at)
        families = list(FeedFamily)

        fetched = await asyncio.gather(
            *(self.feed_client.fetch(f) for f in families),
            return_exceptions=True,
        )

        for family, result in zip(families, fetched):
            outcome = FamilyOutcome(family=family)
            summary.outcomes[family] = outcome

            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                outcome.error = _describe(result)
                logger.warning(
                    "%s feed unavailable: %s", family.value, outcome.error,
                    extra={"family": family.value},
                )
                continue

            outcome.fetched = result.total
            outcome.malformed = result.malformed

            records, gaps = fuse(self.roster, result.observations, family, fetched_at)
            outcome.fused = len(records)
            outcome.gaps = gaps
            if gaps:
                logger.info(
                    "%s coverage gap for %d pump(s): %s",
                    family.value, len(gaps), ", ".join(gaps),
                    extra={"family": family.value},
                )

            if not records:
                continue
            try:
                outcome.inserted = await self.store.insert_fused(records)
            except StoreError as e:
                outcome.error = e.message
                logger.error(
                    "Storing %s batch failed: %s", family.value, e.message,
                    extra={"family": family.value},
                )

        summary.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Fusion cycle: %s",
            ", ".join(
                f"{o.family.value} {o.inserted}/{len(self.roster)}" for o in summary.outcomes.values()
            ),
            extra={"duration_ms": summary.duration_ms},
        )
        return summary


def _describe(error: Exception) -> str:
    if isinstance(error, PumpWatchError):
        return error.message
    return f"{type(error).__name__}: {error}"
