"""
Record store interface.

The engines only ever need a narrow set of document-style operations:
bulk append per record kind, filtered find with sort/limit, distinct pump
names, the "most recent per pump" view, a write-once verification attach
and a bounded metrics history. Every implementation raises ``StoreError``
for a rejected read or write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Hashable, Iterable, List, Optional, Sequence, TypeVar

from backend.pumpwatch.accuracy.models import AccuracyMetrics, ForecastPoint, ForecastVerification
from backend.pumpwatch.ingestion.models import FeedFamily, FusedRecord
from backend.pumpwatch.radar.models import ReflectivitySample

R = TypeVar("R")


def latest_per_key(
    records: Iterable[R],
    key: Callable[[R], Hashable],
    timestamp: Callable[[R], datetime],
) -> List[R]:
    """
    Newest record per key: sort by timestamp descending, keep the first of each key.

    Ties on timestamp keep the record seen first in ``records``.
    """
    ordered = sorted(records, key=timestamp, reverse=True)
    seen = set()
    latest: List[R] = []
    for record in ordered:
        k = key(record)
        if k in seen:
            continue
        seen.add(k)
        latest.append(record)
    return latest


class RecordStore(ABC):
    """Append-only store for fused records, radar samples, forecasts and metrics."""

    async def init(self) -> None:
        """Prepare the backing storage (create tables, etc.)."""

    async def close(self) -> None:
        """Release connections."""

    # ── Fused sensor records ──

    @abstractmethod
    async def insert_fused(self, records: Sequence[FusedRecord]) -> int:
        """Append one family's batch atomically; returns the count inserted."""

    @abstractmethod
    async def latest_fused(self, family: FeedFamily) -> List[FusedRecord]:
        """Most recently fetched record per pump for one family."""

    @abstractmethod
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
        """Fused records filtered on ``fetched_at`` in [start, end], sorted by it."""

    @abstractmethod
    async def distinct_pump_names(self) -> List[str]:
        """Sorted pump names that have fused history."""

    # ── Radar samples ──

    @abstractmethod
    async def insert_samples(self, samples: Sequence[ReflectivitySample]) -> int:
        """Append a monitor cycle's samples atomically."""

    @abstractmethod
    async def recent_samples(
        self, *, pump_name: Optional[str] = None, alerts_only: bool = False, limit: int = 100,
    ) -> List[ReflectivitySample]:
        """Newest samples first."""

    # ── Forecasts ──

    @abstractmethod
    async def insert_forecasts(self, points: Sequence[ForecastPoint]) -> int:
        """Append a forecast run atomically; assigns ``id`` on each point."""

    @abstractmethod
    async def find_forecasts(
        self,
        *,
        location_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        verified: Optional[bool] = None,
    ) -> List[ForecastPoint]:
        """Forecast points with ``target_time`` in [start, end], ascending, verification joined."""

    @abstractmethod
    async def attach_verification(self, verification: ForecastVerification) -> None:
        """Attach the outcome to a forecast; raises StoreError if already verified."""

    # ── Accuracy metrics ──

    @abstractmethod
    async def insert_metrics(self, metrics: AccuracyMetrics) -> int:
        """Persist one metrics snapshot; returns its id."""

    @abstractmethod
    async def metrics_history(
        self, *, location_name: Optional[str] = None, limit: int = 10,
    ) -> List[AccuracyMetrics]:
        """Newest snapshots first."""
