"""
Read-side views over fused records, served verbatim by the API layer.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.ingestion.models import FeedFamily, FusedRecord
from backend.pumpwatch.storage.base import RecordStore


def _reading(record: Optional[FusedRecord]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return {
        "value": record.value,
        "status_label": record.status_label,
        "nearest_station_name": record.nearest_station_name,
        "distance_km": record.distance_km,
        "fetched_at": record.fetched_at.isoformat(),
        "source_observed_at": (
            record.source_observed_at.isoformat() if record.source_observed_at else None
        ),
    }


async def latest_pump_view(store: RecordStore) -> List[Dict[str, Any]]:
    """
    Newest rainfall and water-level reading per pump, merged.

    Sorted by rainfall value descending; pumps without rainfall sort last.
    """
    rainfall = {r.pump_name: r for r in await store.latest_fused(FeedFamily.RAINFALL)}
    water = {r.pump_name: r for r in await store.latest_fused(FeedFamily.WATER_LEVEL)}

    rows = []
    for name in sorted(set(rainfall) | set(water)):
        base = rainfall.get(name) or water[name]
        rows.append({
            "pump_name": name,
            "location_code": base.location_code,
            "lat": base.lat,
            "lng": base.lng,
            "rainfall": _reading(rainfall.get(name)),
            "water_level": _reading(water.get(name)),
        })

    def _rain_value(row: Dict[str, Any]) -> float:
        reading = row["rainfall"]
        if reading is None or reading["value"] is None:
            return float("-inf")
        return reading["value"]

    rows.sort(key=_rain_value, reverse=True)
    return rows


def local_day_bounds(day: date, tz: Optional[str] = None) -> tuple:
    """UTC [start, end] of one local calendar day."""
    zone = ZoneInfo(tz or settings.TIMEZONE)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def pump_history(store: RecordStore, pump_name: str, day: date) -> Dict[str, Any]:
    """Both families for one pump over one local day, ascending by fetch time."""
    start, end = local_day_bounds(day)
    records = await store.fused_history(pump_name=pump_name, start=start, end=end, ascending=True)
    return {
        "pump_name": pump_name,
        "date": day.isoformat(),
        "rainfall": [r.to_dict() for r in records if r.family == FeedFamily.RAINFALL],
        "water_level": [r.to_dict() for r in records if r.family == FeedFamily.WATER_LEVEL],
    }


async def list_pump_names(store: RecordStore) -> List[str]:
    return await store.distinct_pump_names()
