"""
Data models for pump locations, sensor observations and fused records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class FeedFamily(str, Enum):
    """The two government sensor feed families."""
    RAINFALL = "rainfall"
    WATER_LEVEL = "water_level"


@dataclass(frozen=True)
class PumpLocation:
    """A fixed pump station. Created once from the roster, never mutated."""
    name: str
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "lat": self.lat, "lng": self.lng}


@dataclass
class SensorObservation:
    """One normalised station reading from a feed."""
    family: FeedFamily
    station_name: str
    lat: Optional[float]
    lng: Optional[float]
    value: Optional[float]
    status_label: str
    observed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "station_name": self.station_name,
            "lat": self.lat,
            "lng": self.lng,
            "value": self.value,
            "status_label": self.status_label,
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
        }


@dataclass(frozen=True)
class FusedRecord:
    """
    A pump reading derived from its nearest station in one feed family.

    Append-only: one per (pump, family, fetch cycle). The "latest" view is
    derived by taking the newest ``fetched_at`` per ``pump_name``.
    """
    pump_name: str
    location_code: str
    family: FeedFamily
    lat: float
    lng: float
    nearest_station_name: str
    distance_km: float
    value: Optional[float]
    status_label: str
    fetched_at: datetime
    source_observed_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def observed_time(self) -> datetime:
        """Best known time of the underlying measurement."""
        return self.source_observed_at or self.fetched_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pump_name": self.pump_name,
            "location_code": self.location_code,
            "family": self.family.value,
            "lat": self.lat,
            "lng": self.lng,
            "nearest_station_name": self.nearest_station_name,
            "distance_km": self.distance_km,
            "value": self.value,
            "status_label": self.status_label,
            "fetched_at": self.fetched_at.isoformat(),
            "source_observed_at": (
                self.source_observed_at.isoformat() if self.source_observed_at else None
            ),
        }


@dataclass
class FamilyOutcome:
    """Per-feed bookkeeping for one fusion cycle."""
    family: FeedFamily
    fetched: int = 0
    malformed: int = 0
    fused: int = 0
    gaps: List[str] = field(default_factory=list)
    inserted: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "ok": self.ok,
            "fetched": self.fetched,
            "malformed": self.malformed,
            "fused": self.fused,
            "coverage_gaps": len(self.gaps),
            "gap_pumps": list(self.gaps),
            "inserted": self.inserted,
            "error": self.error,
        }


@dataclass
class FusionSummary:
    """Result of one sensor-fusion cycle across both feed families."""
    fetched_at: datetime
    outcomes: Dict[FeedFamily, FamilyOutcome] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes.values())

    @property
    def errors(self) -> List[str]:
        return [f"{o.family.value}: {o.error}" for o in self.outcomes.values() if o.error]

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes.values() if not o.ok)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "fetched_at": self.fetched_at.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "families": {f.value: o.to_dict() for f, o in self.outcomes.items()},
            "errors": self.errors,
        }
