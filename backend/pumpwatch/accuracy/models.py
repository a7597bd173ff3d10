"""
Data models for stored forecasts, their verification and accuracy metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ForecastVerification:
    """
    Write-once companion record attached to a forecast point.

    The forecast's own fields are never overwritten; the observed value
    lives here.
    """
    forecast_id: int
    actual_value: float
    actual_time: datetime
    time_delta_minutes: float
    source_station: str
    verified_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actual_value": self.actual_value,
            "actual_time": self.actual_time.isoformat(),
            "time_delta_minutes": round(self.time_delta_minutes, 2),
            "source_station": self.source_station,
            "verified_at": self.verified_at.isoformat(),
        }


@dataclass
class ForecastPoint:
    """One hourly forecast for one pump location."""
    location_name: str
    lat: float
    lng: float
    target_time: datetime
    precipitation: float
    probability: Optional[float]
    weather_code: Optional[int]
    fetched_at: datetime
    temperature: Optional[float] = None
    rain: Optional[float] = None
    id: Optional[int] = None
    verification: Optional[ForecastVerification] = None

    @property
    def verified(self) -> bool:
        return self.verification is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "location_name": self.location_name,
            "lat": self.lat,
            "lng": self.lng,
            "target_time": self.target_time.isoformat(),
            "precipitation": self.precipitation,
            "probability": self.probability,
            "weather_code": self.weather_code,
            "temperature": self.temperature,
            "rain": self.rain,
            "fetched_at": self.fetched_at.isoformat(),
            "verified": self.verified,
            "verification": self.verification.to_dict() if self.verification else None,
        }


@dataclass
class VerificationResult:
    """Counts from one verification pass."""
    start: datetime
    end: datetime
    verified: int = 0
    failed: int = 0
    unmatched: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "verified": self.verified,
            "failed": self.failed,
            "unmatched": self.unmatched,
            "errors": list(self.errors),
        }


@dataclass
class AccuracyMetrics:
    """Aggregate accuracy of verified forecasts for one location and period."""
    location_name: str
    lat: float
    lng: float
    period_start: datetime
    period_end: datetime
    total_forecasts: int
    verified_forecasts: int
    threshold_mm: float

    mae: float
    rmse: float
    bias: float
    correlation: Optional[float]
    brier_score: Optional[float]

    accuracy: float
    precision: float
    recall: float
    f1_score: float
    rainy_correct: int
    rainy_total: int
    dry_correct: int
    dry_total: int

    avg_predicted: float
    avg_actual: float
    max_error: float
    reliability: str
    calculated_at: datetime
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": {"name": self.location_name, "lat": self.lat, "lng": self.lng},
            "period": {"start": _iso(self.period_start), "end": _iso(self.period_end)},
            "total_forecasts": self.total_forecasts,
            "verified_forecasts": self.verified_forecasts,
            "threshold_mm": self.threshold_mm,
            "metrics": {
                "mae": self.mae,
                "rmse": self.rmse,
                "bias": self.bias,
                "correlation": self.correlation,
                "brier_score": self.brier_score,
                "accuracy": self.accuracy,
                "precision": self.precision,
                "recall": self.recall,
                "f1_score": self.f1_score,
                "rainy_correct": self.rainy_correct,
                "rainy_total": self.rainy_total,
                "dry_correct": self.dry_correct,
                "dry_total": self.dry_total,
            },
            "summary": {
                "avg_predicted": self.avg_predicted,
                "avg_actual": self.avg_actual,
                "max_error": self.max_error,
                "reliability": self.reliability,
            },
            "calculated_at": _iso(self.calculated_at),
        }
