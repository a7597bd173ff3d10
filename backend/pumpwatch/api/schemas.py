"""
Pydantic request schemas for the HTTP API.

Responses are the engines' own ``to_dict()`` payloads wrapped in
``{"success": true, ...}``, so only inputs are modelled here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from backend.pumpwatch.accuracy.models import ForecastPoint
from backend.pumpwatch.core.config import settings


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are read as local wall-clock time of the pump network."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=ZoneInfo(settings.TIMEZONE))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class JobAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    TRIGGER = "trigger"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class MonitorCheckRequest(BaseModel):
    """Body for POST /api/v1/monitor/check (all optional)."""
    threshold: Optional[float] = Field(
        None, ge=0.0, le=500.0,
        description="Alert threshold in mm/h; defaults to RAIN_ALERT_THRESHOLD_MM_H",
        examples=[2.0],
    )
    save_all: Optional[bool] = Field(
        None, description="Persist every sample instead of alerts only",
    )


class ForecastPointInput(BaseModel):
    """One manually submitted forecast hour."""
    location_name: str = Field(..., min_length=1, examples=["Kelinci"])
    lat: float = Field(..., ge=-90.0, le=90.0, examples=[-6.1614])
    lng: float = Field(..., ge=-180.0, le=180.0, examples=[106.8375])
    target_time: datetime = Field(..., examples=["2024-01-15T14:00:00+07:00"])
    precipitation: float = Field(..., ge=0.0, examples=[3.2])
    probability: Optional[float] = Field(None, ge=0.0, le=100.0, examples=[70])
    weather_code: Optional[int] = Field(None, examples=[61])
    temperature: Optional[float] = None
    rain: Optional[float] = Field(None, ge=0.0)

    @field_validator("target_time")
    @classmethod
    def target_time_aware(cls, value: datetime) -> datetime:
        return as_aware(value)

    def to_point(self, fetched_at: datetime) -> ForecastPoint:
        return ForecastPoint(
            location_name=self.location_name,
            lat=self.lat,
            lng=self.lng,
            target_time=self.target_time,
            precipitation=self.precipitation,
            probability=self.probability,
            weather_code=self.weather_code,
            fetched_at=fetched_at,
            temperature=self.temperature,
            rain=self.rain,
        )


class ForecastBatchRequest(BaseModel):
    """Body for POST /api/v1/forecasts."""
    points: List[ForecastPointInput] = Field(..., min_length=1)
    fetched_at: Optional[datetime] = Field(
        None, description="When the forecast was issued; defaults to now",
    )

    @field_validator("fetched_at")
    @classmethod
    def fetched_at_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_aware(value)

    def to_points(self) -> List[ForecastPoint]:
        fetched_at = self.fetched_at or datetime.now(timezone.utc)
        return [p.to_point(fetched_at) for p in self.points]


class VerifyRequest(BaseModel):
    """Body for POST /api/v1/accuracy/verify; defaults to the lookback window."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def bounds_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_aware(value)


class JobActionRequest(BaseModel):
    """Optional body for POST /api/v1/jobs/{name}/{action}."""
    schedule: Optional[str] = Field(
        None,
        description="New cron schedule (restart only); 5 fields or 6 with leading seconds",
        examples=["*/10 * * * *"],
    )
