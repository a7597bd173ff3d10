"""
forecast_client.py — Open-Meteo hourly forecast for one coordinate.

Open-Meteo returns parallel hourly arrays; times are local wall-clock in the
requested ``timezone`` and are converted to aware UTC here.

Open-Meteo API Reference:
    https://open-meteo.com/en/docs
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import MalformedRecordError
from backend.pumpwatch.core.http import UpstreamClient
from backend.pumpwatch.ingestion.feed_parser import parse_local_time, to_number

logger = logging.getLogger(__name__)

HOURLY_VARIABLES = [
    "temperature_2m",
    "rain",
    "precipitation",
    "precipitation_probability",
    "weather_code",
]


@dataclass
class HourlyForecast:
    """One forecast hour, already normalised."""
    time: datetime
    temperature: Optional[float]
    rain: Optional[float]
    precipitation: float
    probability: Optional[float]
    weather_code: Optional[int]


@dataclass
class ForecastSeries:
    latitude: float
    longitude: float
    timezone: str
    hours: List[HourlyForecast] = field(default_factory=list)


def _at(values: Optional[List[Any]], index: int) -> Optional[float]:
    if not values or index >= len(values):
        return None
    try:
        return to_number(values[index])
    except ValueError:
        return None


def parse_hourly(payload: Mapping[str, Any], tz: str) -> ForecastSeries:
    """Turn Open-Meteo's parallel arrays into a list of hours."""
    hourly = payload.get("hourly")
    if not isinstance(hourly, Mapping) or not isinstance(hourly.get("time"), list):
        raise MalformedRecordError("Forecast payload has no hourly.time array")

    series = ForecastSeries(
        latitude=float(payload.get("latitude") or 0.0),
        longitude=float(payload.get("longitude") or 0.0),
        timezone=str(payload.get("timezone") or tz),
    )
    for i, raw_time in enumerate(hourly["time"]):
        when = parse_local_time(raw_time, tz)
        if when is None:
            continue
        code = _at(hourly.get("weather_code"), i)
        series.hours.append(HourlyForecast(
            time=when,
            temperature=_at(hourly.get("temperature_2m"), i),
            rain=_at(hourly.get("rain"), i),
            precipitation=_at(hourly.get("precipitation"), i) or 0.0,
            probability=_at(hourly.get("precipitation_probability"), i),
            weather_code=int(code) if code is not None else None,
        ))
    return series


class ForecastClient(UpstreamClient):
    """
    Usage:
        client = ForecastClient()
        series = await client.fetch_hourly(-6.2, 106.8)
        print(len(series.hours))
    """

    service_name = "forecast"

    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        forecast_days: Optional[int] = None,
        timezone_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(client=client, **kwargs)
        self.api_url = api_url or settings.FORECAST_API_URL
        self.forecast_days = forecast_days or settings.FORECAST_DAYS
        self.timezone_name = timezone_name or settings.TIMEZONE

    async def fetch_hourly(self, latitude: float, longitude: float) -> ForecastSeries:
        params: Dict[str, Any] = {
            "latitude": round(latitude, 5),
            "longitude": round(longitude, 5),
            "hourly": ",".join(HOURLY_VARIABLES),
            "timezone": self.timezone_name,
            "forecast_days": self.forecast_days,
        }
        payload = await self.get_json(self.api_url, params=params)
        if not isinstance(payload, Mapping):
            raise MalformedRecordError("Forecast payload is not an object")
        return parse_hourly(payload, self.timezone_name)
