"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.pumpwatch.core.config import settings
    print(settings.RAIN_ALERT_THRESHOLD_MM_H)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Pump Watch"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL
    TIMEZONE: str = "Asia/Jakarta"  # local time of the pump network

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_ALLOW_ALL: bool = True

    # ── Store ──
    DATABASE_URL: str = "sqlite+aiosqlite:///./pumpwatch.sqlite"  # "memory://" = in-process store
    DATABASE_ECHO: bool = False

    # ── Pump roster ──
    ROSTER_KML_PATH: Optional[str] = None  # falls back to the built-in roster

    # ── Government sensor feeds ──
    RAINFALL_FEED_URL: str = "https://poskobanjirdsda.jakarta.go.id/datacurahhujan.json"
    WATER_LEVEL_FEED_URL: str = "https://poskobanjirdsda.jakarta.go.id/datatma.json"
    FEED_USER_AGENT: str = "Mozilla/5.0 (compatible; pumpwatch/1.0)"

    # ── Radar ──
    RADAR_API_URL: str = "https://radar.bmkg.go.id:8090/sidarmaimage"
    RADAR_TOKEN: str = ""
    RADAR_STATION: str = "JAK"
    RADAR_VERIFY_TLS: bool = True
    RADAR_SAMPLE_RADIUS_KM: float = 1.0
    RADAR_COLOR_TOLERANCE: float = 28.0  # max RGB distance for a legend match
    RADAR_MIN_ALPHA: int = 16  # below this a pixel is transparent background

    # ── Forecast provider ──
    FORECAST_API_URL: str = "https://api.open-meteo.com/v1/forecast"
    FORECAST_DAYS: int = 16
    FORECAST_CONCURRENCY: int = 2
    FORECAST_REQUEST_DELAY_S: float = 1.0

    # ── Thresholds ──
    # Shared definition of "it rained": monitor alerts and forecast
    # rain/no-rain classification both read this value.
    RAIN_ALERT_THRESHOLD_MM_H: float = 2.0
    # Upper bounds for NoRain / Light / Moderate / Heavy; above the last is VeryHeavy.
    INTENSITY_BREAKPOINTS_MM_H: List[float] = [0.5, 2.0, 10.0, 50.0]

    # ── Accuracy ──
    VERIFY_TOLERANCE_MINUTES: float = 5.0
    METRICS_HISTORY_LIMIT: int = 50

    # ── Timeouts / pools ──
    FETCH_TIMEOUT_S: float = 15.0  # per outbound request
    FETCH_MAX_RETRIES: int = 2
    FETCH_BACKOFF_BASE_S: float = 1.0
    JOB_TIMEOUT_S: float = 300.0  # per job run
    DECODE_WORKERS: int = 4

    # ── Jobs ──
    MONITOR_SCHEDULE: str = "*/10 * * * *"
    MONITOR_AUTO_START: bool = False
    MONITOR_SAVE_ALL: bool = True
    PUMP_SYNC_SCHEDULE: str = "*/5 * * * *"
    PUMP_SYNC_AUTO_START: bool = True
    FORECAST_FETCH_SCHEDULE: str = "0 0 */14 * *"
    FORECAST_FETCH_AUTO_START: bool = False
    FORECAST_VERIFY_SCHEDULE: str = "15 * * * *"
    FORECAST_VERIFY_AUTO_START: bool = False
    FORECAST_VERIFY_LOOKBACK_HOURS: int = 24

    @field_validator("INTENSITY_BREAKPOINTS_MM_H")
    @classmethod
    def _breakpoints_ascending(cls, value: List[float]) -> List[float]:
        if len(value) != 4:
            raise ValueError("INTENSITY_BREAKPOINTS_MM_H needs exactly 4 values")
        if any(b <= a for a, b in zip(value, value[1:])):
            raise ValueError("INTENSITY_BREAKPOINTS_MM_H must be strictly ascending")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
