"""
ORM tables for the SQL record store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.pumpwatch.core.database import Base, UTCDateTime


class FusedRecordRow(Base):
    __tablename__ = "fused_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    family: Mapped[str] = mapped_column(String(16), nullable=False)
    pump_name: Mapped[str] = mapped_column(String(128), nullable=False)
    location_code: Mapped[str] = mapped_column(String(64), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    nearest_station_name: Mapped[str] = mapped_column(String(256), nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status_label: Mapped[str] = mapped_column(String(64), nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    source_observed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_fused_family_pump_fetched", "family", "pump_name", "fetched_at"),
        Index("ix_fused_fetched", "fetched_at"),
    )


class ReflectivitySampleRow(Base):
    __tablename__ = "reflectivity_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pump_name: Mapped[str] = mapped_column(String(128), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    dbz: Mapped[float] = mapped_column(Float, nullable=False)
    rain_rate_mm_h: Mapped[float] = mapped_column(Float, nullable=False)
    intensity: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    radar_station: Mapped[str] = mapped_column(String(16), nullable=False)
    radar_time: Mapped[str] = mapped_column(String(64), default="")
    should_alert: Mapped[bool] = mapped_column(Boolean, default=False)
    failed: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_samples_pump_captured", "pump_name", "captured_at"),
    )


class ForecastPointRow(Base):
    __tablename__ = "forecast_points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_name: Mapped[str] = mapped_column(String(128), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    target_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    precipitation: Mapped[float] = mapped_column(Float, nullable=False)
    probability: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weather_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rain: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_forecast_location_target", "location_name", "target_time"),
    )


class ForecastVerificationRow(Base):
    """One row per verified forecast; the primary key makes it write-once."""
    __tablename__ = "forecast_verifications"

    forecast_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("forecast_points.id"), primary_key=True,
    )
    actual_value: Mapped[float] = mapped_column(Float, nullable=False)
    actual_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    time_delta_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    source_station: Mapped[str] = mapped_column(String(256), nullable=False)
    verified_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class AccuracySnapshotRow(Base):
    __tablename__ = "accuracy_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_name: Mapped[str] = mapped_column(String(128), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    total_forecasts: Mapped[int] = mapped_column(Integer, nullable=False)
    verified_forecasts: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold_mm: Mapped[float] = mapped_column(Float, nullable=False)
    mae: Mapped[float] = mapped_column(Float, nullable=False)
    rmse: Mapped[float] = mapped_column(Float, nullable=False)
    bias: Mapped[float] = mapped_column(Float, nullable=False)
    correlation: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    brier_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False)
    precision: Mapped[float] = mapped_column(Float, nullable=False)
    recall: Mapped[float] = mapped_column(Float, nullable=False)
    f1_score: Mapped[float] = mapped_column(Float, nullable=False)
    rainy_correct: Mapped[int] = mapped_column(Integer, nullable=False)
    rainy_total: Mapped[int] = mapped_column(Integer, nullable=False)
    dry_correct: Mapped[int] = mapped_column(Integer, nullable=False)
    dry_total: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_predicted: Mapped[float] = mapped_column(Float, nullable=False)
    avg_actual: Mapped[float] = mapped_column(Float, nullable=False)
    max_error: Mapped[float] = mapped_column(Float, nullable=False)
    reliability: Mapped[str] = mapped_column(String(16), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_accuracy_location_calculated", "location_name", "calculated_at"),
    )
