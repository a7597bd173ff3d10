"""
Data models for radar frames, per-pump reflectivity samples and monitor runs.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from backend.pumpwatch.ingestion.models import PumpLocation
from backend.pumpwatch.radar.reflectivity import ColorLegend, RainIntensity

KM_PER_DEGREE = math.pi / 180.0 * 6371.0


@dataclass(frozen=True)
class BoundingBox:
    """Geographic extent of a radar raster, in decimal degrees."""
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    def __post_init__(self) -> None:
        if not (self.lat_max > self.lat_min and self.lon_max > self.lon_min):
            raise ValueError(f"Degenerate bounding box: {self}")

    @classmethod
    def from_overlay(cls, top_left: Sequence[Any], bottom_right: Sequence[Any]) -> "BoundingBox":
        """Build from the provider's ``overlayTLC`` / ``overlayBRC`` [lat, lon] corners."""
        return cls(
            lat_min=float(bottom_right[0]),
            lat_max=float(top_left[0]),
            lon_min=float(top_left[1]),
            lon_max=float(bottom_right[1]),
        )

    def contains(self, lat: float, lng: float) -> bool:
        return self.lat_min <= lat <= self.lat_max and self.lon_min <= lng <= self.lon_max

    def to_pixel(self, lat: float, lng: float, width: int, height: int) -> Tuple[int, int]:
        """Linear projection to (x, y); y grows southward from the top row."""
        fx = (lng - self.lon_min) / (self.lon_max - self.lon_min)
        fy = (self.lat_max - lat) / (self.lat_max - self.lat_min)
        return int(round(fx * (width - 1))), int(round(fy * (height - 1)))

    def pixel_radius(self, lat: float, radius_km: float, width: int, height: int) -> int:
        """Average of the x/y pixel radii covering ``radius_km`` at ``lat``; at least 1."""
        km_per_px_x = (self.lon_max - self.lon_min) * KM_PER_DEGREE * math.cos(math.radians(lat)) / width
        km_per_px_y = (self.lat_max - self.lat_min) * KM_PER_DEGREE / height
        if km_per_px_x <= 0 or km_per_px_y <= 0:
            return 1
        avg = (radius_km / km_per_px_x + radius_km / km_per_px_y) / 2.0
        return max(1, int(round(avg)))

    def to_dict(self) -> Dict[str, float]:
        return {
            "lat_min": self.lat_min,
            "lat_max": self.lat_max,
            "lon_min": self.lon_min,
            "lon_max": self.lon_max,
        }


@dataclass
class RadarFrame:
    """One captured radar image with its georeferencing and legend."""
    station: str
    image: np.ndarray  # (H, W, 4) uint8 RGBA
    bounds: BoundingBox
    legend: ColorLegend
    captured_at: datetime
    radar_time: str = ""
    image_url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.image.ndim != 3 or self.image.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) RGBA raster, got shape {self.image.shape}")

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])


@dataclass(frozen=True)
class ReflectivitySample:
    """Decoded radar reading at one pump. Immutable once produced."""
    pump: PumpLocation
    dbz: float
    rain_rate_mm_h: float
    intensity: RainIntensity
    confidence: float
    captured_at: datetime
    radar_station: str
    radar_time: str = ""
    should_alert: bool = False
    failed: bool = False
    error: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pump_name": self.pump.name,
            "lat": self.pump.lat,
            "lng": self.pump.lng,
            "dbz": self.dbz,
            "rain_rate_mm_h": round(self.rain_rate_mm_h, 3),
            "intensity": self.intensity.value,
            "intensity_label": self.intensity.label,
            "confidence": round(self.confidence, 3),
            "captured_at": self.captured_at.isoformat(),
            "radar_station": self.radar_station,
            "radar_time": self.radar_time,
            "should_alert": self.should_alert,
            "failed": self.failed,
            "error": self.error,
        }


@dataclass
class MonitorSummary:
    """Outcome of one monitor cycle over the whole roster."""
    started_at: datetime
    threshold_mm_h: float
    radar_station: str = ""
    radar_time: str = ""
    samples: List[ReflectivitySample] = field(default_factory=list)
    saved: int = 0
    save_all: bool = True
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def alerts(self) -> List[ReflectivitySample]:
        return [s for s in self.samples if s.should_alert]

    @property
    def failed(self) -> int:
        return sum(1 for s in self.samples if s.failed)

    @property
    def succeeded(self) -> int:
        return len(self.samples) - self.failed

    def intensity_counts(self) -> Dict[str, int]:
        counts = Counter(s.intensity.value for s in self.samples)
        return {level.value: counts.get(level.value, 0) for level in RainIntensity}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "radar_station": self.radar_station,
            "radar_time": self.radar_time,
            "threshold_mm_h": self.threshold_mm_h,
            "total_checked": len(self.samples),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "alert_count": len(self.alerts),
            "intensity_counts": self.intensity_counts(),
            "saved": self.saved,
            "save_all": self.save_all,
            "duration_ms": round(self.duration_ms, 1),
            "alerts": [
                {
                    "pump_name": s.pump.name,
                    "lat": s.pump.lat,
                    "lng": s.pump.lng,
                    "rain_rate_mm_h": round(s.rain_rate_mm_h, 3),
                    "intensity": s.intensity.value,
                    "confidence": round(s.confidence, 3),
                }
                for s in self.alerts
            ],
            "errors": list(self.errors),
        }
