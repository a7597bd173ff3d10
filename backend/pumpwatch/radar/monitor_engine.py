"""
Radar monitor — decode one radar frame at every pump and flag heavy rain.

Per pump:
    1. PROJECT  (lat, lng) → pixel via the frame's bounding box
    2. SAMPLE   circular window of ``RADAR_SAMPLE_RADIUS_KM`` around it
    3. DECODE   max legend-matched dBZ → Marshall–Palmer rain rate → intensity
    4. DECIDE   should_alert = rain rate ≥ threshold

Window pixels are either background (transparent, near-black, near-white),
matched (within ``RADAR_COLOR_TOLERANCE`` of a legend colour), or
undecodable (off-legend colour, or clipped by the raster edge).
``confidence`` is the decodable share: (background + matched) / window.

A pump that cannot be sampled becomes a zero-confidence NoRain sample
flagged ``failed``; it never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import numpy as np

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import ConfigurationError, ProjectionError, PumpWatchError, StoreError
from backend.pumpwatch.ingestion.models import PumpLocation
from backend.pumpwatch.radar.models import MonitorSummary, RadarFrame, ReflectivitySample
from backend.pumpwatch.radar.radar_client import RadarClient
from backend.pumpwatch.radar.reflectivity import (
    ColorLegend,
    IntensityScale,
    RainIntensity,
    match_pixels,
    rain_rate,
)
from backend.pumpwatch.storage.base import RecordStore

logger = logging.getLogger(__name__)

NEAR_BLACK = 10
NEAR_WHITE = 245


@lru_cache(maxsize=32)
def _circle_offsets(radius: int) -> Tuple[np.ndarray, np.ndarray]:
    """(dy, dx) offsets of every pixel within ``radius`` of the centre."""
    span = np.arange(-radius, radius + 1)
    dy, dx = np.meshgrid(span, span, indexing="ij")
    inside = np.hypot(dx, dy) <= radius
    return dy[inside], dx[inside]


@dataclass
class WindowReading:
    dbz: float
    window: int
    background: int
    matched: int

    @property
    def confidence(self) -> float:
        if self.window == 0:
            return 0.0
        return (self.background + self.matched) / self.window


def read_window(
    image: np.ndarray,
    cx: int,
    cy: int,
    radius: int,
    legend: ColorLegend,
    *,
    tolerance: float,
    min_alpha: int,
) -> WindowReading:
    """Max matched dBZ and pixel bookkeeping for a circular window."""
    height, width = image.shape[:2]
    dy, dx = _circle_offsets(radius)
    ys, xs = cy + dy, cx + dx
    in_frame = (ys >= 0) & (ys < height) & (xs >= 0) & (xs < width)

    pixels = image[ys[in_frame], xs[in_frame]].astype(np.int16)
    rgb, alpha = pixels[:, :3], pixels[:, 3]
    background = (
        (alpha < min_alpha)
        | (rgb < NEAR_BLACK).all(axis=1)
        | (rgb > NEAR_WHITE).all(axis=1)
    )

    candidates = pixels[~background]
    levels, distances = match_pixels(candidates, legend)
    matched = distances <= tolerance
    dbz = float(levels[matched].max()) if matched.any() else 0.0

    return WindowReading(
        dbz=max(dbz, 0.0),
        window=int(dy.size),
        background=int(background.sum()),
        matched=int(matched.sum()),
    )


class MonitorEngine:
    """
    Usage:
        engine = MonitorEngine(roster, RadarClient(), store)
        summary = await engine.check(threshold=2.0)
        print(summary.to_dict()["alert_count"])
    """

    def __init__(
        self,
        roster: Sequence[PumpLocation],
        radar_client: Optional[RadarClient],
        store: RecordStore,
        *,
        threshold_mm_h: Optional[float] = None,
        sample_radius_km: Optional[float] = None,
        color_tolerance: Optional[float] = None,
        min_alpha: Optional[int] = None,
        scale: Optional[IntensityScale] = None,
        workers: Optional[int] = None,
    ):
        self.roster = list(roster)
        self.radar_client = radar_client
        self.store = store
        self.threshold_mm_h = (
            threshold_mm_h if threshold_mm_h is not None else settings.RAIN_ALERT_THRESHOLD_MM_H
        )
        self.sample_radius_km = sample_radius_km or settings.RADAR_SAMPLE_RADIUS_KM
        self.color_tolerance = (
            color_tolerance if color_tolerance is not None else settings.RADAR_COLOR_TOLERANCE
        )
        self.min_alpha = min_alpha if min_alpha is not None else settings.RADAR_MIN_ALPHA
        self.scale = scale or IntensityScale(settings.INTENSITY_BREAKPOINTS_MM_H)
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.DECODE_WORKERS,
            thread_name_prefix="radar-decode",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ── Decoding ──

    def sample_pump(self, frame: RadarFrame, pump: PumpLocation, threshold: float) -> ReflectivitySample:
        """Decode one pump; raises ProjectionError when it lies outside the frame."""
        if not frame.bounds.contains(pump.lat, pump.lng):
            raise ProjectionError(pump.name, pump.lat, pump.lng)

        cx, cy = frame.bounds.to_pixel(pump.lat, pump.lng, frame.width, frame.height)
        radius = frame.bounds.pixel_radius(pump.lat, self.sample_radius_km, frame.width, frame.height)
        reading = read_window(
            frame.image, cx, cy, radius, frame.legend,
            tolerance=self.color_tolerance, min_alpha=self.min_alpha,
        )

        rate = rain_rate(reading.dbz)
        return ReflectivitySample(
            pump=pump,
            dbz=reading.dbz,
            rain_rate_mm_h=rate,
            intensity=self.scale.classify(rate),
            confidence=reading.confidence,
            captured_at=frame.captured_at,
            radar_station=frame.station,
            radar_time=frame.radar_time,
            should_alert=rate >= threshold,
        )

    def _safe_sample(self, frame: RadarFrame, pump: PumpLocation, threshold: float) -> ReflectivitySample:
        try:
            return self.sample_pump(frame, pump, threshold)
        except (PumpWatchError, ValueError, IndexError) as e:
            reason = e.message if isinstance(e, PumpWatchError) else f"{type(e).__name__}: {e}"
            logger.warning("Radar decode failed for %s: %s", pump.name, reason, extra={"pump": pump.name})
            return ReflectivitySample(
                pump=pump,
                dbz=0.0,
                rain_rate_mm_h=0.0,
                intensity=RainIntensity.NO_RAIN,
                confidence=0.0,
                captured_at=frame.captured_at,
                radar_station=frame.station,
                radar_time=frame.radar_time,
                should_alert=False,
                failed=True,
                error=reason,
            )

    async def decode_frame(self, frame: RadarFrame, threshold: float) -> List[ReflectivitySample]:
        """Sample every pump on the decode pool; results keep roster order."""
        loop = asyncio.get_running_loop()
        return list(await asyncio.gather(*(
            loop.run_in_executor(self._executor, self._safe_sample, frame, pump, threshold)
            for pump in self.roster
        )))

    # ── Cycle ──

    async def check(
        self,
        *,
        frame: Optional[RadarFrame] = None,
        threshold: Optional[float] = None,
        save_all: Optional[bool] = None,
    ) -> MonitorSummary:
        """
        Run one monitor cycle.

        ``save_all`` persists every sample; otherwise only alerting ones.
        Upstream and store failures land in ``summary.errors``.
        """
        start = time.perf_counter()
        threshold = threshold if threshold is not None else self.threshold_mm_h
        save_all = settings.MONITOR_SAVE_ALL if save_all is None else save_all
        summary = MonitorSummary(
            started_at=datetime.now(timezone.utc),
            threshold_mm_h=threshold,
            save_all=save_all,
        )

        if frame is None:
            if self.radar_client is None:
                raise ConfigurationError("No radar client configured", field="radar_client")
            try:
                frame = await self.radar_client.capture_frame()
            except Exception as e:
                reason = e.message if isinstance(e, PumpWatchError) else f"{type(e).__name__}: {e}"
                summary.errors.append(reason)
                summary.duration_ms = (time.perf_counter() - start) * 1000
                logger.error("Radar capture failed: %s", reason, exc_info=not isinstance(e, PumpWatchError))
                return summary

        summary.radar_station = frame.station
        summary.radar_time = frame.radar_time
        summary.samples = await self.decode_frame(frame, threshold)

        to_save = summary.samples if save_all else summary.alerts
        if to_save:
            try:
                summary.saved = await self.store.insert_samples(to_save)
            except StoreError as e:
                summary.errors.append(e.message)
                logger.error("Storing radar samples failed: %s", e.message)

        summary.duration_ms = (time.perf_counter() - start) * 1000
        for sample in summary.alerts:
            logger.warning(
                "ALERT: %s %s (%.2f mm/h)",
                sample.pump.name, sample.intensity.label, sample.rain_rate_mm_h,
                extra={"pump": sample.pump.name},
            )
        logger.info(
            "Monitor cycle: %d/%d pumps alerting, %d failed, %d saved",
            len(summary.alerts), len(summary.samples), summary.failed, summary.saved,
            extra={"alert_count": len(summary.alerts), "duration_ms": summary.duration_ms},
        )
        return summary
