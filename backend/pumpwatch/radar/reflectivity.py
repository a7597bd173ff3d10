"""
Reflectivity decoding — radar legend colours → dBZ → rain rate → intensity.

Pure functions of (legend, pixel, thresholds); nothing here touches the
network or the store.

Marshall–Palmer:
    Z = 10^(dBZ / 10)
    R = (Z / 200)^(1 / 1.6)        [mm/h]
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

RGB = Tuple[int, int, int]

# Marshall–Palmer coefficients
MP_A = 200.0
MP_B = 1.6

DEFAULT_BREAKPOINTS_MM_H: Tuple[float, float, float, float] = (0.5, 2.0, 10.0, 50.0)


# ═══════════════════════════════════════════════════════════════════════════
# Legend
# ═══════════════════════════════════════════════════════════════════════════

def parse_hex_color(value: str) -> RGB:
    """'#1e90ff' / '1E90FF' → (30, 144, 255)."""
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) not in (6, 8):
        raise ValueError(f"Not a hex colour: {value!r}")
    n = int(text[:6], 16)
    return (n >> 16) & 0xFF, (n >> 8) & 0xFF, n & 0xFF


@dataclass(frozen=True)
class ColorLegend:
    """Ordered (level, colour) pairs of a radar product, ascending by level."""
    levels: Tuple[float, ...]
    colors: Tuple[RGB, ...]

    def __post_init__(self) -> None:
        if len(self.levels) != len(self.colors):
            raise ValueError(
                f"Legend has {len(self.levels)} levels but {len(self.colors)} colours"
            )
        if not self.levels:
            raise ValueError("Legend is empty")

    @classmethod
    def from_hex(cls, levels: Sequence[float], colors: Sequence[str]) -> "ColorLegend":
        return cls(
            levels=tuple(float(level) for level in levels),
            colors=tuple(parse_hex_color(c) for c in colors),
        )

    def __len__(self) -> int:
        return len(self.levels)

    def as_array(self) -> np.ndarray:
        """Colours as an (L, 3) float array for vectorised lookup."""
        return np.asarray(self.colors, dtype=np.float64)

    def to_dict(self) -> dict:
        return {
            "levels": list(self.levels),
            "colors": ["#%02x%02x%02x" % c for c in self.colors],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Colour → dBZ
# ═══════════════════════════════════════════════════════════════════════════

def nearest_legend_entry(pixel: Sequence[int], legend: ColorLegend) -> Tuple[float, float]:
    """Return (level, rgb_distance) of the closest legend colour; first wins on ties."""
    r, g, b = int(pixel[0]), int(pixel[1]), int(pixel[2])
    best_index = 0
    best_distance = math.inf
    for i, (cr, cg, cb) in enumerate(legend.colors):
        dist = math.hypot(r - cr, g - cg, b - cb)
        if dist < best_distance:
            best_index, best_distance = i, dist
    return legend.levels[best_index], best_distance


def match_reflectivity(pixel: Sequence[int], legend: ColorLegend) -> float:
    """Legend level (dBZ) whose colour is nearest to ``pixel`` in RGB space."""
    level, _ = nearest_legend_entry(pixel, legend)
    return level


def match_pixels(pixels: np.ndarray, legend: ColorLegend) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorised ``nearest_legend_entry`` over an (N, 3+) pixel array.

    Returns (levels, distances), both shape (N,). ``argmin`` keeps the
    first minimum, matching the scalar tie rule.
    """
    rgb = np.asarray(pixels, dtype=np.float64)[:, :3]
    if rgb.size == 0:
        return np.empty(0), np.empty(0)
    diffs = rgb[:, None, :] - legend.as_array()[None, :, :]
    dist = np.sqrt((diffs ** 2).sum(axis=2))
    idx = dist.argmin(axis=1)
    levels = np.asarray(legend.levels, dtype=np.float64)[idx]
    return levels, dist[np.arange(len(idx)), idx]


# ═══════════════════════════════════════════════════════════════════════════
# dBZ → rain rate
# ═══════════════════════════════════════════════════════════════════════════

def rain_rate(dbz: float) -> float:
    """Marshall–Palmer rain rate in mm/h; 0 for dbz ≤ 0 or non-finite input."""
    if not math.isfinite(dbz) or dbz <= 0:
        return 0.0
    z = 10.0 ** (dbz / 10.0)
    return (z / MP_A) ** (1.0 / MP_B)


# ═══════════════════════════════════════════════════════════════════════════
# Rain rate → intensity
# ═══════════════════════════════════════════════════════════════════════════

class RainIntensity(str, Enum):
    NO_RAIN = "no_rain"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    VERY_HEAVY = "very_heavy"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    RainIntensity.NO_RAIN: "No Rain",
    RainIntensity.LIGHT: "Light Rain",
    RainIntensity.MODERATE: "Moderate Rain",
    RainIntensity.HEAVY: "Heavy Rain",
    RainIntensity.VERY_HEAVY: "Very Heavy Rain",
}

_ORDERED = list(RainIntensity)


class IntensityScale:
    """
    Table-driven classifier.

    ``breakpoints`` are exclusive upper bounds for NoRain, Light, Moderate
    and Heavy. Anything at or above the last breakpoint is VeryHeavy.
    """

    def __init__(self, breakpoints: Optional[Sequence[float]] = None):
        points = list(breakpoints if breakpoints is not None else DEFAULT_BREAKPOINTS_MM_H)
        if len(points) != len(_ORDERED) - 1:
            raise ValueError(f"Need {len(_ORDERED) - 1} breakpoints, got {len(points)}")
        if any(b <= a for a, b in zip(points, points[1:])):
            raise ValueError(f"Breakpoints must be strictly ascending: {points}")
        self.breakpoints: List[float] = points

    def classify(self, mm_per_hour: float) -> RainIntensity:
        if not math.isfinite(mm_per_hour) or mm_per_hour <= 0:
            return RainIntensity.NO_RAIN
        return _ORDERED[bisect.bisect_right(self.breakpoints, mm_per_hour)]

    def to_dict(self) -> dict:
        bounds = [0.0] + self.breakpoints + [None]
        return {
            level.value: {"min": bounds[i], "max": bounds[i + 1]}
            for i, level in enumerate(_ORDERED)
        }


_DEFAULT_SCALE = IntensityScale()


def classify(mm_per_hour: float, scale: Optional[IntensityScale] = None) -> RainIntensity:
    """Classify with ``scale`` or the default breakpoints."""
    return (scale or _DEFAULT_SCALE).classify(mm_per_hour)
