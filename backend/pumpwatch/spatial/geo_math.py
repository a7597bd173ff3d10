"""
geo_math.py — Great-circle distance and nearest-station search.

Provides:
    - Haversine distance between two (lat, lng) points
    - Coordinate validity check used to screen upstream station records
    - Linear nearest-neighbour scan over any objects exposing ``lat``/``lng``

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Haversine
=========
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Station feeds routinely publish a zero latitude or longitude for stations
whose position was never surveyed. Such records would otherwise "win" the
nearest search for nobody and must be screened out before the scan.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Tuple, TypeVar


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius


class HasLatLng(Protocol):
    lat: float
    lng: float


T = TypeVar("T", bound=HasLatLng)


@dataclass(frozen=True)
class Point:
    """A bare geographic point in decimal degrees."""
    lat: float
    lng: float


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def distance_km(a: HasLatLng, b: HasLatLng) -> float:
    """
    Great-circle distance between two points.

    Symmetric, non-negative and exactly 0.0 when both points coincide.

    >>> round(distance_km(Point(-6.20, 106.80), Point(-6.201, 106.801)), 3)
    0.157
    """
    if a.lat == b.lat and a.lng == b.lng:
        return 0.0

    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))
    return EARTH_RADIUS_KM * c


def is_valid_coordinate(lat: Optional[float], lng: Optional[float]) -> bool:
    """
    True when a station position is usable for nearest-neighbour search.

    Rejects missing or non-finite values, out-of-range degrees, and any
    position with a zero latitude or longitude (unsurveyed placeholder).
    """
    if lat is None or lng is None:
        return False
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return False
    if lat_f == 0.0 or lng_f == 0.0:
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


# ---------------------------------------------------------------------------
# Nearest-neighbour scan
# ---------------------------------------------------------------------------

def nearest(reference: HasLatLng, candidates: Iterable[T]) -> Optional[Tuple[T, float]]:
    """
    Find the candidate closest to ``reference``.

    Invalid candidates are skipped. Ties keep the earliest candidate in
    input order. Returns ``None`` when no valid candidate exists.

    >>> stations = [Point(0, 0), Point(-6.21, 106.81)]
    >>> match, dist = nearest(Point(-6.20, 106.80), stations)
    >>> match
    Point(lat=-6.21, lng=106.81)
    """
    best: Optional[T] = None
    best_distance = math.inf

    for candidate in candidates:
        if not is_valid_coordinate(candidate.lat, candidate.lng):
            continue
        dist = distance_km(reference, candidate)
        if dist < best_distance:
            best, best_distance = candidate, dist

    if best is None:
        return None
    return best, best_distance
