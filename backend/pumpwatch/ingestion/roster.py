"""
Pump roster — the fixed set of pump stations every cycle is computed for.

The roster is built once at process start, either from the built-in list
or from a KML placemark export (``ROSTER_KML_PATH``), and then shared
read-only by every engine.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from backend.pumpwatch.core.errors import ConfigurationError
from backend.pumpwatch.ingestion.models import PumpLocation

logger = logging.getLogger(__name__)


# ── Built-in Jakarta pump stations ──
BUILTIN_PUMPS: Tuple[Tuple[str, float, float], ...] = (
    ("Pulomas 2", -6.168055599999999, 106.8808333),
    ("Kampung Ambon", -6.1788889, 106.8988889),
    ("Kelinci", -6.161388899999999, 106.8375),
    ("Jembatan Merah", -6.1494444, 106.8347222),
    ("Hayam Wuruk", -6.1594444, 106.8194444),
    ("Batu Ceper", -6.1633, 106.82),
    ("Green Garden", -6.158333300000001, 106.7602778),
    ("Rumah Pompa Polder Kamal", -6.0961734, 106.7183362),
    ("RLS Brigif", -6.3511111, 106.7983333),
    ("Pintu Air Pakin Kali Krukut", -6.1283326, 106.805917),
    ("Outlet RLS Pondok Ranggon", -6.3380556, 106.9177778),
    ("Teluk Gong", -6.133645520597007, 106.7778712339822),
)


def build_roster(pumps: Iterable[PumpLocation]) -> List[PumpLocation]:
    """Freeze a roster, rejecting duplicate pump names."""
    roster: List[PumpLocation] = []
    seen = set()
    for pump in pumps:
        if pump.name in seen:
            raise ConfigurationError(
                f"Duplicate pump name in roster: {pump.name!r}", field="name",
            )
        seen.add(pump.name)
        roster.append(pump)
    return roster


def builtin_roster() -> List[PumpLocation]:
    return build_roster(PumpLocation(name, lat, lng) for name, lat, lng in BUILTIN_PUMPS)


# ── KML ──

def _local(tag: str) -> str:
    """Strip an XML namespace: '{ns}Placemark' → 'Placemark'."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element.iter():
        if _local(child.tag) == name and child.text:
            return child.text.strip()
    return None


def parse_kml(text: str) -> List[PumpLocation]:
    """
    Extract pump placemarks from a KML document.

    Coordinates are ``lng,lat[,alt]``. Placemarks without parsable
    coordinates are skipped with a warning.
    """
    root = ET.fromstring(text)
    pumps: List[PumpLocation] = []

    placemarks = [el for el in root.iter() if _local(el.tag) == "Placemark"]
    for index, placemark in enumerate(placemarks):
        name = _child_text(placemark, "name") or f"Pump {index + 1}"
        coords = _child_text(placemark, "coordinates")
        if not coords:
            logger.warning("Skipping placemark %r: no coordinates", name)
            continue
        try:
            lng_str, lat_str = coords.split()[0].split(",")[:2]
            lat, lng = float(lat_str), float(lng_str)
        except ValueError:
            logger.warning("Skipping placemark %r: invalid coordinates %r", name, coords)
            continue
        pumps.append(PumpLocation(name=name, lat=lat, lng=lng))

    return build_roster(pumps)


def load_roster(kml_path: Optional[str] = None) -> List[PumpLocation]:
    """KML roster when configured and readable, otherwise the built-in list."""
    if not kml_path:
        return builtin_roster()

    try:
        pumps = parse_kml(Path(kml_path).read_text(encoding="utf-8"))
    except (OSError, ET.ParseError) as exc:
        logger.warning("Roster KML %s unreadable (%s), using built-in roster", kml_path, exc)
        return builtin_roster()

    if not pumps:
        logger.warning("Roster KML %s has no usable placemarks, using built-in roster", kml_path)
        return builtin_roster()

    logger.info("Loaded %d pump locations from %s", len(pumps), kml_path)
    return pumps
