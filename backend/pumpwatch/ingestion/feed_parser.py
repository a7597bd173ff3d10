"""
Feed parser — normalise loosely-typed station records from the government feeds.

Upstream records use shifting field names and casing, comma decimals
("2,5") and local wall-clock timestamps. Every logical field has an
ordered alias list tried case-insensitively; the first alias holding a
non-empty value wins. All numeric conversion goes through ``to_number``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import MalformedRecordError
from backend.pumpwatch.ingestion.models import FeedFamily, SensorObservation

logger = logging.getLogger(__name__)


# ── Field aliases (priority order) ──

RAINFALL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("NAMA_POS", "NAMA_LOKASI_PEMANTAUAN", "nama"),
    "value": ("KETINGGIAN_TERAKHIR", "TEBAL_HUJAN", "CH_HARI_INI", "ch", "val"),
    "lat": ("LATITUDE", "lat"),
    "lng": ("LONGITUDE", "long", "lng"),
    "time": ("TANGGAL_TERAKHIR", "TANGGAL_TERAKHIR_HARI_INI", "TANGGAL"),
}

WATER_LEVEL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("NAMA_PINTU_AIR", "nama_pos", "nama"),
    "value": ("TINGGI_AIR", "tma", "val"),
    "lat": ("LATITUDE", "lat"),
    "lng": ("LONGITUDE", "long", "lng"),
    "status": ("STATUS_SIAGA", "status"),
    "date": ("TANGGAL",),
    "clock": ("JAM",),
}

UNNAMED = {
    FeedFamily.RAINFALL: "Unnamed rain gauge",
    FeedFamily.WATER_LEVEL: "Unnamed water gate",
}

# Hourly rainfall depth → status label, (upper bound, inclusive?, label)
RAIN_STATUS_TABLE: Tuple[Tuple[float, bool, str], ...] = (
    (0.5, False, "Clear"),
    (5.0, True, "Light Rain"),
    (10.0, True, "Moderate Rain"),
    (20.0, True, "Heavy Rain"),
    (50.0, True, "Very Heavy Rain"),
)
RAIN_STATUS_MAX = "Extreme Rain"

_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
)


# ═══════════════════════════════════════════════════════════════════════════
# Scalar normalisation
# ═══════════════════════════════════════════════════════════════════════════

def to_number(value: Any) -> Optional[float]:
    """
    Normalise a feed value to float.

    ``None`` and blank strings give ``None``. Comma decimals are accepted
    ("2,5" → 2.5, "1.234,5" → 1234.5). Anything else unparsable raises
    ``ValueError``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(" ", "")
        if not text or text == "-":
            return None
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"Non-finite number: {value!r}")
    return number


def pick(record: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """First non-empty value among ``aliases``, matched case-insensitively."""
    lowered = {str(k).lower(): v for k, v in record.items()}
    for alias in aliases:
        value = lowered.get(alias.lower())
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def parse_local_time(value: Any, tz: Optional[str] = None) -> Optional[datetime]:
    """
    Parse a feed timestamp to aware UTC.

    Naive values are wall-clock time in ``tz`` (default ``settings.TIMEZONE``).
    Unparsable values give ``None``: a missing source time is not fatal.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _TIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            logger.debug("Unparsable feed timestamp %r", text)
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(tz or settings.TIMEZONE))
    return parsed.astimezone(timezone.utc)


def rain_status(depth_mm: Optional[float]) -> str:
    """Status label for an hourly rainfall depth."""
    if depth_mm is None:
        return "Unknown"
    for bound, inclusive, label in RAIN_STATUS_TABLE:
        if depth_mm < bound or (inclusive and depth_mm == bound):
            return label
    return RAIN_STATUS_MAX


# ═══════════════════════════════════════════════════════════════════════════
# Record parsing
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ParsedFeed:
    family: FeedFamily
    observations: List[SensorObservation] = field(default_factory=list)
    malformed: int = 0

    @property
    def total(self) -> int:
        return len(self.observations) + self.malformed


def _coordinate(record: Mapping[str, Any], aliases: Sequence[str]) -> Optional[float]:
    # A bad coordinate only disqualifies the station from matching
    try:
        return to_number(pick(record, aliases))
    except ValueError:
        return None


def parse_rainfall_record(record: Mapping[str, Any]) -> SensorObservation:
    if not isinstance(record, Mapping):
        raise MalformedRecordError("Rainfall record is not an object", record_type=type(record).__name__)
    a = RAINFALL_ALIASES
    try:
        value = to_number(pick(record, a["value"]))
    except ValueError as exc:
        raise MalformedRecordError(f"Unparsable rainfall value: {exc}") from exc
    value = 0.0 if value is None else value

    return SensorObservation(
        family=FeedFamily.RAINFALL,
        station_name=str(pick(record, a["name"]) or UNNAMED[FeedFamily.RAINFALL]),
        lat=_coordinate(record, a["lat"]),
        lng=_coordinate(record, a["lng"]),
        value=value,
        status_label=rain_status(value),
        observed_at=parse_local_time(pick(record, a["time"])),
    )


def parse_water_level_record(record: Mapping[str, Any]) -> SensorObservation:
    if not isinstance(record, Mapping):
        raise MalformedRecordError("Water-level record is not an object", record_type=type(record).__name__)
    a = WATER_LEVEL_ALIASES
    try:
        value = to_number(pick(record, a["value"]))
    except ValueError as exc:
        raise MalformedRecordError(f"Unparsable water level: {exc}") from exc

    date_part = pick(record, a["date"])
    clock_part = pick(record, a["clock"])
    stamp = f"{date_part} {clock_part}" if date_part and clock_part else date_part

    return SensorObservation(
        family=FeedFamily.WATER_LEVEL,
        station_name=str(pick(record, a["name"]) or UNNAMED[FeedFamily.WATER_LEVEL]),
        lat=_coordinate(record, a["lat"]),
        lng=_coordinate(record, a["lng"]),
        value=0.0 if value is None else value,
        status_label=str(pick(record, a["status"]) or "Normal"),
        observed_at=parse_local_time(stamp),
    )


_PARSERS = {
    FeedFamily.RAINFALL: parse_rainfall_record,
    FeedFamily.WATER_LEVEL: parse_water_level_record,
}


def unwrap_payload(payload: Any) -> List[Any]:
    """Accept a bare list or a ``{"data": [...]}`` wrapper."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        if data is None:
            return []
    raise MalformedRecordError(
        "Feed payload is neither a list nor a {data: [...]} object",
        payload_type=type(payload).__name__,
    )


def parse_feed(family: FeedFamily, records: Iterable[Any]) -> ParsedFeed:
    """Parse every record, skipping and counting malformed ones."""
    parser = _PARSERS[family]
    result = ParsedFeed(family=family)
    for record in records:
        try:
            result.observations.append(parser(record))
        except MalformedRecordError as exc:
            result.malformed += 1
            logger.debug("Skipping malformed %s record: %s", family.value, exc.message)

    if result.malformed:
        logger.info(
            "%s feed: %d parsed, %d malformed skipped",
            family.value, len(result.observations), result.malformed,
            extra={"family": family.value},
        )
    return result
