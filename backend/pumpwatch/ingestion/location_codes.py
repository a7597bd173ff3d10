"""
Location codes — stable short identifiers derived from pump display names.

A code is a pure function of the name:
    1. hand-curated synonyms (e.g. any "Pasar Ikan"/"Pakin" name → "papasarikan")
    2. containment match against the known code list
    3. deterministic slug fallback

    >>> location_code("Pintu Air Pakin Kali Krukut")
    'papasarikan'
    >>> location_code("Rumah Pompa Teluk Gong")
    'telukgong'
"""

from __future__ import annotations

import re
from typing import Optional, Sequence, Tuple

KNOWN_CODES: Tuple[str, ...] = (
    "katulampa",
    "psdepok",
    "pamanggarai",
    "sodetanciliwung",
    "pskrukuthulu",
    "pakaret",
    "wadukpluit",
    "papasarikan",
    "pamarina",
    "jembatanmerah",
    "pintuairtangki",
    "istiqlal",
    "pscipinanghulu",
    "pssunterhulu",
    "papulogadung",
    "paflushingancol",
    "wijayakusuma",
    "cideng",
    "greengarden",
    "setiabuditimur",
    "angkasa",
    "batuceper",
    "sunterselatan",
    "kaliitem",
    "tamanbmw",
    "dewaruci",
    "arthagading",
    "pulomas",
)

# (substring of the cleaned name, code), checked in order
SYNONYMS: Tuple[Tuple[str, str], ...] = (
    ("pakin", "papasarikan"),
    ("pasarikan", "papasarikan"),
    ("marina", "pamarina"),
    ("manggarai", "pamanggarai"),
)

# Word rewrites applied once each, first occurrence only
_PREFIX_REWRITES: Tuple[Tuple[str, str], ...] = (
    ("rumahpompa", ""),
    ("pintuair", "pa"),
    ("pos", "ps"),
)

# A cleaned name shorter than this never matches by being contained in a code
_MIN_REVERSE_MATCH = 4

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def _clean(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def _rewrite(clean: str, extra: Sequence[Tuple[str, str]] = ()) -> str:
    for old, new in (*_PREFIX_REWRITES, *extra):
        clean = clean.replace(old, new, 1)
    return clean


def location_code(name: Optional[str], known_codes: Sequence[str] = KNOWN_CODES) -> Optional[str]:
    """Derive the location code for a pump name; ``None`` for an empty name."""
    if not name:
        return None

    clean = _clean(name)
    if not clean:
        return None

    for needle, code in SYNONYMS:
        if needle in clean:
            return code

    stem = _rewrite(clean)
    if stem:
        for code in known_codes:
            if code in stem:
                return code
            if len(stem) >= _MIN_REVERSE_MATCH and stem in code:
                return code

    return _rewrite(clean, extra=(("stasiun", ""),))
