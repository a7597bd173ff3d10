"""
test_location_codes.py — pump name → location code.

Run with:
    pytest tests/test_location_codes.py -v
"""

from __future__ import annotations

import pytest

from backend.pumpwatch.ingestion.location_codes import location_code
from backend.pumpwatch.ingestion.roster import builtin_roster


class TestLocationCode:

    @pytest.mark.parametrize("name,code", [
        # synonyms
        ("Pintu Air Pakin Kali Krukut", "papasarikan"),
        ("Pasar Ikan", "papasarikan"),
        ("Pos Marina Ancol", "pamarina"),
        ("Pintu Air Manggarai", "pamanggarai"),
        # known codes contained in the name
        ("Pulomas 2", "pulomas"),
        ("Jembatan Merah", "jembatanmerah"),
        ("Batu Ceper", "batuceper"),
        ("Green Garden", "greengarden"),
        ("Pos Depok", "psdepok"),
        # name contained in a known code
        ("Pluit", "wadukpluit"),
        # slug fallback
        ("Kelinci", "kelinci"),
        ("Rumah Pompa Polder Kamal", "polderkamal"),
        ("Stasiun Teluk Gong", "telukgong"),
    ])
    def test_codes(self, name, code):
        assert location_code(name) == code

    def test_short_name_does_not_match_inside_codes(self):
        # "ali" is inside "kaliitem" but too short to count
        assert location_code("Ali") == "ali"

    @pytest.mark.parametrize("name", [None, "", "  --  "])
    def test_empty(self, name):
        assert location_code(name) is None

    def test_deterministic(self):
        assert location_code("Hayam Wuruk") == location_code("Hayam Wuruk")

    def test_custom_known_codes(self):
        assert location_code("Hayam Wuruk Barat", known_codes=("hayamwuruk",)) == "hayamwuruk"

    def test_builtin_roster_has_codes(self):
        codes = {p.name: location_code(p.name) for p in builtin_roster()}
        assert all(codes.values())
        assert codes["Pintu Air Pakin Kali Krukut"] == "papasarikan"
