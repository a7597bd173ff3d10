"""
ingestion — sensor feeds fused onto the pump roster.

Sub-modules:
    roster          — built-in / KML pump locations
    feed_parser     — tolerant parsing of rainfall and water-level records
    feed_client     — fetches both government feeds
    location_codes  — pump name → short location code
    fusion_engine   — nearest-station fusion cycle
    views           — read-side views served by the API
    models          — shared data structures
"""
