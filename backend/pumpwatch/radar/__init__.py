"""
radar — weather-radar reflectivity monitoring.

Sub-modules:
    reflectivity    — colour legend matching, Marshall-Palmer rain rate, intensity scale
    radar_client    — radar metadata + image fetch, decoded to RGBA arrays
    models          — frame, bounds, sample and cycle summary types
    monitor_engine  — per-pump window sampling and alerting
"""
