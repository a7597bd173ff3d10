"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured logging with request/job context
    errors          — exception hierarchy & HTTP handlers
    middleware      — request logging, timing, correlation IDs
    database        — async SQLAlchemy engine and declarative base
    http            — retrying httpx client shared by upstream providers
"""
