"""
Logging setup for the API process and its scheduled jobs.

Two renderings of the same records:
    • production   one JSON object per line (aggregator friendly)
    • otherwise    coloured single-line console output

Scoped context (request id, job name, pump) lives in a ContextVar, so a
job run and the HTTP request that triggered it each tag their own lines
even when they interleave on the event loop.

Usage:
    from backend.pumpwatch.core.logging_config import log_context, setup_logging

    setup_logging()
    with log_context(job="pump-sync"):
        logger.info("Stored %d records", 12, extra={"family": "rainfall"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from backend.pumpwatch.core.config import settings

_context: ContextVar[Dict[str, Any]] = ContextVar("pumpwatch_log_context", default={})

# record attributes promoted to top-level JSON keys when present
RECORD_FIELDS = (
    "request_id", "job", "pump", "family", "station", "endpoint", "method",
    "status_code", "duration_ms", "inserted", "alert_count", "error_count",
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "apscheduler", "rasterio", "aiosqlite")


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Layer ``fields`` over the current context until the block exits."""
    merged = {**_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _context.set(merged)
    try:
        yield merged
    finally:
        _context.reset(token)


def current_context() -> Dict[str, Any]:
    return dict(_context.get())


class ContextFilter(logging.Filter):
    """Copy the scoped context onto each record; explicit ``extra`` wins."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in RECORD_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[1]:
            entry["exc_type"] = type(record.exc_info[1]).__name__
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL [job:monitor] logger: message``"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    @staticmethod
    def _tag(record: logging.LogRecord) -> str:
        job = getattr(record, "job", None)
        if job:
            return f" [job:{job}]"
        request_id = getattr(record, "request_id", None)
        if request_id:
            return f" [req:{request_id[:8]}]"
        return ""

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8s}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"
        line = f"{self.formatTime(record, '%H:%M:%S')} {level}{self._tag(record)} {record.name}: {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging() -> None:
    """Install one stdout handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(color=sys.stdout.isatty()))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
