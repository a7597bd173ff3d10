"""
Error model for engines, jobs and the HTTP layer.

Only hard failures are exceptions. A pump with no nearby station, or a
forecast with no observation inside the tolerance window, is a counted
coverage gap in a cycle summary and never raises. The engines catch the
exceptions below at cycle boundaries and report them in their summaries;
the API turns any that escape into one JSON envelope:

    {"success": false, "error": {"code": ..., "message": ..., "status": ..., "details": {...}}}

Usage:
    from backend.pumpwatch.core.errors import JobNotFoundError, register_error_handlers

    register_error_handlers(app)
    raise JobNotFoundError("monitor")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.pumpwatch.core.config import settings

logger = logging.getLogger(__name__)

# seconds a client should wait before retrying after an upstream outage
UPSTREAM_RETRY_AFTER_S = 60


# ═══════════════════════════════════════════════════════════════════════════
# Exceptions
# ═══════════════════════════════════════════════════════════════════════════

class PumpWatchError(Exception):
    """Base class; subclasses fix ``status_code`` and ``error_code``."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "Unexpected failure",
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details: Dict[str, Any] = dict(details or {})

    def to_payload(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
            "details": self.details,
        }


class UpstreamUnavailableError(PumpWatchError):
    """A feed, the radar or the forecast provider is unreachable or answered non-2xx."""

    status_code = 502
    error_code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            f"Upstream '{service}' unavailable: {message}",
            details={"service": service, **details},
        )
        self.service = service


class MalformedRecordError(PumpWatchError):
    """One station record, payload or pixel window could not be interpreted."""

    status_code = 422
    error_code = "MALFORMED_RECORD"

    def __init__(self, message: str, **details: Any):
        super().__init__(message, details=details)


class ProjectionError(MalformedRecordError):
    """A pump projects outside the radar frame."""

    def __init__(self, pump: str, lat: float, lng: float):
        super().__init__(
            f"Pump '{pump}' lies outside the radar frame",
            pump=pump, lat=lat, lng=lng,
        )


class StoreError(PumpWatchError):
    """The record store rejected a read or a batch write."""

    error_code = "STORE_ERROR"

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            f"Store operation '{operation}' failed: {message}",
            details={"operation": operation, **details},
        )
        self.operation = operation


class ConfigurationError(PumpWatchError):
    """Bad schedule expression, roster file or other control-plane input."""

    status_code = 422
    error_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class JobNotFoundError(PumpWatchError):
    """Control operation on a job name nobody registered."""

    status_code = 404
    error_code = "JOB_NOT_FOUND"

    def __init__(self, name: str):
        super().__init__(f"Job '{name}' is not registered", details={"job": name})
        self.name = name


# ═══════════════════════════════════════════════════════════════════════════
# HTTP envelope
# ═══════════════════════════════════════════════════════════════════════════

def error_response(
    request: Request,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    error = dict(payload)
    if not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return JSONResponse(
        status_code=error["status"],
        content={"success": False, "error": error},
        headers=headers,
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Strip non-serialisable context from pydantic error entries."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(PumpWatchError)
    async def handle_domain_error(request: Request, exc: PumpWatchError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(level, "%s: %s", exc.error_code, exc.message, extra={"status_code": exc.status_code})
        headers = None
        if isinstance(exc, UpstreamUnavailableError):
            headers = {"Retry-After": str(UPSTREAM_RETRY_AFTER_S)}
        return error_response(request, exc.to_payload(), headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation(request: Request, exc: RequestValidationError):
        errors = jsonable_errors(exc)
        logger.warning("Rejected request: %d validation error(s)", len(errors))
        return error_response(request, {
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "status": 422,
            "details": {"errors": errors},
        })

    @app.exception_handler(StarletteHTTPException)
    async def handle_http(request: Request, exc: StarletteHTTPException):
        return error_response(request, {
            "code": "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR",
            "message": str(exc.detail),
            "status": exc.status_code,
            "details": {},
        }, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled %s on %s", type(exc).__name__, request.url.path)
        return error_response(request, {
            "code": "INTERNAL_ERROR",
            "message": f"{type(exc).__name__}: {exc}" if settings.DEBUG else "Internal server error",
            "status": 500,
            "details": {},
        })
