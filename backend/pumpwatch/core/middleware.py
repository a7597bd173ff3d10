"""
Request middleware.

Every request gets a correlation id (client-supplied ``X-Request-ID`` when
it is sane, otherwise a fresh one) that tags all log lines emitted while
serving it, including lines from a job run triggered through the API.
Responses carry ``X-Request-ID`` and ``X-Process-Time``.

Job-control calls (``POST /api/v1/jobs/{name}/{action}``) are logged at
INFO even when routine traffic is quiet, so operator actions stay visible.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.pumpwatch.core.logging_config import log_context

logger = logging.getLogger(__name__)

QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")

_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_JOB_ACTION = re.compile(r"^/api/v1/jobs/(?P<job>[^/]+)/(?P<action>[^/]+)$")


def request_id_for(request: Request) -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID.match(supplied):
        return supplied
    return uuid.uuid4().hex[:16]


def route_fields(request: Request) -> Dict[str, Any]:
    """Domain tags for the log line: job name for job control, pump for pump queries."""
    fields: Dict[str, Any] = {}
    match = _JOB_ACTION.match(request.url.path)
    if match and request.method == "POST":
        fields["job"] = match.group("job")
        fields["action"] = match.group("action")
    pump = request.query_params.get("pump_name")
    if pump:
        fields["pump"] = pump
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request_id_for(request)
        path = request.url.path
        fields = route_fields(request)
        start = time.perf_counter()

        with log_context(request_id=request_id, endpoint=path, method=request.method):
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "%s %s → 500 (%.1fms)", request.method, path, duration_ms,
                    extra={"duration_ms": duration_ms, "status_code": 500, **fields},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

            if response.status_code >= 400:
                level = logging.WARNING
            elif "action" in fields:
                level = logging.INFO
            elif path.startswith(QUIET_PREFIXES):
                level = logging.DEBUG
            else:
                level = logging.INFO

            if "action" in fields:
                logger.log(
                    level, "Job %s %s via API → %d (%.1fms)",
                    fields["job"], fields["action"], response.status_code, duration_ms,
                    extra={"duration_ms": duration_ms, "status_code": response.status_code,
                           "job": fields["job"]},
                )
            else:
                logger.log(
                    level, "%s %s → %d (%.1fms)",
                    request.method, path, response.status_code, duration_ms,
                    extra={"duration_ms": duration_ms, "status_code": response.status_code, **fields},
                )

        return response
