"""
FastAPI route: forecast verification and accuracy.

    POST /api/v1/accuracy/verify   — pair forecasts with observed rainfall
    GET  /api/v1/accuracy/metrics  — score one location over a period
    GET  /api/v1/accuracy/history  — stored metric snapshots, newest first
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from backend.pumpwatch.api.dependencies import get_services
from backend.pumpwatch.api.schemas import VerifyRequest, as_aware
from backend.pumpwatch.core.errors import ConfigurationError
from backend.pumpwatch.services import ServiceContainer

router = APIRouter(prefix="/api/v1/accuracy", tags=["accuracy"])


def _period(services: ServiceContainer, start: Optional[datetime], end: Optional[datetime]):
    end = as_aware(end) or datetime.now(timezone.utc)
    start = as_aware(start) or end - timedelta(hours=services.config.FORECAST_VERIFY_LOOKBACK_HOURS)
    if start > end:
        raise ConfigurationError("start must not be after end", field="start")
    return start, end


@router.post("/verify")
async def verify(
    body: Optional[VerifyRequest] = Body(None),
    services: ServiceContainer = Depends(get_services),
):
    body = body or VerifyRequest()
    start, end = _period(services, body.start, body.end)
    result = await services.accuracy.verify(start, end)
    return {"success": True, **result.to_dict()}


@router.get("/metrics")
async def metrics(
    location_name: str = Query(..., min_length=1, examples=["Kelinci"]),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    persist: bool = Query(True, description="Store the result as a history snapshot"),
    services: ServiceContainer = Depends(get_services),
):
    start, end = _period(services, start, end)
    result = await services.accuracy.calculate_metrics(location_name, start, end, persist=persist)
    if result is None:
        return {
            "success": True,
            "metrics": None,
            "message": f"No verified forecasts for {location_name} in this period",
        }
    return {"success": True, "metrics": result.to_dict()}


@router.get("/history")
async def history(
    location_name: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    services: ServiceContainer = Depends(get_services),
):
    snapshots = await services.accuracy.history(location_name, limit)
    return {"success": True, "count": len(snapshots), "history": [s.to_dict() for s in snapshots]}
