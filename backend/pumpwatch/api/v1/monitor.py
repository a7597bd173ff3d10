"""
FastAPI route: radar rain monitor.

    POST /api/v1/monitor/check    — run one monitor cycle now
    GET  /api/v1/monitor/samples  — stored samples, newest first
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from backend.pumpwatch.api.dependencies import get_services
from backend.pumpwatch.api.schemas import MonitorCheckRequest
from backend.pumpwatch.services import ServiceContainer

router = APIRouter(prefix="/api/v1/monitor", tags=["monitor"])


@router.post("/check")
async def check(
    body: Optional[MonitorCheckRequest] = Body(None),
    services: ServiceContainer = Depends(get_services),
):
    """
    On-demand cycle. Runs outside the scheduler, so it does not touch the
    ``monitor`` job's counters.
    """
    body = body or MonitorCheckRequest()
    summary = await services.monitor.check(threshold=body.threshold, save_all=body.save_all)
    return {"success": True, **summary.to_dict()}


@router.get("/samples")
async def samples(
    pump_name: Optional[str] = Query(None),
    alerts_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    services: ServiceContainer = Depends(get_services),
):
    rows = await services.store.recent_samples(
        pump_name=pump_name, alerts_only=alerts_only, limit=limit,
    )
    return {"success": True, "count": len(rows), "samples": [s.to_dict() for s in rows]}
