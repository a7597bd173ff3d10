"""
FastAPI route: fused pump readings.

    GET /api/v1/pumps/latest     — newest rainfall + water level per pump
    GET /api/v1/pumps/history    — one pump, one local calendar day
    GET /api/v1/pumps/locations  — roster and pumps with fused history
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query

from backend.pumpwatch.api.dependencies import get_services
from backend.pumpwatch.core.config import settings
from backend.pumpwatch.ingestion.views import latest_pump_view, list_pump_names, pump_history
from backend.pumpwatch.services import ServiceContainer

router = APIRouter(prefix="/api/v1/pumps", tags=["pumps"])


@router.get("/latest")
async def latest(services: ServiceContainer = Depends(get_services)):
    pumps = await latest_pump_view(services.store)
    return {"success": True, "count": len(pumps), "pumps": pumps}


@router.get("/history")
async def history(
    pump_name: str = Query(..., min_length=1, examples=["Kelinci"]),
    day: Optional[date] = Query(None, alias="date", description="Local calendar day; defaults to today"),
    services: ServiceContainer = Depends(get_services),
):
    day = day or datetime.now(ZoneInfo(settings.TIMEZONE)).date()
    return {"success": True, **(await pump_history(services.store, pump_name, day))}


@router.get("/locations")
async def locations(services: ServiceContainer = Depends(get_services)):
    return {
        "success": True,
        "roster": [p.to_dict() for p in services.roster],
        "with_history": await list_pump_names(services.store),
    }
