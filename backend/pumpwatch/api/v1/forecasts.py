"""
FastAPI route: forecast points.

    POST /api/v1/forecasts  — store manually submitted forecast hours
    GET  /api/v1/forecasts  — stored forecasts for a location / period
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.pumpwatch.api.dependencies import get_services
from backend.pumpwatch.api.schemas import ForecastBatchRequest, as_aware
from backend.pumpwatch.forecast.collector import save_forecast_points
from backend.pumpwatch.services import ServiceContainer

router = APIRouter(prefix="/api/v1/forecasts", tags=["forecasts"])


@router.post("")
async def submit(body: ForecastBatchRequest, services: ServiceContainer = Depends(get_services)):
    points = body.to_points()
    inserted = await save_forecast_points(services.store, points)
    return {"success": True, "inserted": inserted, "ids": [p.id for p in points]}


@router.get("")
async def find(
    location_name: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    verified: Optional[bool] = Query(None),
    services: ServiceContainer = Depends(get_services),
):
    points = await services.store.find_forecasts(
        location_name=location_name, start=as_aware(start), end=as_aware(end), verified=verified,
    )
    return {"success": True, "count": len(points), "forecasts": [p.to_dict() for p in points]}
