"""
FastAPI route: job control.

    GET  /api/v1/jobs                  — every registered job
    GET  /api/v1/jobs/{name}           — one job
    POST /api/v1/jobs/{name}/{action}  — start | stop | restart | trigger
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends

from backend.pumpwatch.api.dependencies import get_services
from backend.pumpwatch.api.schemas import JobAction, JobActionRequest
from backend.pumpwatch.services import ServiceContainer

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.get("")
async def list_jobs(services: ServiceContainer = Depends(get_services)):
    return {"success": True, "jobs": services.scheduler.get_all()}


@router.get("/{name}")
async def get_job(name: str, services: ServiceContainer = Depends(get_services)):
    return {"success": True, "job": services.scheduler.status(name)}


@router.post("/{name}/{action}")
async def control_job(
    name: str,
    action: JobAction,
    body: Optional[JobActionRequest] = Body(None),
    services: ServiceContainer = Depends(get_services),
):
    scheduler = services.scheduler
    schedule = body.schedule if body else None

    if action == JobAction.TRIGGER:
        record = await scheduler.trigger(name)
        return {"success": True, "run": record.to_dict(), "job": scheduler.status(name)}
    if action == JobAction.START:
        job = scheduler.start(name)
    elif action == JobAction.STOP:
        job = scheduler.stop(name)
    else:
        job = scheduler.restart(name, schedule)
    return {"success": True, "action": action.value, "job": job}
