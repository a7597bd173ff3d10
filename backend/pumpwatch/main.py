"""
FastAPI application entry point.

Run with:
    uvicorn backend.pumpwatch.main:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ── Core infrastructure ──
from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.errors import register_error_handlers
from backend.pumpwatch.core.logging_config import get_logger, setup_logging
from backend.pumpwatch.core.middleware import RequestLoggingMiddleware
from backend.pumpwatch.services import ServiceContainer

# ── API routers ──
from backend.pumpwatch.api.v1.accuracy import router as accuracy_router
from backend.pumpwatch.api.v1.forecasts import router as forecasts_router
from backend.pumpwatch.api.v1.jobs import router as jobs_router
from backend.pumpwatch.api.v1.monitor import router as monitor_router
from backend.pumpwatch.api.v1.pumps import router as pumps_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(services: Optional[ServiceContainer] = None, *, start_jobs: bool = True) -> FastAPI:
    """
    Build the application. ``services`` is created on startup when not
    given; an injected container is still started and shut down here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        container = services or ServiceContainer()
        app.state.services = container
        await container.startup(start_jobs=start_jobs)
        yield
        await container.shutdown()
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Flood-pump rain monitoring: fuses government rainfall and "
            "water-level feeds onto a pump roster, decodes weather-radar "
            "reflectivity into rain rates and alerts, collects hourly "
            "forecasts and scores them against observed rainfall."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(pumps_router)
    app.include_router(monitor_router)
    app.include_router(forecasts_router)
    app.include_router(accuracy_router)
    app.include_router(jobs_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["pumps", "monitor", "forecasts", "accuracy", "jobs"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        container: ServiceContainer = app.state.services
        jobs = container.scheduler.get_all()
        return {
            "success": True,
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "pumps": len(container.roster),
            "store": type(container.store).__name__,
            "jobs": {job["name"]: job["status"] for job in jobs},
        }

    return app


app = create_app()
