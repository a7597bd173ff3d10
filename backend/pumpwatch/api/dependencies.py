"""FastAPI dependencies shared by the v1 routers."""

from fastapi import Request

from backend.pumpwatch.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """The process-wide container attached to the app at startup."""
    return request.app.state.services
