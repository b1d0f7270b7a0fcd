"""Health check endpoints."""

from typing import Any

from litestar import Router, get
from litestar.status_codes import HTTP_200_OK

from biowell_service import __version__
from biowell_service.services.container import ServiceContainer


@get("/health", status_code=HTTP_200_OK, sync_to_thread=False)
def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Status and version information
    """
    return {
        "status": "ok",
        "version": __version__,
    }


@get("/health/services", status_code=HTTP_200_OK, sync_to_thread=False)
def service_status(services: ServiceContainer) -> dict[str, Any]:
    """Cache, timing and error statistics of the running services."""
    return {
        "status": "ok",
        "version": __version__,
        "cache": services.cache.stats().to_dict(),
        "operations": services.timer.summary(),
        "recent_errors": [e.to_log_dict() for e in services.error_handler.recent_errors(10)],
        "sweeper": services.sweeper.get_status(),
    }


health_router = Router(path="/", route_handlers=[health_check, service_status])
