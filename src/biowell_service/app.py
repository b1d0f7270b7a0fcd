"""Litestar application factory."""

import logging
import sys
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import httpx
import structlog
from litestar import Litestar
from litestar.di import Provide
from litestar.openapi import OpenAPIConfig

from biowell_service import __version__
from biowell_service.api import api_routers
from biowell_service.api.dependencies import provide_services
from biowell_service.api.errors import app_error_handler
from biowell_service.core.config import Settings, settings
from biowell_service.core.errors import AppError
from biowell_service.services.container import ServiceContainer

# Configure structured logging
logging.basicConfig(format="%(message)s", stream=sys.stdout, level=settings.log_level)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def make_lifespan(
    config: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[Litestar], AbstractAsyncContextManager[None]]:
    """Build the lifespan that owns the service container.

    Args:
        config: Application settings
        transport: httpx transport for the external services (tests)
    """

    @asynccontextmanager
    async def lifespan(app: Litestar) -> AsyncIterator[None]:
        """Application lifespan manager.

        Handles startup and shutdown tasks:
        - Create the schema and the service graph on startup
        - Start the cache sweeper
        - Stop the sweeper and close connections on shutdown
        """
        logger.info(
            "Starting biowell-service",
            version=__version__,
            auto_seed=config.auto_seed_metrics,
            cache_sweep_interval=config.cache_sweep_interval_seconds,
        )

        services = await ServiceContainer.create(config, transport=transport)
        app.state.services = services
        await services.start()

        try:
            yield
        finally:
            await services.close()
            logger.info("Shutdown complete")

    return lifespan


def create_app(
    config: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Litestar:
    """Create Litestar application.

    Args:
        config: Settings to use instead of the environment
        transport: httpx transport for the external services (tests)

    Returns:
        Configured Litestar app instance
    """
    config = config or settings

    return Litestar(
        route_handlers=api_routers,
        lifespan=[make_lifespan(config, transport)],
        dependencies={"services": Provide(provide_services, sync_to_thread=False)},
        exception_handlers={AppError: app_error_handler},
        openapi_config=OpenAPIConfig(
            title="biowell-service API",
            version=__version__,
            description="Wellness dashboard data service: metrics, chat and assistant tools",
        ),
        debug=config.log_level == "DEBUG",
    )


# Application instance
app = create_app()
