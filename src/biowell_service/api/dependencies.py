"""Dependency providers for route handlers."""

from litestar.datastructures import State

from biowell_service.services.container import ServiceContainer


def provide_services(state: State) -> ServiceContainer:
    """Service container built by the app lifespan."""
    return state.services  # type: ignore[no-any-return]
