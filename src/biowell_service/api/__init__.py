"""API routes."""

from litestar import Router

from biowell_service.api.assistant import assistant_router
from biowell_service.api.chat import chat_router
from biowell_service.api.health import health_router
from biowell_service.api.metrics import metrics_router
from biowell_service.api.profile import profile_router

# Versioned API routers (user data endpoints)
# These get the /api/v1 prefix
_v1_routers = [
    metrics_router,
    chat_router,
    assistant_router,  # Nutrition, recipes, speech
    profile_router,
]

api_v1_router = Router(path="/api/v1", route_handlers=_v1_routers)

# - health_router: /health - no version prefix
# - api_v1_router: /api/v1/* - all user data endpoints
api_routers = [health_router, api_v1_router]

__all__ = ["api_routers"]
