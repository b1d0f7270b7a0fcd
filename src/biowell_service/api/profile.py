"""User profile endpoints."""

from typing import Any

from litestar import Router, get, patch
from litestar.exceptions import NotFoundException
from litestar.status_codes import HTTP_200_OK

from biowell_service.core.errors import ErrorCode
from biowell_service.schemas.profile import ProfileUpdate
from biowell_service.services.container import ServiceContainer


@get("/users/{user_id:str}/profile", status_code=HTTP_200_OK)
async def get_profile(user_id: str, services: ServiceContainer) -> dict[str, Any]:
    """Get a user's profile."""
    try:
        profile = await services.profile_store.get_profile(user_id)
    except Exception as e:
        outcome = services.error_handler.handle(
            e,
            context={"component": "profile", "action": "get_profile", "user_id": user_id},
            code=ErrorCode.DATABASE_ERROR,
        )
        raise outcome.error from e

    if profile is None:
        raise NotFoundException(detail=f"No profile for user {user_id}")
    return profile.model_dump(mode="json")


@patch("/users/{user_id:str}/profile", status_code=HTTP_200_OK)
async def update_profile(
    user_id: str,
    data: ProfileUpdate,
    services: ServiceContainer,
) -> dict[str, Any]:
    """Create or partially update a user's profile.

    Fields missing from the body are left unchanged.
    """
    try:
        profile = await services.profile_store.upsert_profile(user_id, data)
    except Exception as e:
        outcome = services.error_handler.handle(
            e,
            context={"component": "profile", "action": "update_profile", "user_id": user_id},
            code=ErrorCode.DATABASE_ERROR,
        )
        raise outcome.error from e

    return profile.model_dump(mode="json")


profile_router = Router(path="/", route_handlers=[get_profile, update_profile])
