"""Nutrition, recipe and speech endpoints backed by the external services."""

from typing import Annotated, Any

from litestar import Router, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK

from biowell_service.schemas.assistant import NutritionRequest, RecipeFilters, SpeechRequest
from biowell_service.services.container import ServiceContainer

# ==============================================================================
# Nutrition
# ==============================================================================


@post("/users/{user_id:str}/nutrition/analyze", status_code=HTTP_200_OK)
async def analyze_nutrition(
    user_id: str,
    data: NutritionRequest,
    services: ServiceContainer,
) -> dict[str, Any]:
    """Nutrition facts, glycemic impact and insights for a food portion.

    An unknown food is a 404, never an empty analysis.
    """
    analysis = await services.clients.analyze_nutrition(
        data.food, data.quantity, user_id, data.meal_type
    )
    return analysis.model_dump(mode="json")


# ==============================================================================
# Recipes
# ==============================================================================


@get("/recipes", status_code=HTTP_200_OK)
async def search_recipes(
    services: ServiceContainer,
    search_query: Annotated[str, Parameter(query="query", min_length=1, max_length=200)],
    diet: str | None = None,
    intolerances: str | None = None,
    max_ready_time: Annotated[int | None, Parameter(query="max_ready_time", ge=1)] = None,
    number: Annotated[int, Parameter(query="number", default=12, ge=1, le=100)] = 12,
    min_protein: Annotated[float | None, Parameter(query="min_protein", ge=0)] = None,
    max_carbs: Annotated[float | None, Parameter(query="max_carbs", ge=0)] = None,
) -> dict[str, Any]:
    """Search recipes by free text and dietary filters."""
    filters = RecipeFilters(
        diet=diet,
        intolerances=intolerances,
        max_ready_time=max_ready_time,
        number=number,
        min_protein=min_protein,
        max_carbs=max_carbs,
    )
    result = await services.clients.search_recipes(search_query, filters)
    return result.model_dump(mode="json")


# ==============================================================================
# Speech
# ==============================================================================


@post("/speech", status_code=HTTP_200_OK)
async def generate_speech(data: SpeechRequest, services: ServiceContainer) -> dict[str, Any]:
    """Synthesize speech for up to 5000 characters of text."""
    result = await services.clients.generate_speech(data.text, data.voice_id)
    return result.model_dump(mode="json")


assistant_router = Router(
    path="/",
    route_handlers=[analyze_nutrition, search_recipes, generate_speech],
)
