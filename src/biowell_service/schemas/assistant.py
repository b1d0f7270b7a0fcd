"""Pydantic schemas for the nutrition, recipe and speech services.

The services answer in camelCase; fields accept both the wire alias and
the Python name.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"
MAX_SPEECH_CHARACTERS = 5000


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NutritionFacts(_WireModel):
    """Macronutrients for one portion."""

    calories: float
    protein: float
    carbohydrates: float
    fat: float
    fiber: float | None = None
    sugar: float | None = None
    sodium: float | None = None


class NutritionInsights(_WireModel):
    """Scores and recommendations derived from a food's nutrition."""

    fertility_score: float | None = Field(default=None, alias="fertilityScore")
    muscle_score: float | None = Field(default=None, alias="muscleScore")
    insulin_score: float | None = Field(default=None, alias="insulinScore")
    recommendations: list[str] = Field(default_factory=list)


class NutritionAnalysis(_WireModel):
    """Nutrition service reply."""

    nutrition: NutritionFacts
    glycemic_impact: float = Field(alias="glycemicImpact", description="Glycemic load")
    insights: NutritionInsights = Field(default_factory=NutritionInsights)
    food_name: str | None = Field(default=None, alias="foodName")
    saved_to_log: bool = Field(default=False, alias="savedToLog")
    log_id: str | None = Field(default=None, alias="logId")


class NutritionRequest(BaseModel):
    """Body of a nutrition analysis request."""

    food: str = Field(min_length=1, max_length=200)
    quantity: str = Field(default="1 serving", max_length=100)
    meal_type: str | None = Field(default=None, description="breakfast, lunch, dinner or snack")


class Recipe(_WireModel):
    """One recipe search hit."""

    id: int
    title: str
    image: str | None = None
    ready_in_minutes: int | None = Field(default=None, alias="readyInMinutes")
    servings: int | None = None
    summary: str | None = None
    nutrition: NutritionFacts | None = None
    health_tags: list[str] = Field(default_factory=list, alias="healthTags")
    fertility_score: float | None = Field(default=None, alias="fertilityScore")
    muscle_score: float | None = Field(default=None, alias="muscleScore")
    insulin_score: float | None = Field(default=None, alias="insulinScore")


class RecipeFilters(BaseModel):
    """Optional recipe search filters."""

    diet: str | None = None
    intolerances: str | None = None
    max_ready_time: int | None = Field(default=None, ge=1)
    number: int = Field(default=12, ge=1, le=100)
    min_protein: float | None = Field(default=None, ge=0)
    max_carbs: float | None = Field(default=None, ge=0)

    def to_query(self) -> dict[str, Any]:
        """Query parameters in the recipe service's naming."""
        query = {
            "diet": self.diet,
            "intolerances": self.intolerances,
            "maxReadyTime": self.max_ready_time,
            "number": self.number,
            "minProtein": self.min_protein,
            "maxCarbs": self.max_carbs,
        }
        return {name: value for name, value in query.items() if value is not None}


class RecipeSearchResult(_WireModel):
    """Recipe service reply."""

    recipes: list[Recipe] = Field(default_factory=list)


class SpeechRequest(BaseModel):
    """Body of a speech synthesis request."""

    text: str = Field(min_length=1, max_length=MAX_SPEECH_CHARACTERS)
    voice_id: str | None = None


class SpeechResult(_WireModel):
    """Speech service reply."""

    audio_data: str = Field(alias="audioData", description="Base64 encoded audio")
    content_type: str = Field(default="audio/mpeg", alias="contentType")
    duration: float | None = Field(default=None, description="Duration in seconds")
