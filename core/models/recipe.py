from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

MealType = Literal["breakfast", "lunch", "dinner", "snack", "dessert"]


class Ingredient(BaseModel):
    name: str
    amount: float = 0
    unit: str = ""
    notes: str | None = None


class NutritionInfo(BaseModel):
    """Declared per-recipe nutrition (whole recipe, all servings)."""
    calories: float = 0
    protein: float = 0
    fat: float = 0
    carbohydrates: float = 0
    fiber: float | None = None
    calculation_method: str | None = None   # spoonacular / usda_calculated / user_entered
    confidence_score: float | None = None   # 0–1


class RecipeRecord(BaseModel):
    id: str
    title: str
    ingredients: list[Ingredient] = []
    nutrition_info: NutritionInfo | None = None
    servings: int = 1
    prep_time_minutes: int | None = None
    cook_time_minutes: int | None = None
    difficulty_level: str | None = None     # easy / medium / hard
    cuisine_type: str | None = None
    meal_type: list[str] = []
    dietary_tags: list[str] = []
    is_premium: bool = False
    rating_average: float = 0
    rating_count: int = 0


class CompositionRecord(BaseModel):
    """Per-100 g nutrient record from a composition database (USDA-style)."""
    description: str
    calories: float = 0
    protein: float = 0
    fat: float = 0
    carbohydrates: float = 0
    fiber: float = 0
    fdc_id: int | None = None
    similarity: float = Field(1.0, ge=0, le=1)


class Candidate(BaseModel):
    """A recipe plus its suitability scores for one generation attempt."""
    recipe: RecipeRecord
    base_score: float = 0                 # 0–100, intrinsic quality (rating × 20)
    personalization_score: float = 50     # 0–100, from the external scorer
    final_score: float = 0
    match_reasons: list[str] = []
    penalty_reasons: list[str] = []

    @property
    def id(self) -> str:
        return self.recipe.id
