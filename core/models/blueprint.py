from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class NutritionalTargets(BaseModel):
    daily_calories: float
    daily_protein: float        # grams
    daily_fat: float            # grams
    daily_carbohydrates: float  # grams
    daily_fiber: float | None = None
    calculation_method: str = "user_defined"


class BodyMetrics(BaseModel):
    age: int | None = None
    gender: str = "Male"                 # "Male" | "Female"
    weight_kg: float | None = None
    height_cm: float | None = None
    daily_activity: int = 3              # 1–5
    workouts_per_week: int = 0           # 0–7
    goal: str = "maintain"               # "lose" | "gain" | "maintain"
    wants_muscle: bool = False
    health_conditions: list[str] = []


class FlavorPreferences(BaseModel):
    spicy: int = 5
    sweet: int = 5
    savory: int = 5
    umami: int = 5
    bitter: int = 5
    sour: int = 5


class RecentRating(BaseModel):
    recipe_id: str
    rating: Literal["love", "meh", "skip"]
    created_at: datetime | None = None


class RecentSwap(BaseModel):
    original_recipe_id: str
    replacement_recipe_id: str | None = None
    meal_type: str | None = None
    reason: str | None = None
    created_at: datetime | None = None


class Blueprint(BaseModel):
    """Everything one generation request knows about the user. Immutable."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    diet_type: str | None = None                 # omnivore / vegan / keto / ...
    allergies: list[str] = []
    dislikes: list[str] = []
    household_size: int = 1
    cooking_skill_level: str | None = None       # beginner / intermediate / advanced
    cooking_time_preference: int | None = None   # max minutes per meal
    cultural_preferences: list[str] = []
    flavor_preferences: FlavorPreferences | None = None
    health_goals: list[str] = []
    premium_access: bool = False
    targets: NutritionalTargets | None = None
    body: BodyMetrics | None = None
    recent_ratings: list[RecentRating] = []
    recent_swaps: list[RecentSwap] = []


def next_monday(today: date | None = None) -> date:
    today = today or date.today()
    return today + timedelta(days=7 - today.weekday())


class GenerationPreferences(BaseModel):
    enforce_variety: bool = True
    max_prep_time: int | None = Field(None, ge=5, le=180)
    focus_macros: list[Literal["protein", "carbs", "fat"]] = Field([], max_length=2)
    exclude_recipes: list[str] = Field([], max_length=50)
    special_requests: list[str] = []
    week_start_date: date = Field(default_factory=next_monday)
