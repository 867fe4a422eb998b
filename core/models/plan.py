from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, Field

REQUIRED_MEALS: tuple[str, ...] = ("breakfast", "lunch", "dinner")
OPTIONAL_MEALS: tuple[str, ...] = ("snack",)
WEEKDAYS: tuple[str, ...] = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

NUTRIENTS: tuple[str, ...] = ("calories", "protein", "fat", "carbohydrates", "fiber")
CORE_NUTRIENTS: tuple[str, ...] = ("calories", "protein", "fat", "carbohydrates")


class NutrientTotals(BaseModel):
    calories: float = Field(0, ge=0)
    protein: float = Field(0, ge=0)
    fat: float = Field(0, ge=0)
    carbohydrates: float = Field(0, ge=0)
    fiber: float = Field(0, ge=0)

    def __add__(self, other: "NutrientTotals") -> "NutrientTotals":
        return NutrientTotals(**{k: getattr(self, k) + getattr(other, k) for k in NUTRIENTS})

    def __mul__(self, factor: float) -> "NutrientTotals":
        return NutrientTotals(**{k: getattr(self, k) * factor for k in NUTRIENTS})

    def __truediv__(self, divisor: float) -> "NutrientTotals":
        if divisor <= 0:
            raise ValueError("divisor must be positive")
        return self * (1 / divisor)

    def rounded(self) -> "NutrientTotals":
        """Calories to the nearest integer, grams to one decimal."""
        return NutrientTotals(
            calories=round(self.calories),
            protein=round(self.protein, 1),
            fat=round(self.fat, 1),
            carbohydrates=round(self.carbohydrates, 1),
            fiber=round(self.fiber, 1),
        )


class DeviationSet(BaseModel):
    calories: float = 0
    protein: float = 0
    fat: float = 0
    carbohydrates: float = 0
    fiber: float | None = None

    def core(self) -> dict[str, float]:
        return {k: getattr(self, k) for k in CORE_NUTRIENTS}


class MealSlot(BaseModel):
    meal_type: str
    recipe_id: str
    servings: float = Field(1.0, gt=0)


class DayPlan(BaseModel):
    day: str
    date: dt.date
    meals: list[MealSlot]

    def slot(self, meal_type: str) -> MealSlot | None:
        return next((m for m in self.meals if m.meal_type == meal_type), None)


class PlanDraft(BaseModel):
    week_theme: str = "Personalized Weekly Plan"
    week_start_date: dt.date
    days: list[DayPlan]
    origin: Literal["assembled", "fallback"] = "assembled"

    @property
    def total_recipes(self) -> int:
        return sum(len(d.meals) for d in self.days)

    @property
    def unique_recipes(self) -> int:
        return len({m.recipe_id for d in self.days for m in d.meals})

    def recipe_ids(self) -> set[str]:
        return {m.recipe_id for d in self.days for m in d.meals}

    def is_complete(self, candidate_ids: set[str]) -> bool:
        for d in self.days:
            if any(d.slot(mt) is None for mt in REQUIRED_MEALS):
                return False
            if any(m.recipe_id not in candidate_ids for m in d.meals):
                return False
        return True


class MealNutrition(BaseModel):
    recipe_id: str
    recipe_title: str
    nutrition: NutrientTotals
    tier: str


class DailyBreakdown(BaseModel):
    day: str
    nutrition: NutrientTotals
    meals: list[MealNutrition] = []


class ValidationResult(BaseModel):
    is_valid: bool
    total_nutrition: NutrientTotals
    daily_average: NutrientTotals
    target_deviations: DeviationSet
    within_threshold: bool
    missing_nutrition_data: list[str] = []
    suggestions: list[str] = []
    detailed_breakdown: list[DailyBreakdown] | None = None
