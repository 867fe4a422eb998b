# api/v1/schemas/plan.py
from __future__ import annotations

from pydantic import BaseModel, Field

from core.generation_controller import GenerationOutcome
from core.models.blueprint import Blueprint, GenerationPreferences, NutritionalTargets
from core.models.plan import PlanDraft
from core.nutrition_validator import ValidationOptions


class PlanRequest(BaseModel):
    blueprint: Blueprint
    preferences: GenerationPreferences | None = None


# the controller's outcome is already the wire shape
PlanResponse = GenerationOutcome


class ValidateRequest(BaseModel):
    plan: PlanDraft
    targets: NutritionalTargets
    deviation_threshold: float = Field(15.0, gt=0, le=100)
    require_all_recipes: bool = True
    use_composition_fallback: bool = True
    detailed_breakdown: bool = False

    def options(self) -> ValidationOptions:
        return ValidationOptions(
            deviation_threshold=self.deviation_threshold,
            require_all_recipes=self.require_all_recipes,
            use_composition_fallback=self.use_composition_fallback,
            detailed_breakdown=self.detailed_breakdown,
        )
