"""
core/errors.py
────────────────────────────────────────────────────────────────────────
Error taxonomy of the plan engine.

Every error carries a stable `code`, a `retryable` flag (does it merely
fail the current round?) and a `user_message` that is safe to show to an
end user.  Only `IncompleteBlueprint`, `NoEligibleRecipes` and
`CompleteFailure` ever reach the caller; everything else is turned into a
round-failure signal (or a degradation) by the generation controller.
"""

from __future__ import annotations


class PlanEngineError(Exception):
    code: str = "PLAN_ENGINE_ERROR"
    retryable: bool = True
    user_message: str = "Something went wrong while building your plan."

    def __init__(self, message: str = "", *, stage: str | None = None) -> None:
        super().__init__(message or self.user_message)
        self.stage = stage


# ───────── fatal input errors ────────────────────────────────────────
class IncompleteBlueprint(PlanEngineError):
    code = "INCOMPLETE_BLUEPRINT"
    retryable = False
    user_message = "Your profile is missing information we need to build a plan."

    def __init__(self, missing_fields: list[str]) -> None:
        super().__init__(f"Incomplete user profile: {', '.join(missing_fields)}",
                         stage="validating_input")
        self.missing_fields = missing_fields


class NoEligibleRecipes(PlanEngineError):
    code = "NO_ELIGIBLE_RECIPES"
    retryable = False
    user_message = "No recipes match your dietary restrictions and constraints."


# ───────── recoverable collaborator outages (degrade) ────────────────
class ScorerUnavailable(PlanEngineError):
    code = "SCORER_UNAVAILABLE"


class ReviewUnavailable(PlanEngineError):
    code = "REVIEW_UNAVAILABLE"


class LookupUnavailable(PlanEngineError):
    code = "LOOKUP_UNAVAILABLE"


# ───────── round failures (retried) ──────────────────────────────────
class AssemblyStructuralError(PlanEngineError):
    code = "ASSEMBLY_STRUCTURAL_ERROR"


class NutritionThresholdExceeded(PlanEngineError):
    code = "NUTRITION_THRESHOLD_EXCEEDED"


class CoherenceBelowThreshold(PlanEngineError):
    code = "COHERENCE_BELOW_THRESHOLD"


class StageTimeout(PlanEngineError):
    code = "STAGE_TIMEOUT"


class RecipeStoreError(PlanEngineError):
    code = "RECIPE_STORE_ERROR"


# ───────── circuit breaker / terminal ────────────────────────────────
class CircuitBreakerTripped(PlanEngineError):
    code = "CIRCUIT_BREAKER_TRIPPED"
    retryable = False


class CompleteFailure(PlanEngineError):
    code = "COMPLETE_FAILURE"
    retryable = False
    user_message = "We couldn't build a plan right now. Please try again in a few minutes."


class GenerationCancelled(PlanEngineError):
    code = "CANCELLED"
    retryable = False
    user_message = "Plan generation was cancelled."
