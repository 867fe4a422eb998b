"""
core/nutrition_validator.py
────────────────────────────────────────────────────────────────────────
Validates a `PlanDraft` against daily nutritional targets.

1.   Resolve every slot through the `NutrientResolver` (fan-out).
2.   Aggregate per day and per plan (`math.fsum`, so totals do not depend
     on completion order).
3.   Daily average → signed % deviation per nutrient.
4.   Threshold policy → `is_valid` + human-readable suggestions.

No side effects: validating the same plan twice gives the same result.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass

import pandas as pd

from core.contracts import RecipeStore
from core.errors import RecipeStoreError
from core.models.blueprint import NutritionalTargets
from core.models.plan import (
    CORE_NUTRIENTS,
    NUTRIENTS,
    DailyBreakdown,
    DeviationSet,
    MealNutrition,
    NutrientTotals,
    PlanDraft,
    ValidationResult,
)
from core.nutrient_resolver import NutrientResolver, Resolution, ResolverOptions

_LOG = logging.getLogger(__name__)

_TARGET_KEYS = {
    "calories": "daily_calories",
    "protein": "daily_protein",
    "fat": "daily_fat",
    "carbohydrates": "daily_carbohydrates",
    "fiber": "daily_fiber",
}


@dataclass(frozen=True)
class ValidationOptions:
    deviation_threshold: float = 15.0
    require_all_recipes: bool = True
    use_composition_fallback: bool = True
    detailed_breakdown: bool = False


# ───────── pure helpers ──────────────────────────────────────────────
def deviation(actual: float, target: float | None, ndigits: int | None = 2) -> float:
    """Signed percentage, rounded to `ndigits` (None keeps it exact); 0 when there is no target."""
    if not target:
        return 0.0
    pct = (actual - target) * 100 / target
    return pct if ndigits is None else round(pct, ndigits)


def compute_deviations(
    avg: NutrientTotals, targets: NutritionalTargets, ndigits: int | None = 2
) -> DeviationSet:
    values = {
        n: deviation(getattr(avg, n), getattr(targets, _TARGET_KEYS[n]), ndigits)
        for n in CORE_NUTRIENTS
    }
    fiber = deviation(avg.fiber, targets.daily_fiber, ndigits) if targets.daily_fiber else None
    return DeviationSet(**values, fiber=fiber)


def within_threshold(devs: DeviationSet, threshold: float) -> bool:
    return all(abs(v) <= threshold for v in devs.core().values())


def nutrition_suggestions(devs: DeviationSet, threshold: float) -> list[str]:
    out: list[str] = []
    for nutrient, dev in devs.core().items():
        if abs(dev) <= threshold:
            continue
        if dev > 0:
            out.append(f"Reduce {nutrient} intake - currently {dev:.1f}% above target")
        else:
            out.append(f"Increase {nutrient} intake - currently {abs(dev):.1f}% below target")
    return out


def _totals(row: pd.Series) -> NutrientTotals:
    return NutrientTotals(**{n: float(row[n]) for n in NUTRIENTS})


# ───────── validator ─────────────────────────────────────────────────
class NutritionValidator:
    def __init__(
        self,
        store: RecipeStore,
        resolver: NutrientResolver,
        options: ValidationOptions | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._opts = options or ValidationOptions()

    async def validate(
        self,
        plan: PlanDraft,
        targets: NutritionalTargets,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        result, _ = await self.evaluate(plan, targets, options)
        return result

    async def evaluate(
        self,
        plan: PlanDraft,
        targets: NutritionalTargets,
        options: ValidationOptions | None = None,
    ) -> tuple[ValidationResult, bool]:
        """Like `validate()`, also reporting whether any lookup was degraded."""
        opts = options or self._opts
        resolver = self._resolver
        if not opts.use_composition_fallback:
            resolver = resolver.with_options(ResolverOptions(use_composition=False, use_heuristic=False))

        try:
            recipes = await self._store.fetch(plan.recipe_ids())
        except RecipeStoreError:
            raise
        except Exception as e:
            raise RecipeStoreError(f"recipe fetch failed: {e}", stage="validating_nutrition") from e

        slots = [(d.day, m) for d in plan.days for m in d.meals]

        async def _resolve(recipe_id: str, servings: float):
            recipe = recipes.get(recipe_id)
            if recipe is None:
                _LOG.warning("Recipe %s not found", recipe_id)
                return None, None
            return recipe, await resolver.resolve(recipe, servings)

        resolved = await asyncio.gather(*(_resolve(m.recipe_id, m.servings) for _, m in slots))

        rows: list[dict] = []
        missing: list[str] = []
        degraded = False
        for (day, meal), (recipe, res) in zip(slots, resolved):
            if not isinstance(res, Resolution):
                entry = f"Recipe {meal.recipe_id}"
                if entry not in missing:
                    missing.append(entry)
                continue
            degraded = degraded or res.degraded
            rows.append({
                "day": day,
                "recipe_id": meal.recipe_id,
                "recipe_title": recipe.title,
                "tier": res.tier,
                **res.totals.model_dump(),
            })

        frame = pd.DataFrame(rows, columns=["day", "recipe_id", "recipe_title", "tier", *NUTRIENTS])
        total = _totals(frame[list(NUTRIENTS)].apply(math.fsum)) if not frame.empty else NutrientTotals()
        day_count = len(plan.days)
        raw_avg = total / day_count if day_count else NutrientTotals()
        daily_avg = raw_avg.rounded()

        # the threshold is judged on exact deviations; rounding is for display
        exact = compute_deviations(raw_avg, targets, ndigits=None)
        devs = compute_deviations(raw_avg, targets)
        ok = within_threshold(exact, opts.deviation_threshold)
        is_valid = ok and (not missing or not opts.require_all_recipes)

        suggestions: list[str] = []
        if opts.require_all_recipes:
            suggestions += [f"Missing nutrition data for recipe {m.removeprefix('Recipe ')}" for m in missing]
        if not ok:
            suggestions += nutrition_suggestions(exact, opts.deviation_threshold)

        breakdown = self._breakdown(plan, frame) if opts.detailed_breakdown else None

        _LOG.info(
            "validation %s: avg %.0f kcal (%+.1f%%), missing=%d",
            "VALID" if is_valid else "INVALID", daily_avg.calories, devs.calories, len(missing),
        )
        result = ValidationResult(
            is_valid=is_valid,
            total_nutrition=total,
            daily_average=daily_avg,
            target_deviations=devs,
            within_threshold=ok,
            missing_nutrition_data=missing,
            suggestions=suggestions,
            detailed_breakdown=breakdown,
        )
        return result, degraded

    @staticmethod
    def _breakdown(plan: PlanDraft, frame: pd.DataFrame) -> list[DailyBreakdown]:
        per_day = (
            frame.groupby("day", sort=False)[list(NUTRIENTS)].agg(math.fsum)
            if not frame.empty else pd.DataFrame(columns=list(NUTRIENTS))
        )
        out: list[DailyBreakdown] = []
        for d in plan.days:
            nutrition = _totals(per_day.loc[d.day]) if d.day in per_day.index else NutrientTotals()
            meals = [
                MealNutrition(
                    recipe_id=r.recipe_id,
                    recipe_title=r.recipe_title,
                    nutrition=NutrientTotals(**{n: getattr(r, n) for n in NUTRIENTS}),
                    tier=r.tier,
                )
                for r in frame[frame["day"] == d.day].itertuples(index=False)
            ]
            out.append(DailyBreakdown(day=d.day, nutrition=nutrition, meals=meals))
        return out
