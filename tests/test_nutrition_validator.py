# tests/test_nutrition_validator.py
from __future__ import annotations

import asyncio

import pytest

from core.models.blueprint import NutritionalTargets
from core.models.plan import DayPlan, DeviationSet, MealSlot, NutrientTotals, PlanDraft
from core.nutrient_resolver import NutrientResolver
from core.nutrition_validator import (
    NutritionValidator,
    ValidationOptions,
    compute_deviations,
    deviation,
    nutrition_suggestions,
    within_threshold,
)

from fakes import TARGETS, WEEK_START, catalogue, recipe, store


def _plan(*days: tuple[str, str, str], servings: float = 1.0) -> PlanDraft:
    return PlanDraft(
        week_start_date=WEEK_START,
        days=[
            DayPlan(
                day=f"day{i}",
                date=WEEK_START,
                meals=[
                    MealSlot(meal_type=mt, recipe_id=rid, servings=servings)
                    for mt, rid in zip(("breakfast", "lunch", "dinner"), ids)
                ],
            )
            for i, ids in enumerate(days)
        ],
    )


BALANCED = _plan(("breakfast-0", "lunch-0", "dinner-0"), ("breakfast-1", "lunch-1", "dinner-1"))


def _validate(plan, validator=None, **opts):
    validator = validator or NutritionValidator(store(), NutrientResolver())
    return asyncio.run(validator.validate(plan, TARGETS, ValidationOptions(**opts) if opts else None))


# ── pure helpers ──────────────────────────────────────────────────────
def test_deviation_is_signed_and_rounded():
    assert deviation(2300, 2000) == 15.0
    assert deviation(1000, 3000) == -66.67
    assert deviation(50, 0) == 0.0


def test_suggestions_only_for_breaches():
    devs = DeviationSet(calories=20, protein=-30.5, fat=5, carbohydrates=-15)
    assert nutrition_suggestions(devs, 15) == [
        "Reduce calories intake - currently 20.0% above target",
        "Increase protein intake - currently 30.5% below target",
    ]


# ── validate ──────────────────────────────────────────────────────────
def test_balanced_plan_is_valid():
    result = _validate(BALANCED)

    assert result.is_valid and result.within_threshold
    assert result.total_nutrition.calories == 4000
    assert result.daily_average.protein == 100
    assert result.target_deviations.calories == 0
    assert result.target_deviations.fiber == 0
    assert result.suggestions == []
    assert result.detailed_breakdown is None


def test_double_servings_breach_threshold():
    result = _validate(_plan(("breakfast-0", "lunch-0", "dinner-0"), servings=2))

    assert not result.is_valid
    assert result.target_deviations.calories == 100.0
    assert "Reduce calories intake - currently 100.0% above target" in result.suggestions


def test_threshold_is_configurable():
    plan = _plan(("breakfast-0", "lunch-0", "dinner-0"), servings=1.1)
    assert not _validate(plan, deviation_threshold=5).is_valid
    assert _validate(plan, deviation_threshold=15).is_valid


def test_unknown_recipe_reported_missing():
    result = _validate(_plan(("breakfast-0", "lunch-0", "Ghost-Recipe")))

    assert not result.is_valid
    assert result.missing_nutrition_data == ["Recipe Ghost-Recipe"]
    assert result.suggestions[0] == "Missing nutrition data for recipe Ghost-Recipe"


def test_missing_data_tolerated_when_not_required():
    result = _validate(
        _plan(("breakfast-0", "lunch-0", "ghost")),
        require_all_recipes=False, deviation_threshold=100,
    )
    assert result.is_valid
    assert result.missing_nutrition_data == ["Recipe ghost"]
    assert not any("Missing" in s for s in result.suggestions)


def test_no_composition_fallback_leaves_undeclared_recipes_missing():
    recipes = catalogue() + [recipe("mystery-soup", meal_type=["dinner"])]
    validator = NutritionValidator(store(recipes), NutrientResolver())
    plan = _plan(("breakfast-0", "lunch-0", "mystery-soup"))

    assert _validate(plan, validator).missing_nutrition_data == []
    strict = _validate(plan, validator, use_composition_fallback=False)
    assert strict.missing_nutrition_data == ["Recipe mystery-soup"]


def test_detailed_breakdown_per_day():
    result = _validate(BALANCED, detailed_breakdown=True)

    assert [d.day for d in result.detailed_breakdown] == ["day0", "day1"]
    day0 = result.detailed_breakdown[0]
    assert day0.nutrition.calories == pytest.approx(2000)
    assert [m.recipe_id for m in day0.meals] == ["breakfast-0", "lunch-0", "dinner-0"]
    assert {m.tier for m in day0.meals} == {"declared"}


def test_validation_is_repeatable():
    validator = NutritionValidator(store(), NutrientResolver())
    assert _validate(BALANCED, validator) == _validate(BALANCED, validator)


def test_threshold_boundary_is_inclusive():
    assert within_threshold(DeviationSet(calories=15.0, protein=-15.0), 15)
    assert not within_threshold(DeviationSet(fat=15.01), 15)


def test_worked_example_deviations():
    targets = NutritionalTargets(daily_calories=2000, daily_protein=150, daily_fat=67, daily_carbohydrates=250)
    avg = NutrientTotals(calories=1985, protein=145, fat=71, carbohydrates=248)
    devs = compute_deviations(avg, targets)

    assert devs.core() == {"calories": -0.75, "protein": -3.33, "fat": 5.97, "carbohydrates": -0.8}
    assert devs.fiber is None
    assert within_threshold(devs, 15)


def test_day_order_does_not_change_totals():
    forward = _validate(BALANCED)
    backward = _validate(PlanDraft(week_start_date=WEEK_START, days=list(reversed(BALANCED.days))))
    assert forward.total_nutrition == backward.total_nutrition
    assert forward.target_deviations == backward.target_deviations


def test_threshold_judged_before_rounding():
    avg = NutrientTotals(calories=2300.08, protein=100, fat=70, carbohydrates=250)
    shown = compute_deviations(avg, TARGETS)
    exact = compute_deviations(avg, TARGETS, ndigits=None)

    assert shown.calories == 15.0
    assert exact.calories == pytest.approx(15.004)
    assert not within_threshold(exact, 15)
