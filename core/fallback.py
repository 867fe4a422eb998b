"""
Deterministic fallback plan used once the circuit breaker trips.

Three days × breakfast/lunch/dinner from a pool of well-rated, quick,
non-premium, non-spicy recipes.  Same pool in → same plan out.
"""

from __future__ import annotations

import datetime as dt
import logging

from core.contracts import RecipeQuery, RecipeStore
from core.errors import CompleteFailure
from core.models.blueprint import Blueprint
from core.models.plan import REQUIRED_MEALS, WEEKDAYS, DayPlan, MealSlot, PlanDraft
from core.models.recipe import RecipeRecord

_LOG = logging.getLogger(__name__)

FALLBACK_DAYS = 3
FALLBACK_THEME = "Getting Started"
POOL_LIMIT = 15
MIN_RATING = 4.0
MAX_PREP_MINUTES = 30
EXCLUDED_TAGS = frozenset({"spicy", "very_spicy"})

FALLBACK_QUERY = RecipeQuery(
    include_premium=False, max_prep_time=MAX_PREP_MINUTES, min_rating=MIN_RATING
)


def fallback_pool(recipes: list[RecipeRecord], bp: Blueprint | None = None) -> list[RecipeRecord]:
    allergens = {a.strip().lower() for a in (bp.allergies if bp else []) if a.strip()}

    def _ok(r: RecipeRecord) -> bool:
        tags = {t.lower() for t in r.dietary_tags}
        if r.is_premium or r.rating_average < MIN_RATING:
            return False
        if r.prep_time_minutes is None or r.prep_time_minutes > MAX_PREP_MINUTES:
            return False
        if tags & EXCLUDED_TAGS:
            return False
        names = [i.name.lower() for i in r.ingredients]
        return not any(a in tags or any(a in n for n in names) for a in allergens)

    pool = sorted(filter(_ok, recipes), key=lambda r: r.rating_average, reverse=True)
    return pool[:POOL_LIMIT]


def build_fallback_plan(pool: list[RecipeRecord], week_start: dt.date) -> PlanDraft:
    if not pool:
        raise CompleteFailure("no recipes available for a fallback plan", stage="fallback")

    days = []
    for day_idx in range(FALLBACK_DAYS):
        date = week_start + dt.timedelta(days=day_idx)
        meals = [
            MealSlot(meal_type=mt, recipe_id=pool[(day_idx * 3 + meal_idx) % len(pool)].id)
            for meal_idx, mt in enumerate(REQUIRED_MEALS)
        ]
        days.append(DayPlan(day=WEEKDAYS[date.weekday()], date=date, meals=meals))

    return PlanDraft(
        week_theme=FALLBACK_THEME, week_start_date=week_start, days=days, origin="fallback"
    )


async def generate_fallback(store: RecipeStore, bp: Blueprint, week_start: dt.date) -> PlanDraft:
    try:
        recipes = await store.search(FALLBACK_QUERY)
    except Exception as e:
        raise CompleteFailure(f"fallback recipes unavailable: {e}", stage="fallback") from e
    pool = fallback_pool(recipes, bp)
    _LOG.info("fallback pool has %d recipes", len(pool))
    return build_fallback_plan(pool, week_start)
