"""
core/nutrient_resolver.py
────────────────────────────────────────────────────────────────────────
Tiered nutrient resolution for one recipe at one serving multiplier.

Tiers, first success wins:

1. `declared_tier()`     – the recipe's own nutrition when it looks reliable
2. composition tier      – per-ingredient lookups (fanned out) summed per 100 g
3. `heuristic_tier()`    – keyword estimate from the title

Each tier returns whole-recipe totals or None ("try the next one"); the
resolver then scales by `multiplier / servings` and rounds (kcal int,
grams one decimal).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from core.contracts import CompositionLookup
from core.errors import LookupUnavailable
from core.models.plan import NutrientTotals
from core.models.recipe import CompositionRecord, Ingredient, RecipeRecord

_LOG = logging.getLogger(__name__)

TIER_DECLARED = "declared"
TIER_COMPOSITION = "composition"
TIER_ESTIMATED = "estimated"

MINOR_INGREDIENTS: tuple[str, ...] = (
    "salt", "pepper", "water", "vanilla", "baking powder", "garlic powder",
    "onion powder", "paprika", "oregano", "basil", "thyme", "rosemary",
    "extract", "spice",
)

GRAMS_PER_UNIT: dict[str, float] = {
    "g": 1, "gram": 1, "grams": 1,
    "kg": 1000, "kilogram": 1000,
    "oz": 28.35, "ounce": 28.35, "ounces": 28.35,
    "lb": 453.59, "pound": 453.59, "pounds": 453.59,
    "cup": 240, "cups": 240,
    "tbsp": 15, "tablespoon": 15, "tablespoons": 15,
    "tsp": 5, "teaspoon": 5, "teaspoons": 5,
    "ml": 1, "milliliter": 1, "milliliters": 1,
    "l": 1000, "liter": 1000, "liters": 1000,
}
UNKNOWN_UNIT_GRAMS = 100.0

# keyword → (kcal, protein, fat, carbs, fiber); first hit wins
_ESTIMATES: list[tuple[tuple[str, ...], tuple[float, float, float, float, float]]] = [
    (("salad",), (150, 8, 5, 15, 3)),
    (("pasta", "rice"), (400, 12, 8, 60, 3)),
    (("chicken", "beef"), (350, 25, 15, 10, 3)),
    (("soup",), (200, 10, 6, 20, 3)),
]
_BASELINE = (300, 15, 10, 30, 3)


@dataclass(frozen=True)
class Resolution:
    totals: NutrientTotals
    tier: str
    degraded: bool = False


@dataclass(frozen=True)
class Unresolved:
    recipe_id: str
    reason: str


@dataclass(frozen=True)
class ResolverOptions:
    use_composition: bool = True
    use_heuristic: bool = True


# ───────── pure tiers ────────────────────────────────────────────────
def declared_tier(recipe: RecipeRecord) -> NutrientTotals | None:
    info = recipe.nutrition_info
    if info is None or info.calories <= 0:
        return None
    if min(info.protein, info.fat, info.carbohydrates) < 0:
        return None
    return NutrientTotals(
        calories=info.calories,
        protein=info.protein,
        fat=info.fat,
        carbohydrates=info.carbohydrates,
        fiber=info.fiber or 0,
    )


def is_minor(name: str) -> bool:
    low = name.lower()
    return any(m in low for m in MINOR_INGREDIENTS)


def to_grams(amount: float, unit: str) -> float:
    factor = GRAMS_PER_UNIT.get((unit or "").strip().lower())
    if factor is None:
        _LOG.warning("unknown unit %r, assuming %.0f g per unit", unit, UNKNOWN_UNIT_GRAMS)
        factor = UNKNOWN_UNIT_GRAMS
    return amount * factor


def composition_total(
    matches: Iterable[tuple[Ingredient, CompositionRecord]],
) -> NutrientTotals | None:
    """Sum per-100 g records over matched ingredients (None when nothing matched)."""
    total: NutrientTotals | None = None
    for ing, rec in matches:
        factor = to_grams(ing.amount, ing.unit) / 100
        if factor <= 0:
            continue
        part = NutrientTotals(
            calories=rec.calories * factor,
            protein=rec.protein * factor,
            fat=rec.fat * factor,
            carbohydrates=rec.carbohydrates * factor,
            fiber=rec.fiber * factor,
        )
        total = part if total is None else total + part
    return total


def heuristic_tier(title: str) -> NutrientTotals:
    low = title.lower()
    values = next((v for keys, v in _ESTIMATES if any(k in low for k in keys)), _BASELINE)
    kcal, protein, fat, carbs, fiber = values
    return NutrientTotals(calories=kcal, protein=protein, fat=fat,
                          carbohydrates=carbs, fiber=fiber)


def scale(totals: NutrientTotals, serving_multiplier: float, servings: int | None) -> NutrientTotals:
    base = servings if servings and servings > 0 else 1
    return (totals * (serving_multiplier / base)).rounded()


# ───────── resolver ──────────────────────────────────────────────────
class NutrientResolver:
    def __init__(
        self,
        lookup: CompositionLookup | None = None,
        options: ResolverOptions | None = None,
        lookup_timeout_s: float = 10.0,
    ) -> None:
        self._lookup = lookup
        self._opts = options or ResolverOptions()
        self._timeout = lookup_timeout_s

    def with_options(self, options: ResolverOptions) -> "NutrientResolver":
        return NutrientResolver(self._lookup, options, self._timeout)

    async def resolve(
        self, recipe: RecipeRecord, serving_multiplier: float = 1.0
    ) -> Resolution | Unresolved:
        declared = declared_tier(recipe)
        if declared is not None:
            return Resolution(scale(declared, serving_multiplier, recipe.servings), TIER_DECLARED)

        degraded = False
        if self._opts.use_composition and self._lookup is not None:
            matched, degraded = await self._match_ingredients(recipe.ingredients)
            summed = composition_total(matched)
            if summed is not None:
                return Resolution(
                    scale(summed, serving_multiplier, recipe.servings), TIER_COMPOSITION, degraded
                )

        if self._opts.use_heuristic:
            _LOG.debug("estimating nutrition for %s from title", recipe.id)
            return Resolution(
                scale(heuristic_tier(recipe.title), serving_multiplier, recipe.servings),
                TIER_ESTIMATED,
                degraded,
            )

        return Unresolved(recipe.id, "no reliable nutrition data")

    async def _match_ingredients(
        self, ingredients: list[Ingredient]
    ) -> tuple[list[tuple[Ingredient, CompositionRecord]], bool]:
        main = [i for i in ingredients if i.amount > 0 and not is_minor(i.name)]
        if not main:
            return [], False
        results = await asyncio.gather(*(self._lookup_one(i.name) for i in main))
        degraded = any(failed for _, failed in results)
        matched = [(ing, rec) for ing, (rec, _) in zip(main, results) if rec is not None]
        return matched, degraded

    async def _lookup_one(self, name: str) -> tuple[CompositionRecord | None, bool]:
        """(record or None, whether the lookup itself failed)."""
        try:
            return await asyncio.wait_for(self._lookup.lookup(name), self._timeout), False
        except (LookupUnavailable, asyncio.TimeoutError) as e:
            _LOG.warning("composition lookup for %r unavailable: %s", name, e)
            return None, True
