"""
core/candidate_selector.py
────────────────────────────────────────────────────────────────────────
Candidate selection for one generation round.

Responsibilities
----------------
1.   `filter_recipes()` – drop recipes that conflict with diet type,
     allergens/dislikes, time caps, excluded ids or premium gating, and
     keep the best-rated working set.
2.   `apply_final_scores()` – blend intrinsic quality with the external
     personalization score, the fit to any focus macros and the user's
     recent history.
3.   `select_diverse()` – greedy subset with per-cuisine / per-meal-type
     caps that relax once enough candidates are in.
4.   `CandidateSelector.select()` – the async wrapper the controller calls.

A scorer outage never fails the round: every candidate gets a neutral
personalization score and the selection is flagged `degraded`.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from core.contracts import RecipeQuery, RecipeScorer, RecipeStore, Usage
from core.errors import NoEligibleRecipes, RecipeStoreError, ScorerUnavailable
from core.models.blueprint import Blueprint, GenerationPreferences
from core.models.recipe import Candidate, RecipeRecord
from core.payloads import Malformed, ScoringPayload, parse_payload

_LOG = logging.getLogger(__name__)

BASE_WEIGHT = 0.3
PERSONALIZATION_WEIGHT = 0.4
LOVED_BONUS = 1.3
PREMIUM_BONUS = 1.1
SWAPPED_PENALTY = 0.7
MACRO_FOCUS_WEIGHT = 0.2
NEUTRAL_SCORE = 50.0
NO_SCORE_REASON = "No score available"

# focus macro -> (declared field, kcal per gram)
MACRO_ENERGY = {"protein": ("protein", 4.0), "carbs": ("carbohydrates", 4.0), "fat": ("fat", 9.0)}


@dataclass
class Selection:
    candidates: list[Candidate]
    degraded: bool = False


# ─────────────────────────────── filter ───────────────────────────── #
def build_query(bp: Blueprint, prefs: GenerationPreferences) -> RecipeQuery:
    max_prep = prefs.max_prep_time or bp.cooking_time_preference
    max_cook = prefs.max_prep_time + 30 if prefs.max_prep_time else None
    return RecipeQuery(
        include_premium=bp.premium_access,
        max_prep_time=max_prep,
        max_cook_time=max_cook,
        exclude_ids=tuple(prefs.exclude_recipes),
    )


def _recipe_frame(recipes: list[RecipeRecord]) -> pd.DataFrame:
    rows = [
        {
            "id": r.id,
            "rating_average": r.rating_average,
            "rating_count": r.rating_count,
            "prep": r.prep_time_minutes,
            "cook": r.cook_time_minutes,
            "premium": r.is_premium,
            "tags": [t.lower() for t in r.dietary_tags],
            "ingredients": [i.name.lower() for i in r.ingredients],
            "record": r,
        }
        for r in recipes
    ]
    cols = ["id", "rating_average", "rating_count", "prep", "cook",
            "premium", "tags", "ingredients", "record"]
    return pd.DataFrame(rows, columns=cols)


def _mentions(tags: list[str], ingredients: list[str], term: str) -> bool:
    return term in tags or any(term in name for name in ingredients)


def filter_recipes(
    recipes: list[RecipeRecord],
    bp: Blueprint,
    query: RecipeQuery,
    working_set_size: int = 50,
) -> list[RecipeRecord]:
    df = _recipe_frame(recipes)
    if df.empty:
        return []

    diet = (bp.diet_type or "").lower()
    if diet and diet != "omnivore":
        df = df[df["tags"].apply(lambda tags: diet in tags).astype(bool)]

    for term in sorted({t.strip().lower() for t in [*bp.allergies, *bp.dislikes] if t.strip()}):
        if df.empty:
            return []
        hit = [_mentions(tags, ings, term) for tags, ings in zip(df["tags"], df["ingredients"])]
        df = df[~np.array(hit, dtype=bool)]

    # unknown times never satisfy a cap (same as an SQL `<=` on NULL)
    if query.max_prep_time:
        df = df[pd.to_numeric(df["prep"], errors="coerce").le(query.max_prep_time)]
    if query.max_cook_time:
        df = df[pd.to_numeric(df["cook"], errors="coerce").le(query.max_cook_time)]

    if query.exclude_ids:
        df = df[~df["id"].isin(query.exclude_ids)]
    if not query.include_premium:
        df = df[~df["premium"].astype(bool)]

    df = df.sort_values(
        ["rating_average", "rating_count"], ascending=False, kind="mergesort"
    ).head(working_set_size)
    return list(df["record"])


# ──────────────────────────── scoring ─────────────────────────────── #
def summarize_blueprint(bp: Blueprint, prefs: GenerationPreferences | None = None) -> dict[str, Any]:
    out = {
        "diet_type": bp.diet_type,
        "allergies": bp.allergies,
        "dislikes": bp.dislikes,
        "health_goals": bp.health_goals,
        "cooking_skill": bp.cooking_skill_level,
        "cooking_time_preference": bp.cooking_time_preference,
        "cultural_preferences": bp.cultural_preferences,
        "flavor_preferences": bp.flavor_preferences.model_dump() if bp.flavor_preferences else None,
        "recent_ratings": [r.model_dump(mode="json") for r in bp.recent_ratings[:5]],
        "recent_swaps": [s.model_dump(mode="json") for s in bp.recent_swaps[:3]],
    }
    if prefs is not None:
        out["focus_macros"] = list(prefs.focus_macros)
        out["special_requests"] = list(prefs.special_requests)
    return out


def summarize_recipe(r: RecipeRecord) -> dict[str, Any]:
    return {
        "id": r.id,
        "title": r.title,
        "cuisine": r.cuisine_type,
        "dietary_tags": r.dietary_tags,
        "prep_time": r.prep_time_minutes,
        "difficulty": r.difficulty_level,
        "rating": r.rating_average,
        "meal_types": r.meal_type,
    }


def history_multiplier(recipe: RecipeRecord, bp: Blueprint) -> float:
    mult = 1.0
    if any(r.rating == "love" and r.recipe_id == recipe.id for r in bp.recent_ratings):
        mult *= LOVED_BONUS
    if recipe.is_premium and bp.premium_access:
        mult *= PREMIUM_BONUS
    if any(s.original_recipe_id == recipe.id for s in bp.recent_swaps):
        mult *= SWAPPED_PENALTY
    return mult


def macro_focus_scores(recipes: list[RecipeRecord], focus_macros: list[str]) -> np.ndarray:
    """
    0–100 per recipe: percentile rank of the share of declared calories
    that comes from the focus macros.  Recipes without usable declared
    nutrition get the neutral score.
    """
    shares = []
    for r in recipes:
        info = r.nutrition_info
        if info is None or info.calories <= 0:
            shares.append(np.nan)
            continue
        kcal = sum(getattr(info, MACRO_ENERGY[m][0]) * MACRO_ENERGY[m][1] for m in focus_macros)
        shares.append(kcal / info.calories)
    ranks = pd.Series(shares, dtype=float).rank(pct=True) * 100
    return ranks.fillna(NEUTRAL_SCORE).to_numpy()


def apply_final_scores(
    candidates: list[Candidate], bp: Blueprint, focus_macros: list[str] | None = None
) -> list[Candidate]:
    """
    final = (0.3 · base + 0.4 · personalization [+ 0.2 · macro focus])
    × history multipliers, clamped to [0, 100].  Returns new candidates
    sorted best first.
    """
    if not candidates:
        return []
    base = np.array([c.base_score for c in candidates], dtype=float)
    pers = np.array([c.personalization_score for c in candidates], dtype=float)
    mult = np.array([history_multiplier(c.recipe, bp) for c in candidates], dtype=float)

    blend = BASE_WEIGHT * base + PERSONALIZATION_WEIGHT * pers
    if focus_macros:
        blend = blend + MACRO_FOCUS_WEIGHT * macro_focus_scores([c.recipe for c in candidates], focus_macros)
    final = np.clip(blend * mult, 0, 100)

    scored = [c.model_copy(update={"final_score": float(f)}) for c, f in zip(candidates, final)]
    return sorted(scored, key=lambda c: c.final_score, reverse=True)


def build_candidates(
    recipes: list[RecipeRecord], payload: ScoringPayload | None
) -> list[Candidate]:
    out: list[Candidate] = []
    for r in recipes:
        base = min(max(r.rating_average * 20, 0.0), 100.0)
        if payload is None:
            out.append(Candidate(recipe=r, base_score=base, personalization_score=NEUTRAL_SCORE))
            continue
        entry = payload.recipe_scores.get(r.id)
        if entry is None:
            _LOG.warning("No score found for recipe %s", r.id)
            out.append(Candidate(
                recipe=r,
                base_score=base,
                personalization_score=NEUTRAL_SCORE,
                penalty_reasons=[NO_SCORE_REASON],
            ))
            continue
        out.append(
            Candidate(
                recipe=r,
                base_score=base,
                personalization_score=entry.score,
                match_reasons=entry.match_reasons,
                penalty_reasons=entry.penalty_reasons,
            )
        )
    return out


# ──────────────────────────── diversity ───────────────────────────── #
def select_diverse(
    ranked: list[Candidate],
    target_count: int = 30,
    relax_fraction: float = 0.5,
    enforce_variety: bool = True,
) -> list[Candidate]:
    """
    Walk `ranked` best first.  Until `relax_fraction · target_count`
    candidates are accepted, skip any candidate whose cuisine or one of its
    meal types is already at its cap.
    """
    cuisine_cap = math.ceil(target_count / 5)
    meal_cap = math.ceil(target_count / 3)
    relax_at = target_count * relax_fraction

    selected: list[Candidate] = []
    cuisines: Counter[str] = Counter()
    meals: Counter[str] = Counter()

    for cand in ranked:
        if len(selected) >= target_count:
            break
        r = cand.recipe
        cuisine = (r.cuisine_type or "").lower()
        meal_types = [m.lower() for m in r.meal_type]

        if enforce_variety and len(selected) < relax_at:
            over = (cuisine and cuisines[cuisine] >= cuisine_cap) or any(
                meals[m] >= meal_cap for m in meal_types
            )
            if over:
                continue

        selected.append(cand)
        if cuisine:
            cuisines[cuisine] += 1
        meals.update(meal_types)

    _LOG.debug(
        "diversity: selected=%d cuisines=%d meal_types=%s",
        len(selected), len(cuisines), dict(meals),
    )
    return selected


# ──────────────────────────── wrapper ─────────────────────────────── #
class CandidateSelector:
    def __init__(
        self,
        store: RecipeStore,
        scorer: RecipeScorer,
        *,
        target_count: int = 30,
        working_set_size: int = 50,
        relax_fraction: float = 0.5,
    ) -> None:
        self._store = store
        self._scorer = scorer
        self._target = target_count
        self._working = working_set_size
        self._relax = relax_fraction

    async def select(
        self, bp: Blueprint, prefs: GenerationPreferences, usage: Usage
    ) -> Selection:
        query = build_query(bp, prefs)
        try:
            pool = await self._store.search(query)
        except RecipeStoreError:
            raise
        except Exception as e:
            raise RecipeStoreError(f"recipe search failed: {e}", stage="selecting_candidates") from e

        working = filter_recipes(pool, bp, query, self._working)
        if not working:
            raise NoEligibleRecipes(stage="selecting_candidates")
        _LOG.info("hard filtering kept %d of %d recipes", len(working), len(pool))

        payload, degraded = await self._score(working, bp, prefs, usage)

        ranked = apply_final_scores(build_candidates(working, payload), bp, prefs.focus_macros)
        chosen = select_diverse(ranked, self._target, self._relax, prefs.enforce_variety)
        return Selection(chosen, degraded)

    async def _score(
        self,
        working: list[RecipeRecord],
        bp: Blueprint,
        prefs: GenerationPreferences,
        usage: Usage,
    ) -> tuple[ScoringPayload | None, bool]:
        try:
            reply = await self._scorer.score(
                [summarize_recipe(r) for r in working], summarize_blueprint(bp, prefs)
            )
        except ScorerUnavailable as e:
            usage.record()
            _LOG.warning("scorer unavailable, using intrinsic scores only: %s", e)
            return None, True

        usage.record(reply)
        parsed = parse_payload(reply.payload, ScoringPayload)
        if isinstance(parsed, Malformed):
            _LOG.warning("scorer reply malformed (%s), using intrinsic scores only", parsed.reason)
            return None, True
        return parsed.value, False
