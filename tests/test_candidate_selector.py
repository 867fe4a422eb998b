"""
Candidate selection – hard filter, final scores, diversity, degradation.
"""
from __future__ import annotations

import asyncio

import pytest

from core.candidate_selector import (
    NEUTRAL_SCORE,
    NO_SCORE_REASON,
    CandidateSelector,
    apply_final_scores,
    build_candidates,
    build_query,
    filter_recipes,
    macro_focus_scores,
    select_diverse,
    summarize_blueprint,
)
from core.contracts import RecipeQuery, Usage
from core.errors import NoEligibleRecipes
from core.models.recipe import Candidate
from core.payloads import ScoringPayload

from fakes import FakeScorer, blueprint, catalogue, prefs, recipe, store

# ── hard filter ───────────────────────────────────────────────────────
def test_diet_allergen_and_dislike_filters():
    recipes = [
        recipe("tofu", dietary_tags=["vegan"], ingredients=[{"name": "tofu", "amount": 200, "unit": "g"}]),
        recipe("peanut-noodles", dietary_tags=["vegan"],
               ingredients=[{"name": "Peanut butter", "amount": 2, "unit": "tbsp"}]),
        recipe("mushroom-risotto", dietary_tags=["vegan"],
               ingredients=[{"name": "mushrooms", "amount": 100, "unit": "g"}]),
        recipe("steak"),
    ]
    bp = blueprint(diet_type="vegan", allergies=["peanut"], dislikes=["mushroom"])
    kept = filter_recipes(recipes, bp, RecipeQuery())
    assert [r.id for r in kept] == ["tofu"]


def test_time_caps_exclude_unknown_times():
    recipes = [recipe("quick", prep_time_minutes=10), recipe("unknown", prep_time_minutes=None)]
    kept = filter_recipes(recipes, blueprint(), RecipeQuery(max_prep_time=20))
    assert [r.id for r in kept] == ["quick"]


def test_premium_and_excluded_ids():
    recipes = [recipe("free"), recipe("paid", is_premium=True), recipe("banned")]
    q = build_query(blueprint(), prefs(exclude_recipes=["banned"]))
    assert [r.id for r in filter_recipes(recipes, blueprint(), q)] == ["free"]

    q = build_query(blueprint(premium_access=True), prefs())
    assert {r.id for r in filter_recipes(recipes, blueprint(premium_access=True), q)} == {
        "free", "paid", "banned",
    }


def test_max_prep_preference_also_caps_cook_time():
    q = build_query(blueprint(cooking_time_preference=45), prefs(max_prep_time=20))
    assert q.max_prep_time == 20
    assert q.max_cook_time == 50


def test_working_set_keeps_best_rated():
    recipes = [recipe(f"r{i}", rating_average=i / 2) for i in range(10)]
    kept = filter_recipes(recipes, blueprint(), RecipeQuery(), working_set_size=3)
    assert [r.id for r in kept] == ["r9", "r8", "r7"]


# ── final score ───────────────────────────────────────────────────────
def test_final_score_blend_and_history_multipliers():
    bp = blueprint(
        premium_access=True,
        recent_ratings=[{"recipe_id": "loved", "rating": "love"}],
        recent_swaps=[{"original_recipe_id": "swapped"}],
    )
    cands = [
        Candidate(recipe=recipe("plain", rating_average=4), base_score=80, personalization_score=50),
        Candidate(recipe=recipe("loved"), base_score=80, personalization_score=50),
        Candidate(recipe=recipe("swapped"), base_score=80, personalization_score=50),
        Candidate(recipe=recipe("premium", is_premium=True), base_score=80, personalization_score=50),
    ]
    scores = {c.id: c.final_score for c in apply_final_scores(cands, bp)}

    assert scores["plain"] == pytest.approx(44.0)
    assert scores["loved"] == pytest.approx(44.0 * 1.3)
    assert scores["swapped"] == pytest.approx(44.0 * 0.7)
    assert scores["premium"] == pytest.approx(44.0 * 1.1)


def test_missing_score_gets_neutral_with_penalty_reason():
    payload = ScoringPayload.model_validate({"recipe_scores": {"a": {"score": 90}}})
    a, b = build_candidates([recipe("a", rating_average=5), recipe("b")], payload)

    assert a.personalization_score == 90 and a.base_score == 100
    assert b.personalization_score == NEUTRAL_SCORE
    assert b.penalty_reasons == [NO_SCORE_REASON]


# ── diversity ─────────────────────────────────────────────────────────
def _cand(rid: str, cuisine: str, meal: str, score: float) -> Candidate:
    return Candidate(recipe=recipe(rid, cuisine_type=cuisine, meal_type=[meal]), final_score=score)


def test_cuisine_cap_applies_until_relaxation():
    # target 10 → cuisine cap 2, caps lifted once 5 are picked
    ranked = [_cand(f"it{i}", "italian", "dinner", 100 - i) for i in range(4)]
    ranked += [_cand(f"mx{i}", "mexican", "lunch", 90 - i) for i in range(4)]
    ranked += [_cand(f"fr{i}", "french", "breakfast", 80 - i) for i in range(4)]
    picked = [c.id for c in select_diverse(ranked, target_count=10)]

    assert picked == ["it0", "it1", "mx0", "mx1", "fr0", "fr1", "fr2", "fr3"]


def test_variety_off_is_plain_top_n():
    ranked = [_cand(f"it{i}", "italian", "dinner", 100 - i) for i in range(12)]
    picked = select_diverse(ranked, target_count=10, enforce_variety=False)
    assert [c.id for c in picked] == [f"it{i}" for i in range(10)]


# ── async wrapper ─────────────────────────────────────────────────────
def test_select_records_usage_and_returns_candidates():
    usage = Usage()
    sel = asyncio.run(CandidateSelector(store(), FakeScorer(score=90)).select(blueprint(), prefs(), usage))

    assert len(sel.candidates) == len(catalogue())
    assert not sel.degraded
    assert usage.calls == 1 and usage.tokens == 100


def test_scorer_outage_degrades_to_neutral_scores():
    usage = Usage()
    sel = asyncio.run(CandidateSelector(store(), FakeScorer(fail=True)).select(blueprint(), prefs(), usage))

    assert sel.degraded
    assert all(c.personalization_score == NEUTRAL_SCORE for c in sel.candidates)
    assert usage.calls == 1


def test_malformed_scorer_reply_degrades():
    scorer = FakeScorer(payload="sorry, I cannot score these")
    sel = asyncio.run(CandidateSelector(store(), scorer).select(blueprint(), prefs(), Usage()))
    assert sel.degraded


def test_no_eligible_recipes_is_fatal():
    with pytest.raises(NoEligibleRecipes):
        asyncio.run(
            CandidateSelector(store(), FakeScorer()).select(blueprint(diet_type="keto"), prefs(), Usage())
        )


# ── focus macros / special requests ───────────────────────────────────
LEAN = recipe("lean", nutrition_info={"calories": 400, "protein": 50, "fat": 10, "carbohydrates": 10})
STARCHY = recipe("starchy", nutrition_info={"calories": 400, "protein": 5, "fat": 10, "carbohydrates": 70})
UNKNOWN = recipe("unknown")


def test_macro_focus_ranks_by_calorie_share():
    scores = macro_focus_scores([LEAN, STARCHY, UNKNOWN], ["protein"])
    assert list(scores) == [100.0, 50.0, NEUTRAL_SCORE]

    scores = macro_focus_scores([LEAN, STARCHY], ["carbs"])
    assert scores[1] > scores[0]


def test_focus_macros_lift_matching_recipes():
    cands = [
        Candidate(recipe=r, base_score=80, personalization_score=50) for r in (STARCHY, LEAN, UNKNOWN)
    ]
    plain = {c.id: c.final_score for c in apply_final_scores(cands, blueprint())}
    assert plain["lean"] == plain["starchy"] == pytest.approx(44.0)

    focused = apply_final_scores(cands, blueprint(), ["protein"])
    assert focused[0].id == "lean"
    scores = {c.id: c.final_score for c in focused}
    assert scores["lean"] == pytest.approx(44.0 + 0.2 * 100)
    assert scores["starchy"] == pytest.approx(44.0 + 0.2 * 50)


def test_scorer_sees_focus_and_requests():
    summary = summarize_blueprint(
        blueprint(), prefs(focus_macros=["protein"], special_requests=["No fish on Friday"])
    )
    assert summary["focus_macros"] == ["protein"]
    assert summary["special_requests"] == ["No fish on Friday"]
    assert "focus_macros" not in summarize_blueprint(blueprint())
