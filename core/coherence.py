"""Coherence gate: an external 1–10 taste/variety rating of an assembled plan."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from core.contracts import CoherenceReviewer, Usage
from core.errors import ReviewUnavailable
from core.models.blueprint import Blueprint
from core.models.plan import PlanDraft
from core.models.recipe import Candidate
from core.payloads import Malformed, ReviewPayload, parse_payload

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Review:
    rating: float
    feedback: str
    passed: bool
    degraded: bool = False


def summarize_plan(plan: PlanDraft, by_id: dict[str, Candidate]) -> dict[str, Any]:
    def _meal(recipe_id: str, meal_type: str) -> dict[str, Any]:
        c = by_id.get(recipe_id)
        return {
            "meal_type": meal_type,
            "title": c.recipe.title if c else recipe_id,
            "cuisine": c.recipe.cuisine_type if c else None,
        }

    return {
        "theme": plan.week_theme,
        "total_recipes": plan.total_recipes,
        "unique_recipes": plan.unique_recipes,
        "days": [
            {"day": d.day, "meals": [_meal(m.recipe_id, m.meal_type) for m in d.meals]}
            for d in plan.days
        ],
    }


def user_context(bp: Blueprint) -> dict[str, Any]:
    return {
        "diet": bp.diet_type,
        "cooking_skill": bp.cooking_skill_level,
        "cultural_preferences": bp.cultural_preferences,
    }


class CoherenceGate:
    def __init__(self, reviewer: CoherenceReviewer, pass_rating: float = 7) -> None:
        self._reviewer = reviewer
        self._pass = pass_rating

    async def review(
        self,
        plan: PlanDraft,
        candidates: list[Candidate],
        bp: Blueprint,
        usage: Usage,
    ) -> Review:
        """
        A reviewer outage passes the gate flagged `degraded` (the plan already
        cleared nutrition); an unparseable reply counts as rating 0.
        """
        by_id = {c.id: c for c in candidates}
        try:
            reply = await self._reviewer.review(summarize_plan(plan, by_id), user_context(bp))
        except ReviewUnavailable as e:
            usage.record()
            _LOG.warning("coherence review unavailable, accepting on nutrition alone: %s", e)
            return Review(rating=0, feedback=str(e), passed=True, degraded=True)
        usage.record(reply)

        parsed = parse_payload(reply.payload, ReviewPayload)
        if isinstance(parsed, Malformed):
            _LOG.warning("coherence reply malformed: %s", parsed.reason)
            return Review(rating=0, feedback="Failed to parse coherence response", passed=False)

        rating, feedback = parsed.value.rating, parsed.value.feedback
        _LOG.info("coherence rating %.1f (pass at %.1f)", rating, self._pass)
        return Review(rating=rating, feedback=feedback, passed=rating >= self._pass)
