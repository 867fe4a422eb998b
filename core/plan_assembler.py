"""
core/plan_assembler.py
────────────────────────────────────────────────────────────────────────
Turns a candidate set into a 7-day `PlanDraft`.

Slot filling is delegated to the generative `SlotAssigner`; this module
owns everything around it:

* the assignment rules handed to the service,
* boundary parsing of its reply,
* `repair_plan()` – drop unknown / duplicate slots, fill missing required
  slots with the best-scored candidate for that meal type, normalise day
  names and dates from the week start,
* the final completeness check.

Anything that cannot be repaired (no JSON, wrong number of days, empty
candidate set) raises `AssemblyStructuralError`.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any

from core.contracts import SlotAssigner, Usage
from core.errors import AssemblyStructuralError
from core.models.plan import (
    OPTIONAL_MEALS,
    REQUIRED_MEALS,
    WEEKDAYS,
    DayPlan,
    MealSlot,
    PlanDraft,
)
from core.models.recipe import Candidate
from core.payloads import AssemblyPayload, Malformed, parse_payload

_LOG = logging.getLogger(__name__)

PLAN_DAYS = 7
DEFAULT_THEME = "Personalized Weekly Plan"
_MEAL_ORDER = {m: i for i, m in enumerate(REQUIRED_MEALS + OPTIONAL_MEALS)}

ASSIGNMENT_RULES: tuple[str, ...] = (
    "Each day should have breakfast, lunch, and dinner",
    "Ensure variety - don't repeat cuisines on the same day",
    "Consider prep time - lighter meals for busy days",
    "Respect meal_types - breakfast recipes for breakfast, etc.",
    "Use higher-scored recipes more prominently",
    "Create a pleasant flow throughout the week",
)


@dataclass
class Assembly:
    plan: PlanDraft
    repairs: list[str] = field(default_factory=list)


def summarize_candidate(c: Candidate) -> dict[str, Any]:
    return {
        "id": c.id,
        "title": c.recipe.title,
        "meal_types": c.recipe.meal_type,
        "prep_time": c.recipe.prep_time_minutes,
        "cuisine": c.recipe.cuisine_type,
        "score": round(c.final_score, 1),
    }


def build_rules(
    week_start: dt.date,
    guidance: list[str] | None = None,
    special_requests: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "days": PLAN_DAYS,
        "week_start_date": week_start.isoformat(),
        "required_meals": list(REQUIRED_MEALS),
        "optional_meals": list(OPTIONAL_MEALS),
        "assignment_rules": list(ASSIGNMENT_RULES),
        "guidance": list(guidance or []),
        "special_requests": list(special_requests or []),
    }


def _best_for(meal_type: str, ranked: list[Candidate], used: set[str]) -> Candidate:
    tagged = [c for c in ranked if meal_type in (m.lower() for m in c.recipe.meal_type)]
    for pool in (tagged, ranked):
        fresh = [c for c in pool if c.id not in used]
        if fresh:
            return fresh[0]
    return tagged[0] if tagged else ranked[0]


def repair_plan(
    payload: AssemblyPayload,
    candidates: list[Candidate],
    week_start: dt.date,
) -> tuple[PlanDraft, list[str]]:
    if not candidates:
        raise AssemblyStructuralError("empty candidate set", stage="assembling")
    if len(payload.days) != PLAN_DAYS:
        raise AssemblyStructuralError(
            f"expected {PLAN_DAYS} days, got {len(payload.days)}", stage="assembling"
        )

    known = {c.id for c in candidates}
    ranked = sorted(candidates, key=lambda c: c.final_score, reverse=True)
    repairs: list[str] = []
    days: list[DayPlan] = []

    for idx, raw_day in enumerate(payload.days):
        date = week_start + dt.timedelta(days=idx)
        day_name = WEEKDAYS[date.weekday()]
        if raw_day.day and raw_day.day.strip().lower() != day_name:
            repairs.append(f"renamed {raw_day.day!r} to {day_name}")

        slots: dict[str, MealSlot] = {}
        for meal in raw_day.meals:
            if meal.meal_type not in _MEAL_ORDER:
                repairs.append(f"{day_name}: dropped unknown meal type {meal.meal_type!r}")
                continue
            if meal.recipe_id not in known:
                repairs.append(f"{day_name}: dropped unknown recipe {meal.recipe_id}")
                continue
            if meal.meal_type in slots:
                repairs.append(f"{day_name}: dropped duplicate {meal.meal_type}")
                continue
            servings = meal.servings if meal.servings and meal.servings > 0 else 1.0
            slots[meal.meal_type] = MealSlot(
                meal_type=meal.meal_type, recipe_id=meal.recipe_id, servings=servings
            )

        for mt in REQUIRED_MEALS:
            if mt not in slots:
                used = {s.recipe_id for s in slots.values()}
                pick = _best_for(mt, ranked, used)
                slots[mt] = MealSlot(meal_type=mt, recipe_id=pick.id)
                repairs.append(f"{day_name}: filled {mt} with {pick.id}")

        meals = sorted(slots.values(), key=lambda s: _MEAL_ORDER[s.meal_type])
        days.append(DayPlan(day=day_name, date=date, meals=meals))

    plan = PlanDraft(
        week_theme=payload.week_theme or DEFAULT_THEME,
        week_start_date=week_start,
        days=days,
    )
    if not plan.is_complete(known):
        raise AssemblyStructuralError("plan incomplete after repair", stage="assembling")
    return plan, repairs


class PlanAssembler:
    def __init__(self, assigner: SlotAssigner) -> None:
        self._assigner = assigner

    async def assemble(
        self,
        candidates: list[Candidate],
        week_start: dt.date,
        usage: Usage,
        guidance: list[str] | None = None,
        special_requests: list[str] | None = None,
    ) -> Assembly:
        """Every call to the assigner is recorded on `usage`, even when it fails."""
        if not candidates:
            raise AssemblyStructuralError("empty candidate set", stage="assembling")

        try:
            reply = await self._assigner.assemble(
                [summarize_candidate(c) for c in candidates],
                build_rules(week_start, guidance, special_requests),
            )
        except Exception:
            usage.record()
            raise
        usage.record(reply)

        parsed = parse_payload(reply.payload, AssemblyPayload)
        if isinstance(parsed, Malformed):
            raise AssemblyStructuralError(f"unparseable plan: {parsed.reason}", stage="assembling")

        plan, repairs = repair_plan(parsed.value, candidates, week_start)
        if repairs:
            _LOG.info("assembled plan needed %d repairs", len(repairs))
            _LOG.debug("repairs: %s", repairs)
        return Assembly(plan, repairs)
