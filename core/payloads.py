"""
core/payloads.py
────────────────────────────────────────────────────────────────────────
Edge parsing for the AI collaborators.

Scorer, assembler and reviewer replies are untyped JSON (often wrapped in
prose or code fences).  `parse_payload()` turns them into either
`Ok(model)` or `Malformed(raw, reason)` right at the boundary so the rest
of the pipeline only ever sees validated pydantic objects.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from scripts.helpers import extract_clean_json

_LOG = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[M]):
    value: M


@dataclass(frozen=True)
class Malformed:
    raw: str
    reason: str


# ───────── scorer ────────────────────────────────────────────────────
class RecipeScore(BaseModel):
    score: float | None = 50
    match_reasons: list[str] = []
    penalty_reasons: list[str] = []

    @field_validator("score")
    @classmethod
    def _clamp(cls, v: float | None) -> float:
        if v is None:
            return 50.0
        return min(max(float(v), 0.0), 100.0)


class ScoringPayload(BaseModel):
    recipe_scores: dict[str, RecipeScore]


# ───────── assembler ─────────────────────────────────────────────────
class AssignedMeal(BaseModel):
    meal_type: str
    recipe_id: str
    servings: float | None = None

    @field_validator("meal_type")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class AssignedDay(BaseModel):
    day: str | None = None
    date: str | None = None
    meals: list[AssignedMeal] = []


class AssemblyPayload(BaseModel):
    week_theme: str | None = None
    days: list[AssignedDay]


# ───────── reviewer ──────────────────────────────────────────────────
class ReviewPayload(BaseModel):
    rating: float = Field(..., ge=0, le=10)
    feedback: str = "No feedback provided"


# ───────── generic parser ────────────────────────────────────────────
def _raw_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return json.dumps(raw, default=str)
    except (TypeError, ValueError):
        return repr(raw)


def parse_payload(raw: Any, model: Type[M]) -> Ok[M] | Malformed:
    data = extract_clean_json(raw) if isinstance(raw, (str, dict)) else {}
    if not data:
        return Malformed(_raw_text(raw), "no JSON object in response")
    try:
        return Ok(model.model_validate(data))
    except ValidationError as e:
        _LOG.warning("%s payload rejected: %s", model.__name__, e.error_count())
        return Malformed(_raw_text(raw), str(e))
