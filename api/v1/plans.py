# api/v1/plans.py
from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, status

from config import settings
from core.contracts import CompositionLookup, RecipeStore
from core.generation_controller import GenerationPolicy, PlanGenerator
from core.models.plan import ValidationResult
from core.nutrient_resolver import NutrientResolver
from core.nutrition_validator import NutritionValidator
from services.composition import CompositionTable
from services.db import generation_logger, session_factory
from services.edamam import EdamamLookup
from services.plan_agents import AIGateway, GeminiAssigner, GeminiReviewer, GeminiScorer
from services.recipe_store import SqlRecipeStore
from api.v1.schemas import PlanRequest, PlanResponse, ValidateRequest

_LOG = logging.getLogger(__name__)

router = APIRouter()

GeneratorFactory = Callable[[str], PlanGenerator]

# input problems the caller can fix; everything else that fails is on us
_INPUT_ERRORS = {"INCOMPLETE_BLUEPRINT", "NO_ELIGIBLE_RECIPES"}

# ───────────────────────── process-wide singletons ─────────────────
_GATEWAY: AIGateway | None = None
_LOOKUP: CompositionLookup | None = None


def _gateway() -> AIGateway:
    global _GATEWAY
    if _GATEWAY is None:
        _GATEWAY = AIGateway()
    return _GATEWAY


# ───────────────────────── dependencies ────────────────────────────
async def get_store() -> RecipeStore:
    return SqlRecipeStore(await session_factory())


async def get_lookup() -> CompositionLookup | None:
    global _LOOKUP
    if _LOOKUP is None:
        table = await CompositionTable.from_db(await session_factory())
        if len(table):
            _LOOKUP = table
        elif settings.edamam_app_id and settings.edamam_app_key:
            _LOOKUP = EdamamLookup()
        else:
            _LOG.warning("no composition source configured; heuristic tier only")
    return _LOOKUP


async def get_generator_factory(
    store: RecipeStore = Depends(get_store),
    lookup: CompositionLookup | None = Depends(get_lookup),
) -> GeneratorFactory:
    sink = generation_logger(await session_factory())
    policy = GenerationPolicy.from_settings()

    def _build(user_id: str) -> PlanGenerator:
        gw = _gateway()
        return PlanGenerator(
            store,
            GeminiScorer(gw, user_id),
            GeminiAssigner(gw, user_id),
            GeminiReviewer(gw, user_id),
            lookup=lookup,
            policy=policy,
            event_sink=sink,
        )

    return _build


async def get_validator(
    store: RecipeStore = Depends(get_store),
    lookup: CompositionLookup | None = Depends(get_lookup),
) -> NutritionValidator:
    return NutritionValidator(store, NutrientResolver(lookup, lookup_timeout_s=settings.lookup_timeout_s))


# ───────────────────────── generate ────────────────────────────────
@router.post("", response_model=PlanResponse, status_code=status.HTTP_200_OK)
async def generate_plan(
    body: PlanRequest,
    build: GeneratorFactory = Depends(get_generator_factory),
) -> PlanResponse:
    outcome = await build(body.blueprint.user_id).generate_plan(body.blueprint, body.preferences)
    if outcome.outcome == "failed":
        code = outcome.error.code if outcome.error else "COMPLETE_FAILURE"
        http = (
            status.HTTP_422_UNPROCESSABLE_ENTITY if code in _INPUT_ERRORS
            else status.HTTP_503_SERVICE_UNAVAILABLE
        )
        raise HTTPException(status_code=http, detail=outcome.model_dump(mode="json"))
    return outcome


# ───────────────────────── validate ────────────────────────────────
@router.post("/validate", response_model=ValidationResult)
async def validate_plan(
    body: ValidateRequest,
    validator: NutritionValidator = Depends(get_validator),
) -> ValidationResult:
    return await validator.validate(body.plan, body.targets, body.options())
