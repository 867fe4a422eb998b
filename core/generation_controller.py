"""
core/generation_controller.py
────────────────────────────────────────────────────────────────────────
Drives one plan generation from blueprint to accepted / fallback / failed.

  VALIDATING_INPUT → SELECTING_CANDIDATES → ASSEMBLING
      → VALIDATING_NUTRITION → REVIEWING_COHERENCE → ACCEPTED → TERMINAL
                 │                       │
                 └──── IMPROVING ◄───────┘   (→ ASSEMBLING with guidance)

Every failed round consumes one retry; after `max_retries` the circuit
breaker trips and a deterministic fallback plan is built.  The routing
itself is the pure `next_stage()`; `PlanGenerator` only runs stages and
feeds their signals back in.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal

import numpy as np
from pydantic import BaseModel

from core import blueprint_check, fallback
from core.candidate_selector import CandidateSelector
from core.coherence import CoherenceGate, Review
from core.contracts import (
    CoherenceReviewer,
    CompositionLookup,
    RecipeScorer,
    RecipeStore,
    SlotAssigner,
    Usage,
)
from core.errors import (
    CircuitBreakerTripped,
    CoherenceBelowThreshold,
    CompleteFailure,
    GenerationCancelled,
    IncompleteBlueprint,
    NoEligibleRecipes,
    NutritionThresholdExceeded,
    PlanEngineError,
    StageTimeout,
)
from core.models.blueprint import Blueprint, GenerationPreferences, NutritionalTargets
from core.models.plan import DeviationSet, NutrientTotals, PlanDraft, ValidationResult
from core.models.recipe import Candidate
from core.nutrient_resolver import NutrientResolver, Resolution
from core.nutrition_validator import NutritionValidator, ValidationOptions
from core.plan_assembler import PlanAssembler

_LOG = logging.getLogger(__name__)

EventSink = Callable[[str, str, dict[str, Any]], Awaitable[None]]


# ───────── state machine ─────────────────────────────────────────────
class Stage(str, enum.Enum):
    VALIDATING_INPUT = "validating_input"
    SELECTING_CANDIDATES = "selecting_candidates"
    ASSEMBLING = "assembling"
    VALIDATING_NUTRITION = "validating_nutrition"
    REVIEWING_COHERENCE = "reviewing_coherence"
    IMPROVING = "improving"
    ACCEPTED = "accepted"
    FALLBACK = "fallback"
    TERMINAL = "terminal"


class Signal(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"      # the round is lost
    IMPROVE = "improve"    # a gate failed; a targeted fix may still save the round
    FATAL = "fatal"


@dataclass(frozen=True)
class Counters:
    retry_count: int
    max_retries: int
    repairs_left: int
    improvements_left: int


@dataclass(frozen=True)
class Transition:
    stage: Stage
    consumed_retry: bool = False


def _round_failed(c: Counters) -> Transition:
    if c.retry_count + 1 >= c.max_retries:
        return Transition(Stage.FALLBACK, consumed_retry=True)
    return Transition(Stage.SELECTING_CANDIDATES, consumed_retry=True)


def next_stage(stage: Stage, signal: Signal, c: Counters) -> Transition:
    """Pure routing over (stage, signal, counters)."""
    if signal is Signal.FATAL or stage is Stage.ACCEPTED:
        return Transition(Stage.TERMINAL)
    if stage is Stage.FALLBACK:
        return Transition(Stage.TERMINAL)

    if signal is Signal.FAILED:
        if stage is Stage.VALIDATING_INPUT:
            return Transition(Stage.TERMINAL)
        return _round_failed(c)

    if signal is Signal.IMPROVE:
        if stage is Stage.VALIDATING_NUTRITION and c.repairs_left > 0:
            return Transition(Stage.IMPROVING)
        if stage is Stage.REVIEWING_COHERENCE and c.improvements_left > 0:
            return Transition(Stage.IMPROVING)
        return _round_failed(c)

    forward = {
        Stage.VALIDATING_INPUT: Stage.SELECTING_CANDIDATES,
        Stage.SELECTING_CANDIDATES: Stage.ASSEMBLING,
        Stage.ASSEMBLING: Stage.VALIDATING_NUTRITION,
        Stage.VALIDATING_NUTRITION: Stage.REVIEWING_COHERENCE,
        Stage.REVIEWING_COHERENCE: Stage.ACCEPTED,
        Stage.IMPROVING: Stage.ASSEMBLING,
    }
    if stage not in forward:
        raise ValueError(f"no transition from {stage} on {signal}")
    return Transition(forward[stage])


# ───────── policy / attempt / outcome ────────────────────────────────
@dataclass(frozen=True)
class GenerationPolicy:
    max_retries: int = 3
    repairs_per_round: int = 1
    deviation_threshold: float = 15.0
    coherence_pass_rating: float = 7
    candidate_target_count: int = 30
    working_set_size: int = 50
    diversity_relax_fraction: float = 0.5
    tolerate_missing_nutrition: bool = False
    stage_timeout_s: float = 60.0
    lookup_timeout_s: float = 10.0

    @classmethod
    def from_settings(cls, s: Any = None) -> "GenerationPolicy":
        if s is None:
            from config import settings
            s = settings
        return cls(
            max_retries=s.max_retries,
            repairs_per_round=s.repairs_per_round,
            deviation_threshold=s.deviation_threshold,
            coherence_pass_rating=s.coherence_pass_rating,
            candidate_target_count=s.candidate_target_count,
            working_set_size=s.working_set_size,
            diversity_relax_fraction=s.diversity_relax_fraction,
            tolerate_missing_nutrition=s.tolerate_missing_nutrition,
            stage_timeout_s=s.stage_timeout_s,
            lookup_timeout_s=s.lookup_timeout_s,
        )

    def validation_options(self) -> ValidationOptions:
        return ValidationOptions(
            deviation_threshold=self.deviation_threshold,
            require_all_recipes=not self.tolerate_missing_nutrition,
        )


@dataclass
class GenerationAttempt:
    max_retries: int
    attempt_index: int = 1
    retry_count: int = 0
    usage: Usage = field(default_factory=Usage)
    last_failure: str | None = None
    stage_history: list[str] = field(default_factory=list)


class ErrorInfo(BaseModel):
    code: str
    message: str
    stage: str | None = None
    retryable: bool = False


def _error_info(err: PlanEngineError) -> ErrorInfo:
    return ErrorInfo(code=err.code, message=str(err), stage=err.stage, retryable=err.retryable)


class GenerationOutcome(BaseModel):
    generation_id: str
    outcome: Literal["accepted", "fallback", "failed"]
    plan: PlanDraft | None = None
    validation: ValidationResult | None = None
    usage: Usage
    retry_count: int = 0
    error: ErrorInfo | None = None
    fallback_reason: str | None = None
    degraded: bool = False
    stage_history: list[str] = []


# ───────── nutrition repair weighting ────────────────────────────────
def reweight_candidates(
    candidates: list[Candidate],
    profiles: dict[str, NutrientTotals],
    devs: DeviationSet,
    threshold: float,
    strength: float = 0.25,
) -> list[Candidate]:
    """
    Nudge final scores toward candidates that pull the failing nutrients
    back to target: above target favours below-average recipes for that
    nutrient, and vice versa.  Scores stay within [0, 100].
    """
    failing = [(n, d) for n, d in devs.core().items() if abs(d) > threshold]
    if not failing or not candidates or not profiles:
        return candidates

    names = [n for n, _ in failing]
    mat = np.array(
        [[getattr(profiles[c.id], n) if c.id in profiles else np.nan for n in names]
         for c in candidates],
        dtype=float,
    )
    known = ~np.isnan(mat)
    filled = np.where(known, mat, 0.0)
    counts = np.maximum(known.sum(axis=0), 1)
    mean = filled.sum(axis=0) / counts
    std = np.sqrt((np.where(known, mat - mean, 0.0) ** 2).sum(axis=0) / counts)
    std[std == 0] = 1.0
    z = np.where(known, (mat - mean) / std, 0.0)

    direction = -np.sign(np.array([d for _, d in failing], dtype=float))
    factor = np.clip(1 + strength * (z @ direction) / len(failing), 0.5, 1.5)
    scores = np.clip(np.array([c.final_score for c in candidates]) * factor, 0, 100)

    reweighted = [c.model_copy(update={"final_score": float(s)}) for c, s in zip(candidates, scores)]
    return sorted(reweighted, key=lambda c: c.final_score, reverse=True)


# ───────── per-request state ─────────────────────────────────────────
@dataclass
class _Run:
    blueprint: Blueprint
    prefs: GenerationPreferences
    attempt: GenerationAttempt
    targets: NutritionalTargets | None = None
    candidates: list[Candidate] = field(default_factory=list)
    weighted: list[Candidate] = field(default_factory=list)
    guidance: list[str] = field(default_factory=list)
    plan: PlanDraft | None = None
    validation: ValidationResult | None = None
    review: Review | None = None
    pending: str | None = None            # "nutrition" | "coherence"
    repairs_left: int = 0
    improvements_left: int = 0
    degraded: bool = False
    outcome: str | None = None
    error: PlanEngineError | None = None
    breaker: CircuitBreakerTripped | None = None
    fallback_reason: str | None = None

    def counters(self) -> Counters:
        return Counters(
            retry_count=self.attempt.retry_count,
            max_retries=self.attempt.max_retries,
            repairs_left=self.repairs_left,
            improvements_left=self.improvements_left,
        )


# ───────── controller ────────────────────────────────────────────────
class PlanGenerator:
    def __init__(
        self,
        store: RecipeStore,
        scorer: RecipeScorer,
        assigner: SlotAssigner,
        reviewer: CoherenceReviewer,
        lookup: CompositionLookup | None = None,
        policy: GenerationPolicy | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.policy = policy or GenerationPolicy()
        p = self.policy
        self._store = store
        self._resolver = NutrientResolver(lookup, lookup_timeout_s=p.lookup_timeout_s)
        self._selector = CandidateSelector(
            store,
            scorer,
            target_count=p.candidate_target_count,
            working_set_size=p.working_set_size,
            relax_fraction=p.diversity_relax_fraction,
        )
        self._assembler = PlanAssembler(assigner)
        self._validator = NutritionValidator(store, self._resolver, p.validation_options())
        self._gate = CoherenceGate(reviewer, p.coherence_pass_rating)
        self._sink = event_sink

        self._handlers = {
            Stage.VALIDATING_INPUT: self._validate_input,
            Stage.SELECTING_CANDIDATES: self._select,
            Stage.ASSEMBLING: self._assemble,
            Stage.VALIDATING_NUTRITION: self._check_nutrition,
            Stage.REVIEWING_COHERENCE: self._check_coherence,
            Stage.IMPROVING: self._improve,
            Stage.ACCEPTED: self._accept,
            Stage.FALLBACK: self._fallback,
        }

    # --------------- public entrypoint --------------------------------
    async def generate_plan(
        self,
        blueprint: Blueprint,
        preferences: GenerationPreferences | None = None,
        cancel: asyncio.Event | None = None,
    ) -> GenerationOutcome:
        generation_id = str(uuid.uuid4())
        run = _Run(
            blueprint=blueprint,
            prefs=preferences or GenerationPreferences(),
            attempt=GenerationAttempt(max_retries=self.policy.max_retries),
        )
        self._reset_round(run)
        await self._emit(generation_id, "started", {"user_id": blueprint.user_id})

        stage = Stage.VALIDATING_INPUT
        while stage is not Stage.TERMINAL:
            if cancel is not None and cancel.is_set():
                _LOG.info("generation %s cancelled before %s", generation_id, stage.value)
                run.error = GenerationCancelled(stage=stage.value)
                run.outcome = "failed"
                break

            run.attempt.stage_history.append(stage.value)
            _LOG.debug("generation %s → %s", generation_id, stage.value)
            signal = await self._run_stage(stage, run)

            tr = next_stage(stage, signal, run.counters())
            if tr.consumed_retry:
                run.attempt.retry_count += 1
                _LOG.warning(
                    "round %d failed (%d/%d): %s",
                    run.attempt.attempt_index, run.attempt.retry_count,
                    run.attempt.max_retries, run.attempt.last_failure,
                )
                if tr.stage is Stage.SELECTING_CANDIDATES:
                    run.attempt.attempt_index += 1
                    self._reset_round(run)
            if signal is Signal.FATAL:
                run.outcome = "failed"
            stage = tr.stage

        outcome = self._outcome(generation_id, run)
        event = "completed" if outcome.outcome == "accepted" else outcome.outcome
        # a fallback is logged with the breaker trip; callers only see fallback_reason
        logged = outcome.error or (_error_info(run.breaker) if run.breaker else None)
        await self._emit(generation_id, event, {
            "user_id": blueprint.user_id,
            "retry_count": outcome.retry_count,
            "usage": {"calls": outcome.usage.calls, "tokens": outcome.usage.tokens,
                      "cost_cents": outcome.usage.cost_cents},
            "error": logged.model_dump() if logged else None,
            "deviations": outcome.validation.target_deviations.model_dump()
            if outcome.validation else None,
        })
        return outcome

    # --------------- plumbing -----------------------------------------
    def _reset_round(self, run: _Run) -> None:
        run.candidates, run.weighted, run.guidance = [], [], []
        run.plan, run.validation, run.review, run.pending = None, None, None, None
        run.repairs_left = self.policy.repairs_per_round
        run.improvements_left = self.policy.repairs_per_round

    async def _bounded(self, coro: Awaitable[Any], stage: Stage) -> Any:
        try:
            return await asyncio.wait_for(coro, self.policy.stage_timeout_s)
        except asyncio.TimeoutError as e:
            raise StageTimeout(
                f"{stage.value} exceeded {self.policy.stage_timeout_s:.0f}s", stage=stage.value
            ) from e

    async def _run_stage(self, stage: Stage, run: _Run) -> Signal:
        try:
            return await self._handlers[stage](run)
        except (IncompleteBlueprint, NoEligibleRecipes, CompleteFailure) as e:
            _LOG.error("generation failed at %s: %s", stage.value, e)
            run.error = e
            return Signal.FATAL
        except (NutritionThresholdExceeded, CoherenceBelowThreshold) as e:
            run.attempt.last_failure = str(e)
            return Signal.IMPROVE
        except PlanEngineError as e:
            run.attempt.last_failure = f"{stage.value}: {e}"
            return Signal.FAILED
        except Exception as e:
            _LOG.exception("unexpected error during %s", stage.value)
            run.attempt.last_failure = f"{stage.value}: {e}"
            return Signal.FAILED

    async def _emit(self, generation_id: str, event: str, payload: dict[str, Any]) -> None:
        if self._sink is None:
            return
        try:
            await self._sink(generation_id, event, payload)
        except Exception:
            _LOG.warning("could not record %s event for %s", event, generation_id, exc_info=True)

    def _outcome(self, generation_id: str, run: _Run) -> GenerationOutcome:
        err = run.error
        if err is None and run.outcome in (None, "failed"):
            err = CompleteFailure(run.attempt.last_failure or "", stage=Stage.TERMINAL.value)
        return GenerationOutcome(
            generation_id=generation_id,
            outcome=run.outcome or "failed",
            plan=run.plan if run.outcome in ("accepted", "fallback") else None,
            validation=run.validation if run.outcome in ("accepted", "fallback") else None,
            usage=run.attempt.usage,
            retry_count=run.attempt.retry_count,
            error=_error_info(err) if err else None,
            fallback_reason=run.fallback_reason,
            degraded=run.degraded,
            stage_history=run.attempt.stage_history,
        )

    # --------------- stages -------------------------------------------
    async def _validate_input(self, run: _Run) -> Signal:
        run.targets = blueprint_check.ensure_complete(run.blueprint)
        return Signal.PASSED

    async def _select(self, run: _Run) -> Signal:
        sel = await self._bounded(
            self._selector.select(run.blueprint, run.prefs, run.attempt.usage),
            Stage.SELECTING_CANDIDATES,
        )
        run.degraded = run.degraded or sel.degraded
        run.candidates = sel.candidates
        run.weighted = sel.candidates
        _LOG.info("round %d: %d candidates", run.attempt.attempt_index, len(sel.candidates))
        return Signal.PASSED

    async def _assemble(self, run: _Run) -> Signal:
        asm = await self._bounded(
            self._assembler.assemble(
                run.weighted, run.prefs.week_start_date, run.attempt.usage, run.guidance,
                run.prefs.special_requests,
            ),
            Stage.ASSEMBLING,
        )
        run.plan = asm.plan
        return Signal.PASSED

    async def _check_nutrition(self, run: _Run) -> Signal:
        result, degraded = await self._bounded(
            self._validator.evaluate(run.plan, run.targets), Stage.VALIDATING_NUTRITION
        )
        run.validation = result
        run.degraded = run.degraded or degraded
        if result.is_valid:
            return Signal.PASSED
        run.pending = "nutrition"
        raise NutritionThresholdExceeded(
            "nutrition: " + ("; ".join(result.suggestions) or "invalid"),
            stage=Stage.VALIDATING_NUTRITION.value,
        )

    async def _check_coherence(self, run: _Run) -> Signal:
        review = await self._bounded(
            self._gate.review(run.plan, run.candidates, run.blueprint, run.attempt.usage),
            Stage.REVIEWING_COHERENCE,
        )
        run.review = review
        run.degraded = run.degraded or review.degraded
        if review.passed:
            return Signal.PASSED
        run.pending = "coherence"
        raise CoherenceBelowThreshold(
            f"coherence rated {review.rating:g}/10: {review.feedback}",
            stage=Stage.REVIEWING_COHERENCE.value,
        )

    async def _improve(self, run: _Run) -> Signal:
        if run.pending == "nutrition":
            run.repairs_left -= 1
            profiles = await self._bounded(self._profiles(run.candidates), Stage.IMPROVING)
            run.weighted = reweight_candidates(
                run.weighted, profiles, run.validation.target_deviations,
                self.policy.deviation_threshold,
            )
            run.guidance = list(run.validation.suggestions)
        else:
            run.improvements_left -= 1
            run.guidance = [
                f"A reviewer rated the previous plan {run.review.rating:g}/10.",
                f"Reviewer feedback: {run.review.feedback}",
            ]
        _LOG.info("improving %s for round %d", run.pending, run.attempt.attempt_index)
        run.pending = None
        return Signal.PASSED

    async def _profiles(self, candidates: list[Candidate]) -> dict[str, NutrientTotals]:
        results = await asyncio.gather(*(self._resolver.resolve(c.recipe, 1.0) for c in candidates))
        return {c.id: r.totals for c, r in zip(candidates, results) if isinstance(r, Resolution)}

    async def _accept(self, run: _Run) -> Signal:
        run.outcome = "accepted"
        _LOG.info("plan accepted after %d failed rounds", run.attempt.retry_count)
        return Signal.PASSED

    async def _fallback(self, run: _Run) -> Signal:
        run.breaker = CircuitBreakerTripped(
            f"Generation failed after {run.attempt.retry_count} attempts: "
            f"{run.attempt.last_failure or 'unknown error'}",
            stage=Stage.FALLBACK.value,
        )
        run.fallback_reason = str(run.breaker)
        _LOG.warning("circuit breaker tripped: %s", run.fallback_reason)
        week_start: dt.date = run.prefs.week_start_date
        try:
            plan = await self._bounded(
                fallback.generate_fallback(self._store, run.blueprint, week_start), Stage.FALLBACK
            )
        except CompleteFailure:
            raise
        except PlanEngineError as e:
            raise CompleteFailure(f"fallback plan failed: {e}", stage=Stage.FALLBACK.value) from e
        run.plan = plan
        try:
            run.validation = await self._bounded(
                self._validator.validate(plan, run.targets), Stage.FALLBACK
            )
        except PlanEngineError as e:
            _LOG.warning("fallback plan could not be validated: %s", e)
            run.validation = None
        run.outcome = "fallback"
        return Signal.PASSED
