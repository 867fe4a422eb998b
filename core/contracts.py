"""
Contracts the core consumes from the outside world.

The scorer, the generative assembler and the coherence reviewer hand back
a `ServiceReply`: the raw payload (text or already-decoded JSON) plus the
usage it cost.  Parsing happens in `core.payloads`, never here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from core.models.recipe import CompositionRecord, RecipeRecord


@dataclass
class Usage:
    calls: int = 0
    tokens: int = 0
    cost_cents: float = 0.0

    def add(self, other: "Usage") -> None:
        self.calls += other.calls
        self.tokens += other.tokens
        self.cost_cents += other.cost_cents

    def record(self, reply: "ServiceReply | None" = None) -> None:
        """
        Add what `reply` reported.  A call that produced no reply (an outage)
        still counts once; a reply served from cache reports zero calls.
        """
        if reply is None:
            self.calls += 1
        else:
            self.calls += reply.usage.calls
            self.tokens += reply.usage.tokens
            self.cost_cents += reply.usage.cost_cents


@dataclass
class ServiceReply:
    payload: Any
    usage: Usage = field(default_factory=Usage)


@dataclass(frozen=True)
class RecipeQuery:
    include_premium: bool = False
    max_prep_time: int | None = None
    max_cook_time: int | None = None
    exclude_ids: tuple[str, ...] = ()
    min_rating: float | None = None
    limit: int | None = None


class RecipeScorer(Protocol):
    async def score(
        self, recipe_summaries: list[dict[str, Any]], user_summary: dict[str, Any]
    ) -> ServiceReply: ...


class SlotAssigner(Protocol):
    async def assemble(
        self, candidate_summaries: list[dict[str, Any]], rules: dict[str, Any]
    ) -> ServiceReply: ...


class CoherenceReviewer(Protocol):
    async def review(
        self, plan_summary: dict[str, Any], user_context: dict[str, Any]
    ) -> ServiceReply: ...


class CompositionLookup(Protocol):
    async def lookup(self, ingredient_name: str) -> CompositionRecord | None: ...


class RecipeStore(Protocol):
    async def fetch(self, ids: Iterable[str]) -> dict[str, RecipeRecord]: ...

    async def search(self, query: RecipeQuery) -> list[RecipeRecord]: ...
