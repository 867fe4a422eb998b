"""
AI gateway, prompts and remote adapters – all network calls are faked.
"""
from __future__ import annotations

import asyncio
import json
from collections import Counter

import httpx
import pytest

from core.contracts import ServiceReply, Usage
from core.errors import AssemblyStructuralError, LookupUnavailable, ReviewUnavailable, ScorerUnavailable
from core.generation_controller import GenerationPolicy, PlanGenerator
from services import gemini
from services.edamam import EdamamLookup
from services.plan_agents import (
    AIGateway,
    GeminiAssigner,
    GeminiReviewer,
    GeminiScorer,
    RateLimited,
    assembly_prompt,
    coherence_prompt,
    scoring_prompt,
)
from services.response_cache import RateLimiter, ResponseCache

from fakes import WEEK_START, blueprint, catalogue, prefs, store, week_payload


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeModel:
    def __init__(self, text: str = '{"rating": 8}', fail: Exception | None = None) -> None:
        self.text = text
        self.fail = fail
        self.prompts: list[str] = []

    async def __call__(self, prompt, **kw) -> tuple[str, Usage]:
        self.prompts.append(prompt)
        if self.fail:
            raise self.fail
        return self.text, Usage(calls=1, tokens=1500, cost_cents=2)


def _gateway(model: FakeModel, limit: int = 100, clock: Clock | None = None) -> AIGateway:
    clock = clock or Clock()
    return AIGateway(
        ResponseCache(ttl_s=60, capacity=2, clock=clock),
        RateLimiter(limit, clock=clock),
        generate=model,
        model="test-model",
    )


# ── cache / limiter ───────────────────────────────────────────────────
def test_cache_expires_after_ttl():
    clock = Clock()
    cache = ResponseCache(ttl_s=10, clock=clock)
    cache.set("k", "v")
    clock.now = 9
    assert cache.get("k") == "v"
    clock.now = 21
    assert cache.get("k") is None


def test_cache_evicts_least_recently_used():
    cache = ResponseCache(capacity=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1 and len(cache) == 2


def test_rate_limiter_sliding_window():
    clock = Clock()
    rl = RateLimiter(2, window_s=3600, clock=clock)
    assert rl.allow("u") and rl.allow("u")
    assert not rl.allow("u")
    assert rl.allow("other")
    clock.now = 3600
    assert rl.remaining("u") == 2


def test_gateway_serves_repeats_from_cache_for_free():
    model = FakeModel()
    gw = _gateway(model)

    text, usage = asyncio.run(gw.complete("same prompt", user_key="u"))
    again, cached = asyncio.run(gw.complete("same prompt", user_key="u"))

    assert text == again
    assert usage.tokens == 1500 and cached.tokens == 0
    assert len(model.prompts) == 1


def test_gateway_rate_limit():
    gw = _gateway(FakeModel(), limit=1)
    asyncio.run(gw.complete("one", user_key="u"))
    with pytest.raises(RateLimited):
        asyncio.run(gw.complete("two", user_key="u"))


# ── agents ────────────────────────────────────────────────────────────
def test_agents_return_raw_reply_with_usage():
    model = FakeModel('{"rating": 9, "feedback": "ok"}')
    reply = asyncio.run(GeminiReviewer(_gateway(model), "u").review({"days": []}, {"diet": "vegan"}))

    assert reply.payload == '{"rating": 9, "feedback": "ok"}'
    assert reply.usage.cost_cents == 2
    assert "Diet: vegan" in model.prompts[0]


@pytest.mark.parametrize(
    "agent, call, err",
    [
        (GeminiScorer, lambda a: a.score([], {}), ScorerUnavailable),
        (GeminiAssigner, lambda a: a.assemble([], {"assignment_rules": []}), AssemblyStructuralError),
        (GeminiReviewer, lambda a: a.review({}, {}), ReviewUnavailable),
    ],
)
def test_model_outage_maps_to_engine_errors(agent, call, err):
    gw = _gateway(FakeModel(fail=gemini.GeminiUnavailable("503")))
    with pytest.raises(err):
        asyncio.run(call(agent(gw, "u")))


def test_prompts_embed_their_inputs():
    assert '"id": "r1"' in scoring_prompt([{"id": "r1"}], {"diet_type": "keto"})
    p = assembly_prompt(
        [{"id": "r1"}],
        {"assignment_rules": ["Rule A", "Rule B"], "guidance": ["Reduce fat intake"],
         "week_start_date": "2025-01-06", "days": 7},
    )
    assert "1. Rule A\n2. Rule B" in p
    assert "- Reduce fat intake" in p
    assert "2025-01-06" in p
    assert "7+ is acceptable" in coherence_prompt({}, {})


def test_cost_cents():
    # 1000 in @ $0.003 + 1000 out @ $0.015 = 1.8 cents
    assert gemini.cost_cents(1000, 1000) == 2
    assert gemini.cost_cents(0, 0) == 0


# ── edamam ────────────────────────────────────────────────────────────
def _edamam(handler) -> EdamamLookup:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EdamamLookup(app_id="id", app_key="key", client=client)


def test_edamam_parses_per_100g():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ingr"] = request.url.params["ingr"]
        return httpx.Response(200, json={
            "calories": 120,
            "totalNutrients": {
                "PROCNT": {"quantity": 20.5}, "FAT": {"quantity": 4.0},
                "CHOCDF": {"quantity": 0}, "FIBTG": {"quantity": 0},
            },
        })

    rec = asyncio.run(_edamam(handler).lookup("turkey breast"))
    assert seen["ingr"] == "100 g turkey breast"
    assert rec.calories == 120 and rec.protein == 20.5


def test_edamam_http_error_is_lookup_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(LookupUnavailable):
        asyncio.run(_edamam(handler).lookup("tofu"))


def test_edamam_without_keys_is_unavailable():
    with pytest.raises(LookupUnavailable):
        asyncio.run(EdamamLookup(app_id="", app_key="").lookup("tofu"))


# ── gateway inside a full generation ──────────────────────────────────
SUMMARIES = [{"id": r.id, "meal_types": r.meal_type} for r in catalogue()]


class PlanModel:
    """Answers scoring, assembly and review prompts; reviews follow `ratings`."""

    def __init__(self, ratings: list[int]) -> None:
        self.ratings = ratings
        self.calls: Counter[str] = Counter()

    async def __call__(self, prompt, **kw) -> tuple[str, Usage]:
        if prompt.startswith("You are an expert meal planning AI"):
            kind, text = "score", '{"recipe_scores": {}}'
        elif prompt.startswith("You are creating a balanced weekly meal plan"):
            kind, text = "assemble", json.dumps(week_payload(SUMMARIES, WEEK_START.isoformat()))
        else:
            rating = self.ratings[min(self.calls["review"], len(self.ratings) - 1)]
            kind, text = "review", json.dumps({"rating": rating, "feedback": f"rated {rating}"})
        self.calls[kind] += 1
        return text, Usage(calls=1, tokens=10, cost_cents=1)


def _generate(model: PlanModel):
    gw = _gateway(model)
    gen = PlanGenerator(
        store(), GeminiScorer(gw, "u"), GeminiAssigner(gw, "u"), GeminiReviewer(gw, "u"),
        policy=GenerationPolicy(),
    )
    return asyncio.run(gen.generate_plan(blueprint(), prefs()))


def test_improvement_pass_gets_a_fresh_review():
    model = PlanModel([5, 9])
    out = _generate(model)

    assert out.outcome == "accepted"
    assert out.retry_count == 0
    assert model.calls == {"score": 1, "assemble": 2, "review": 2}


def test_retried_round_reassembles_and_rescores_from_cache():
    model = PlanModel([5, 5, 9])
    out = _generate(model)

    assert out.outcome == "accepted"
    assert out.retry_count == 1
    # round two reuses the cached scores but asks for a new plan and review
    assert model.calls == {"score": 1, "assemble": 3, "review": 3}
    assert out.usage.calls == 7
    assert out.usage.cost_cents == 7


def test_cached_reply_is_not_counted_as_a_call():
    usage = Usage()
    usage.record(ServiceReply("cached", Usage()))
    assert usage.calls == 0

    usage.record(ServiceReply("fresh", Usage(calls=1, tokens=50, cost_cents=1)))
    usage.record()
    assert (usage.calls, usage.tokens, usage.cost_cents) == (2, 50, 1)


def test_assembly_prompt_lists_special_requests():
    p = assembly_prompt([], {"assignment_rules": [], "special_requests": ["Pasta on Friday"]})
    assert "<special_requests>\n- Pasta on Friday\n</special_requests>" in p
