"""
services/plan_agents.py
────────────────────────────────────────────────────────────────────────
Gemini-backed implementations of the three AI contracts the engine uses:

* `GeminiScorer`    – per-recipe personalization scores  (RecipeScorer)
* `GeminiAssigner`  – recipe → (day, meal slot) assignment (SlotAssigner)
* `GeminiReviewer`  – taste/variety coherence review      (CoherenceReviewer)

All three go through one `AIGateway`, which owns the response cache and the
per-user rate limit.  Only scoring replies are cached: a retried round or an
improvement pass must get a fresh plan and a fresh review.  Replies are
returned raw; `core.payloads` parses them.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

from config import settings
from core.contracts import ServiceReply, Usage
from core.errors import AssemblyStructuralError, ReviewUnavailable, ScorerUnavailable
from services import gemini
from services.response_cache import RateLimiter, ResponseCache

_LOG = logging.getLogger(__name__)

Generate = Callable[..., Awaitable[tuple[str, Usage]]]


class RateLimited(gemini.GeminiUnavailable):
    pass


class AIGateway:
    def __init__(
        self,
        cache: ResponseCache | None = None,
        limiter: RateLimiter | None = None,
        generate: Generate = gemini.generate,
        model: str | None = None,
    ) -> None:
        self._cache = cache or ResponseCache(settings.ai_cache_ttl_s, settings.ai_cache_capacity)
        self._limiter = limiter or RateLimiter(settings.ai_requests_per_hour)
        self._generate = generate
        self._model = model or settings.chat_model

    async def complete(
        self,
        prompt: str,
        *,
        user_key: str,
        temperature: float = 0.3,
        max_output_tokens: int = 1000,
        cache: bool = True,
    ) -> tuple[str, Usage]:
        key = ResponseCache.key(prompt, self._model, temperature)
        cached = self._cache.get(key) if cache else None
        if cached is not None:
            _LOG.debug("AI cache hit for %s", user_key)
            return cached, Usage()

        if not self._limiter.allow(user_key):
            raise RateLimited(f"Rate limit exceeded for {user_key}")

        text, usage = await self._generate(
            prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            model=self._model,
        )
        if cache:
            self._cache.set(key, text)
        return text, usage


def _dump(obj: Any) -> str:
    return json.dumps(obj, indent=2, default=str)


# ───────────── Prompts ─────────────
def scoring_prompt(recipes: list[dict[str, Any]], user: dict[str, Any]) -> str:
    return f"""You are an expert meal planning AI that scores recipes for personalization.

<user_profile>
{_dump(user)}
</user_profile>

<recipes_to_score>
{_dump(recipes)}
</recipes_to_score>

<scoring_instructions>
Score each recipe from 0-100 based on how well it matches this specific user's preferences:

1. **Dietary Alignment** (25 points): How well does it match their diet type, avoid allergens, and align with health goals?
2. **Cultural & Flavor Preferences** (25 points): Does it match their cultural preferences and flavor profile?
3. **Lifestyle Fit** (25 points): Does the prep time, difficulty, and serving size work for their lifestyle?
4. **Personal History** (25 points): Based on their recent ratings and swaps, would they likely enjoy this?

For each recipe, provide:
- **score**: Number 0-100
- **match_reasons**: Array of strings explaining why it's a good match
- **penalty_reasons**: Array of strings explaining any concerns
</scoring_instructions>

Return ONLY a valid JSON object with this structure:
{{
  "recipe_scores": {{
    "recipe_id_1": {{
      "score": 85,
      "match_reasons": ["Perfect for keto diet", "Quick prep time"],
      "penalty_reasons": ["Might be too spicy"]
    }}
  }}
}}"""


def assembly_prompt(candidates: list[dict[str, Any]], rules: dict[str, Any]) -> str:
    numbered = "\n".join(f"{i}. {r}" for i, r in enumerate(rules.get("assignment_rules", []), 1))
    guidance = rules.get("guidance") or []
    extra = (
        "\n<improvement_guidance>\n" + "\n".join(f"- {g}" for g in guidance) + "\n</improvement_guidance>\n"
        if guidance else ""
    )
    requests = rules.get("special_requests") or []
    if requests:
        extra += "\n<special_requests>\n" + "\n".join(f"- {r}" for r in requests) + "\n</special_requests>\n"
    return f"""You are creating a balanced weekly meal plan. Assign recipes to specific meal slots to create variety and balance.

<available_recipes>
{_dump(candidates)}
</available_recipes>

<assignment_rules>
{numbered}
</assignment_rules>
{extra}
The week starts on {rules.get("week_start_date")} and has {rules.get("days", 7)} days.

Return ONLY a JSON object with this structure:
{{
  "week_theme": "descriptive theme name",
  "days": [
    {{
      "day": "monday",
      "date": "{rules.get("week_start_date")}",
      "meals": [
        {{"meal_type": "breakfast", "recipe_id": "id-here"}},
        {{"meal_type": "lunch", "recipe_id": "id-here"}},
        {{"meal_type": "dinner", "recipe_id": "id-here"}}
      ]
    }}
  ]
}}"""


def coherence_prompt(plan: dict[str, Any], ctx: dict[str, Any]) -> str:
    return f"""Review this meal plan for taste, texture, and variety coherence.

<meal_plan>
{_dump(plan)}
</meal_plan>

<user_context>
Diet: {ctx.get("diet")}
Cooking skill: {ctx.get("cooking_skill")}
Cultural preferences: {ctx.get("cultural_preferences")}
</user_context>

<review_criteria>
1. **Variety (30%)**: Good mix of cuisines, proteins, cooking methods
2. **Balance (25%)**: Appropriate mix of light/heavy, simple/complex meals
3. **Flow (20%)**: Logical progression throughout the week
4. **User Fit (25%)**: Matches user's preferences and skill level
</review_criteria>

Provide:
- **rating**: Score 1-10 (7+ is acceptable)
- **feedback**: Brief explanation of strengths and any concerns

Return ONLY JSON:
{{
  "rating": 8,
  "feedback": "Great variety with good balance..."
}}"""


# ───────────── Agents ─────────────
class _Agent:
    def __init__(self, gateway: AIGateway, user_id: str = "anonymous") -> None:
        self._gw = gateway
        self._user = user_id


class GeminiScorer(_Agent):
    async def score(self, recipe_summaries, user_summary) -> ServiceReply:
        try:
            text, usage = await self._gw.complete(
                scoring_prompt(recipe_summaries, user_summary),
                user_key=self._user, temperature=0.3, max_output_tokens=4000,
            )
        except gemini.GeminiUnavailable as e:
            raise ScorerUnavailable(str(e), stage="selecting_candidates") from e
        return ServiceReply(text, usage)


class GeminiAssigner(_Agent):
    async def assemble(self, candidate_summaries, rules) -> ServiceReply:
        try:
            text, usage = await self._gw.complete(
                assembly_prompt(candidate_summaries, rules),
                user_key=self._user, temperature=0.3, max_output_tokens=4000,
                cache=False,
            )
        except gemini.GeminiUnavailable as e:
            raise AssemblyStructuralError(f"Meal assembly failed: {e}", stage="assembling") from e
        return ServiceReply(text, usage)


class GeminiReviewer(_Agent):
    async def review(self, plan_summary, user_context) -> ServiceReply:
        try:
            text, usage = await self._gw.complete(
                coherence_prompt(plan_summary, user_context),
                user_key=self._user, temperature=0.3, max_output_tokens=1000,
                cache=False,
            )
        except gemini.GeminiUnavailable as e:
            raise ReviewUnavailable(str(e), stage="reviewing_coherence") from e
        return ServiceReply(text, usage)
