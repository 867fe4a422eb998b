# services/gemini.py
import asyncio
import logging
import random

from google import genai
from google.genai import types, errors as gerrors

from config import settings
from core.contracts import Usage

_LOG = logging.getLogger(__name__)

# ───────────── Pricing (USD per 1k tokens) ─────────────
INPUT_PRICE_PER_1K = 0.003
OUTPUT_PRICE_PER_1K = 0.015

MAX_ATTEMPTS = 5


class GeminiUnavailable(RuntimeError):
    """Raised when the model cannot be reached or keeps rate-limiting us."""


# ───────────── Client (lazy) ─────────────
_client: genai.Client | None = None


def client() -> genai.Client:
    global _client
    if _client is None:
        if not settings.gemini_api_key:
            raise GeminiUnavailable("GEMINI_API_KEY not set in environment")
        _client = genai.Client(api_key=settings.gemini_api_key)
    return _client


def cost_cents(input_tokens: int, output_tokens: int) -> int:
    usd = input_tokens / 1000 * INPUT_PRICE_PER_1K + output_tokens / 1000 * OUTPUT_PRICE_PER_1K
    return round(usd * 100)


def usage_of(resp) -> Usage:
    meta = getattr(resp, "usage_metadata", None)
    inp = (getattr(meta, "prompt_token_count", None) or 0) if meta else 0
    out = (getattr(meta, "candidates_token_count", None) or 0) if meta else 0
    return Usage(calls=1, tokens=inp + out, cost_cents=cost_cents(inp, out))


# ───────────── Generation (async + retry) ─────────────
async def generate(
    prompt: str,
    temperature: float = 0.3,
    max_output_tokens: int = 4000,
    model: str | None = None,
) -> tuple[str, Usage]:
    """Run a chat completion; return the text and the usage it cost."""
    for attempt in range(MAX_ATTEMPTS):
        try:
            resp = await client().aio.models.generate_content(
                model=model or settings.chat_model,
                contents=[prompt],
                config=types.GenerateContentConfig(
                    temperature=temperature,
                    max_output_tokens=max_output_tokens,
                ),
            )
            return resp.text or "", usage_of(resp)
        except gerrors.ClientError as e:
            if getattr(e, "status", None) == "RESOURCE_EXHAUSTED":
                backoff = (2 ** attempt) + random.random()
                _LOG.warning("429 from Gemini, retrying in %.1fs", backoff)
                await asyncio.sleep(backoff)
                continue
            _LOG.error("Gemini generation failed: %s", e)
            raise GeminiUnavailable(str(e)) from e
        except gerrors.APIError as e:
            _LOG.error("Gemini generation failed: %s", e)
            raise GeminiUnavailable(str(e)) from e
    raise GeminiUnavailable("Generation retries exhausted")
