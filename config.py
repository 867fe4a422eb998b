"""
Centralised settings loader.

Every knob of the plan engine lives here so the generation policy, the AI
adapters and the HTTP layer read one source of truth (env vars or `.env`).
"""

from __future__ import annotations
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ------------------------------------------------------------------ #
#  Master settings model
# ------------------------------------------------------------------ #
class _Settings(BaseSettings):
    # ─── runtime / DB / API keys ────────────────────────────────────
    env_name: str = "local"
    database_url: str | None = None
    cloud_sql_instance: str | None = Field(None, validation_alias="CLOUD_SQL_CONNECTION_NAME")
    db_user: str | None = None
    db_pass: str | None = None
    db_name: str | None = None
    edamam_app_id: str = ""
    edamam_app_key: str = ""

    # ─── Gemini ─────────────────────────────────────────────────────
    gemini_api_key: str | None = None
    chat_model: str = "models/gemini-2.0-flash"

    # ─── generation policy ──────────────────────────────────────────
    max_retries: int = 3
    repairs_per_round: int = 1
    deviation_threshold: float = 15.0
    coherence_pass_rating: int = 7
    candidate_target_count: int = 30
    working_set_size: int = 50
    diversity_relax_fraction: float = 0.5
    tolerate_missing_nutrition: bool = False
    stage_timeout_s: float = 60.0
    lookup_timeout_s: float = 10.0

    # ─── AI gateway (cache + rate limit) ────────────────────────────
    ai_cache_ttl_s: float = 30 * 60
    ai_cache_capacity: int = 256
    ai_requests_per_hour: int = 100

    # allow other teammates’ env-vars without crashing
    model_config = SettingsConfigDict(
        extra="ignore", env_file=".env", env_file_encoding="utf-8"
    )


# ------------------------------------------------------------------ #
#  Cached singleton accessor
# ------------------------------------------------------------------ #
@lru_cache
def _cached() -> _Settings:  # pragma: no cover
    return _Settings()  # type: ignore[call-arg]


settings: _Settings = _cached()
