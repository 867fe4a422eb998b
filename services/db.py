"""
services/db.py
────────────────────────────────────────────────────────────────────────
* Async SQLAlchemy v2 setup
* Models for recipes, composition data, generation logs, failed plans
* Small DAO helpers used by the recipe store, routers and scripts
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, AsyncGenerator

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, func
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from config import settings

_LOG = logging.getLogger(__name__)

# ───────── connection helper ────────────────────────────────────────
_ENGINE: AsyncEngine | None = None


async def _create_engine() -> AsyncEngine:
    # 1) plain URL (postgresql+asyncpg://…, sqlite+aiosqlite://…)
    if settings.database_url:
        return create_async_engine(settings.database_url, pool_pre_ping=True)

    # 2) Cloud SQL connector (only if URL not supplied)
    if not settings.cloud_sql_instance:
        raise RuntimeError(
            "Set either DATABASE_URL or CLOUD_SQL_CONNECTION_NAME env var"
        )

    # lazy import here
    try:
        from google.cloud.sql.connector import Connector, IPTypes  # type: ignore
    except ImportError as exc:
        raise RuntimeError(
            "cloud-sql-python-connector missing. Run:\n"
            "pip install 'cloud-sql-python-connector[asyncpg]>=1.4.0'"
        ) from exc

    connector = Connector()

    async def _getconn():  # type: ignore[name-defined]
        return await connector.connect_async(
            settings.cloud_sql_instance,
            "asyncpg",
            user=settings.db_user,
            password=settings.db_pass,
            db=settings.db_name,
            ip_type=IPTypes.PRIVATE,
        )

    return create_async_engine(
        "postgresql+asyncpg://",
        async_creator=_getconn,
        pool_pre_ping=True,
    )


async def engine() -> AsyncEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = await _create_engine()
    return _ENGINE


# ───────── declarative base ──────────────────────────────────────────
Base = declarative_base(cls=AsyncAttrs)


class Recipe(Base):
    __tablename__ = "recipes"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="published")
    ingredients: Mapped[list] = mapped_column(JSON, default=list)       # [{name, amount, unit}]
    nutrition_info: Mapped[dict | None] = mapped_column(JSON)
    servings: Mapped[int] = mapped_column(Integer, default=1)
    prep_time_minutes: Mapped[int | None] = mapped_column(Integer)
    cook_time_minutes: Mapped[int | None] = mapped_column(Integer)
    difficulty_level: Mapped[str | None] = mapped_column(String)
    cuisine_type: Mapped[str | None] = mapped_column(String)
    meal_type: Mapped[list] = mapped_column(JSON, default=list)
    dietary_tags: Mapped[list] = mapped_column(JSON, default=list)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)
    rating_average: Mapped[float] = mapped_column(Float, default=0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class NutrientComposition(Base):
    """Per-100 g nutrient data (USDA FoodData Central style)."""
    __tablename__ = "nutrient_composition"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    fdc_id: Mapped[int | None] = mapped_column(Integer, index=True)
    description: Mapped[str] = mapped_column(Text)
    calories: Mapped[float] = mapped_column(Float, default=0)
    protein: Mapped[float] = mapped_column(Float, default=0)
    fat: Mapped[float] = mapped_column(Float, default=0)
    carbohydrates: Mapped[float] = mapped_column(Float, default=0)
    fiber: Mapped[float] = mapped_column(Float, default=0)


class PlanGenerationLog(Base):
    __tablename__ = "plan_generation_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    generation_id: Mapped[str] = mapped_column(String, index=True)
    event: Mapped[str] = mapped_column(String)           # started / completed / fallback / failed
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class FailedPlan(Base):
    __tablename__ = "failed_plans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    generation_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String)
    stage: Mapped[str | None] = mapped_column(String)
    error_code: Mapped[str] = mapped_column(String)
    error_message: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# ───────── session helpers ───────────────────────────────────────────
async def session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(await engine(), expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async_session = await session_factory()
    async with async_session() as session:
        yield session


async def create_tables(eng: AsyncEngine | None = None) -> None:
    eng = eng or await engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ───────── event logging ─────────────────────────────────────────────
def generation_logger(sessions: async_sessionmaker[AsyncSession]):
    """Event sink for `PlanGenerator` writing to the two log tables."""

    async def _sink(generation_id: str, event: str, details: dict[str, Any]) -> None:
        async with sessions() as db:
            await log_generation_event(db, generation_id, event, details)

    return _sink


async def log_generation_event(
    db: AsyncSession,
    generation_id: str,
    event: str,
    details: dict[str, Any],
) -> None:
    """
    Persist one generation event; failures also land in `failed_plans`.
    """
    db.add(PlanGenerationLog(generation_id=generation_id, event=event, details=details))
    err = details.get("error") or {}
    if event == "failed" and err:
        db.add(
            FailedPlan(
                generation_id=generation_id,
                user_id=str(details.get("user_id", "")),
                stage=err.get("stage"),
                error_code=err.get("code", "UNKNOWN"),
                error_message=err.get("message", ""),
            )
        )
    await db.commit()
    _LOG.debug("logged %s for generation %s", event, generation_id)
