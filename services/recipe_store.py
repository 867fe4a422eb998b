"""
Recipe-store adapters.

`SqlRecipeStore` pushes the coarse constraints of a `RecipeQuery` (premium,
time caps, rating floor, excluded ids) into SQL; diet and allergen checks
stay in `core.candidate_selector`.  `InMemoryRecipeStore` applies the same
query to a list, for scripts and tests.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.contracts import RecipeQuery
from core.errors import RecipeStoreError
from core.models.recipe import RecipeRecord
from services.db import Recipe

_LOG = logging.getLogger(__name__)


def to_record(row: Recipe) -> RecipeRecord:
    return RecipeRecord(
        id=row.id,
        title=row.title,
        ingredients=row.ingredients or [],
        nutrition_info=row.nutrition_info,
        servings=row.servings or 1,
        prep_time_minutes=row.prep_time_minutes,
        cook_time_minutes=row.cook_time_minutes,
        difficulty_level=row.difficulty_level,
        cuisine_type=row.cuisine_type,
        meal_type=row.meal_type or [],
        dietary_tags=row.dietary_tags or [],
        is_premium=bool(row.is_premium),
        rating_average=row.rating_average or 0,
        rating_count=row.rating_count or 0,
    )


def matches(r: RecipeRecord, q: RecipeQuery) -> bool:
    if r.is_premium and not q.include_premium:
        return False
    if q.max_prep_time is not None and (r.prep_time_minutes is None or r.prep_time_minutes > q.max_prep_time):
        return False
    if q.max_cook_time is not None and (r.cook_time_minutes is None or r.cook_time_minutes > q.max_cook_time):
        return False
    if q.min_rating is not None and r.rating_average < q.min_rating:
        return False
    return r.id not in q.exclude_ids


def _ranked(records: Iterable[RecipeRecord]) -> list[RecipeRecord]:
    return sorted(records, key=lambda r: (r.rating_average, r.rating_count), reverse=True)


class InMemoryRecipeStore:
    def __init__(self, recipes: Iterable[RecipeRecord]) -> None:
        self._by_id = {r.id: r for r in recipes}

    async def fetch(self, ids: Iterable[str]) -> dict[str, RecipeRecord]:
        return {i: self._by_id[i] for i in ids if i in self._by_id}

    async def search(self, query: RecipeQuery) -> list[RecipeRecord]:
        hits = _ranked(r for r in self._by_id.values() if matches(r, query))
        return hits[: query.limit] if query.limit else hits


class SqlRecipeStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def fetch(self, ids: Iterable[str]) -> dict[str, RecipeRecord]:
        wanted = list(ids)
        if not wanted:
            return {}
        try:
            async with self._sessions() as db:
                rows = (await db.execute(select(Recipe).where(Recipe.id.in_(wanted)))).scalars().all()
        except Exception as e:
            raise RecipeStoreError(f"recipe fetch failed: {e}") from e
        return {row.id: to_record(row) for row in rows}

    async def search(self, query: RecipeQuery) -> list[RecipeRecord]:
        stmt = select(Recipe).where(Recipe.status == "published")
        if not query.include_premium:
            stmt = stmt.where(Recipe.is_premium.is_(False))
        if query.max_prep_time is not None:
            stmt = stmt.where(Recipe.prep_time_minutes <= query.max_prep_time)
        if query.max_cook_time is not None:
            stmt = stmt.where(Recipe.cook_time_minutes <= query.max_cook_time)
        if query.min_rating is not None:
            stmt = stmt.where(Recipe.rating_average >= query.min_rating)
        if query.exclude_ids:
            stmt = stmt.where(Recipe.id.not_in(query.exclude_ids))
        stmt = stmt.order_by(Recipe.rating_average.desc(), Recipe.rating_count.desc())
        if query.limit:
            stmt = stmt.limit(query.limit)

        try:
            async with self._sessions() as db:
                rows = (await db.execute(stmt)).scalars().all()
        except Exception as e:
            raise RecipeStoreError(f"recipe search failed: {e}") from e
        _LOG.debug("recipe search returned %d rows", len(rows))
        return [to_record(r) for r in rows]
