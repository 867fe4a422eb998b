"""
SqlRecipeStore against an in-memory aiosqlite database, plus the
generation-event logger and the composition table.
"""
from __future__ import annotations

import asyncio
from pathlib import Path

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.contracts import RecipeQuery
from services.composition import CompositionTable
from services.db import (
    FailedPlan,
    NutrientComposition,
    PlanGenerationLog,
    Recipe,
    create_tables,
    generation_logger,
)
from services.recipe_store import InMemoryRecipeStore, SqlRecipeStore

from fakes import catalogue, recipe

SAMPLE_CSV = Path(__file__).resolve().parent.parent / "data" / "composition_sample.csv"


async def _sessions():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    return async_sessionmaker(eng, expire_on_commit=False)


async def _seeded(recipes):
    sessions = await _sessions()
    async with sessions() as db:
        db.add_all(Recipe(**r.model_dump(mode="json")) for r in recipes)
        await db.commit()
    return sessions


RECIPES = [
    recipe("quick", prep_time_minutes=10, rating_average=4.8),
    recipe("slow", prep_time_minutes=60, rating_average=4.9),
    recipe("no-time", prep_time_minutes=None, rating_average=5.0),
    recipe("paid", is_premium=True, rating_average=4.7),
    recipe("meh", rating_average=3.0),
]


# ── recipe store ──────────────────────────────────────────────────────
def test_sql_search_applies_query():
    async def _go():
        s = SqlRecipeStore(await _seeded(RECIPES))
        return await s.search(RecipeQuery(max_prep_time=30, min_rating=4.0))

    assert [r.id for r in asyncio.run(_go())] == ["quick"]


def test_sql_search_orders_and_limits():
    async def _go():
        s = SqlRecipeStore(await _seeded(RECIPES))
        return await s.search(RecipeQuery(include_premium=True, exclude_ids=("slow",), limit=2))

    assert [r.id for r in asyncio.run(_go())] == ["no-time", "quick"]


def test_sql_fetch_round_trips_nested_fields():
    async def _go():
        s = SqlRecipeStore(await _seeded(catalogue()))
        return await s.fetch(["lunch-1", "missing"])

    got = asyncio.run(_go())
    assert list(got) == ["lunch-1"]
    assert got["lunch-1"].nutrition_info.calories == 700
    assert got["lunch-1"].meal_type == ["lunch"]


def test_in_memory_store_matches_sql_semantics():
    hits = asyncio.run(InMemoryRecipeStore(RECIPES).search(RecipeQuery(max_prep_time=30, min_rating=4.0)))
    assert [r.id for r in hits] == ["quick"]


# ── event log ─────────────────────────────────────────────────────────
def test_failed_event_also_lands_in_failed_plans():
    async def _go():
        sessions = await _sessions()
        sink = generation_logger(sessions)
        await sink("g1", "started", {"user_id": "u1"})
        await sink("g1", "failed", {
            "user_id": "u1",
            "error": {"code": "NO_ELIGIBLE_RECIPES", "message": "none", "stage": "selecting_candidates"},
        })
        async with sessions() as db:
            logs = (await db.execute(select(PlanGenerationLog))).scalars().all()
            failed = (await db.execute(select(FailedPlan))).scalars().all()
        return logs, failed

    logs, failed = asyncio.run(_go())
    assert [e.event for e in logs] == ["started", "failed"]
    assert len(failed) == 1
    assert failed[0].error_code == "NO_ELIGIBLE_RECIPES"
    assert failed[0].stage == "selecting_candidates"


# ── composition table ─────────────────────────────────────────────────
TABLE = CompositionTable.from_csv(SAMPLE_CSV, min_similarity=0.2)


def test_fuzzy_match_finds_usda_row():
    rec = asyncio.run(TABLE.lookup("chicken breast"))
    assert rec is not None
    assert rec.description.startswith("Chicken")
    assert rec.calories == 165
    assert 0 < rec.similarity <= 1


def test_nonsense_name_has_no_match():
    assert asyncio.run(TABLE.lookup("zzzz xxxx")) is None


def test_fdc_headers_are_normalised():
    frame = pd.DataFrame([{
        "description": "Bananas, raw", "Energy (KCAL)": 89, "Protein (G)": 1.1,
        "Total lipid (fat) (G)": 0.3, "Carbohydrate, by difference (G)": 22.8,
        "Fiber, total dietary (G)": 2.6,
    }])
    rec = CompositionTable(frame).best_match("banana")
    assert rec.carbohydrates == 22.8
    assert rec.fdc_id is None


def test_table_loads_from_db():
    async def _go():
        sessions = await _sessions()
        async with sessions() as db:
            db.add(NutrientComposition(description="Spinach, raw", calories=23, protein=2.9,
                                       fat=0.4, carbohydrates=3.6, fiber=2.2))
            await db.commit()
        return await CompositionTable.from_db(sessions)

    table = asyncio.run(_go())
    assert len(table) == 1
    assert table.best_match("fresh spinach").fiber == 2.2
