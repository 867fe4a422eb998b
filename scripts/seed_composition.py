"""
scripts/seed_composition.py
────────────────────────────────────────────────────────────────────────
Load per-100 g composition rows into `nutrient_composition`.

    python -m scripts.seed_composition                       # bundled sample
    python -m scripts.seed_composition --csv food.csv        # FDC export
    python -m scripts.seed_composition --csv food.csv --replace
"""
from __future__ import annotations

import asyncio
from argparse import ArgumentParser
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

import pandas as pd
from sqlalchemy import delete

from services.composition import COLUMNS, CompositionTable
from services.db import NutrientComposition, create_tables, session_factory

SAMPLE_CSV = Path(__file__).resolve().parent.parent / "data" / "composition_sample.csv"
BATCH = 100


def load_rows(path: Path) -> list[dict]:
    # reuse the table's column normalisation (FDC headers, numeric coercion)
    frame = CompositionTable.from_csv(path).frame
    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame[COLUMNS].to_dict(orient="records")


async def _seed(rows: list[dict], replace: bool) -> None:
    await create_tables()
    sessions = await session_factory()
    async with sessions() as db:
        if replace:
            await db.execute(delete(NutrientComposition))
        for i in range(0, len(rows), BATCH):
            db.add_all(NutrientComposition(**r) for r in rows[i:i + BATCH])
            await db.flush()
        await db.commit()
    print(f"✓ inserted {len(rows)} composition rows")


def main() -> None:
    ap = ArgumentParser()
    ap.add_argument("--csv", type=Path, default=SAMPLE_CSV, help="per-100 g CSV")
    ap.add_argument("--replace", action="store_true", help="wipe the table first")
    args = ap.parse_args()

    asyncio.run(_seed(load_rows(args.csv), args.replace))


if __name__ == "__main__":
    main()
