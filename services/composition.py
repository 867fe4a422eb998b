"""
services/composition.py
────────────────────────────────────────────────────────────────────────
Local nutrient-composition table (per 100 g) with fuzzy name matching.

Ingredient names in recipes rarely match database descriptions
("chicken breast, diced" vs "Chicken, broilers or fryers, breast, meat
only, cooked, roasted"), so matching uses TF-IDF over character n-grams
and cosine similarity; the best row above `min_similarity` wins.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.models.recipe import CompositionRecord
from services.db import NutrientComposition

_LOG = logging.getLogger(__name__)

COLUMNS = ["fdc_id", "description", "calories", "protein", "fat", "carbohydrates", "fiber"]

# FoodData Central export headers → ours
_FDC_RENAMES = {
    "Energy (KCAL)": "calories",
    "Protein (G)": "protein",
    "Total lipid (fat) (G)": "fat",
    "Carbohydrate, by difference (G)": "carbohydrates",
    "Fiber, total dietary (G)": "fiber",
}


class CompositionTable:
    def __init__(self, frame: pd.DataFrame, min_similarity: float = 0.3) -> None:
        df = frame.rename(columns=_FDC_RENAMES)
        missing = [c for c in COLUMNS[1:] if c not in df.columns]
        if missing:
            raise KeyError(f"Composition frame missing columns: {missing}")
        if "fdc_id" not in df.columns:
            df = df.assign(fdc_id=None)

        df = df[COLUMNS].copy()
        df[COLUMNS[2:]] = df[COLUMNS[2:]].apply(pd.to_numeric, errors="coerce").fillna(0.0)
        self._df = df.reset_index(drop=True)
        self._min = min_similarity

        self._vec = TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 4), lowercase=True)
        self._mat = (
            self._vec.fit_transform(self._df["description"].astype(str))
            if not self._df.empty else None
        )

    def __len__(self) -> int:
        return len(self._df)

    @property
    def frame(self) -> pd.DataFrame:
        return self._df

    # ────────────────────────── loaders ──────────────────────────── #
    @classmethod
    def from_csv(cls, path: str | Path, **kw) -> "CompositionTable":
        return cls(pd.read_csv(path), **kw)

    @classmethod
    async def from_db(cls, sessions: async_sessionmaker[AsyncSession], **kw) -> "CompositionTable":
        async with sessions() as db:
            rows = (await db.execute(select(NutrientComposition))).scalars().all()
        frame = pd.DataFrame([{c: getattr(r, c) for c in COLUMNS} for r in rows], columns=COLUMNS)
        return cls(frame, **kw)

    # ────────────────────────── matching ─────────────────────────── #
    def best_match(self, name: str) -> CompositionRecord | None:
        if self._mat is None or not name.strip():
            return None
        sims = cosine_similarity(self._vec.transform([name]), self._mat).ravel()
        idx = int(np.argmax(sims))
        score = float(sims[idx])
        if score < self._min:
            _LOG.debug("no composition match for %r (best %.2f)", name, score)
            return None
        row = self._df.iloc[idx]
        return CompositionRecord(
            description=str(row["description"]),
            calories=float(row["calories"]),
            protein=float(row["protein"]),
            fat=float(row["fat"]),
            carbohydrates=float(row["carbohydrates"]),
            fiber=float(row["fiber"]),
            fdc_id=int(row["fdc_id"]) if pd.notna(row["fdc_id"]) else None,
            similarity=min(max(score, 0.0), 1.0),
        )

    async def lookup(self, ingredient_name: str) -> CompositionRecord | None:
        return self.best_match(ingredient_name)
