"""
Seed recipes into the `recipes` table.

Usage
-----

    # default hard-coded demo week (breakfast / lunch / dinner)
    python -m scripts.seed_recipes

    # custom list (RecipeRecord schema) in a JSON file
    python -m scripts.seed_recipes --file path/to/recipes.json
"""
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, List

from dotenv import load_dotenv
load_dotenv()

from core.models.recipe import RecipeRecord
from services.db import Recipe, create_tables, session_factory

# ────────────────────────────────────────────────────────────────────
_DEFAULT_RECIPES: List[dict[str, Any]] = [
    {
        "id": "masala-oats",
        "title": "Masala Oats with Veggies",
        "meal_type": ["breakfast"],
        "cuisine_type": "indian",
        "dietary_tags": ["vegetarian"],
        "prep_time_minutes": 10, "cook_time_minutes": 10,
        "rating_average": 4.5, "rating_count": 40, "servings": 2,
        "nutrition_info": {"calories": 760, "protein": 28, "fat": 18, "carbohydrates": 116, "fiber": 16},
    },
    {
        "id": "tandoori-quinoa",
        "title": "Grilled Tandoori Chicken & Quinoa Khichdi",
        "meal_type": ["lunch", "dinner"],
        "cuisine_type": "indian",
        "prep_time_minutes": 20, "cook_time_minutes": 25,
        "rating_average": 4.7, "rating_count": 85, "servings": 2,
        "ingredients": [
            {"name": "chicken breast", "amount": 300, "unit": "g"},
            {"name": "quinoa", "amount": 1, "unit": "cup"},
            {"name": "garam masala", "amount": 1, "unit": "tsp"},
        ],
    },
    {
        "id": "palak-paneer",
        "title": "Palak Paneer with Brown-Rice Phulka",
        "meal_type": ["dinner"],
        "cuisine_type": "indian",
        "dietary_tags": ["vegetarian"],
        "prep_time_minutes": 15, "cook_time_minutes": 25,
        "rating_average": 4.6, "rating_count": 60, "servings": 2,
        "nutrition_info": {"calories": 1120, "protein": 64, "fat": 44, "carbohydrates": 110, "fiber": 12},
    },
]


async def _seed(recipes: list[RecipeRecord]) -> None:
    await create_tables()
    sessions = await session_factory()
    async with sessions() as db:
        for r in recipes:
            await db.merge(Recipe(**r.model_dump(mode="json")))
        await db.commit()
    print(f"✓ upserted {len(recipes)} recipes")


def _load_json(path: Path) -> list[dict[str, Any]]:
    data = json.loads(path.read_text())
    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of recipe dictionaries")
    return data


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--file",
        type=Path,
        help="optional JSON file with recipes to seed (overrides defaults)",
    )
    args = parser.parse_args()

    raw = _load_json(args.file) if args.file else _DEFAULT_RECIPES
    asyncio.run(_seed([RecipeRecord.model_validate(r) for r in raw]))


if __name__ == "__main__":
    main()
