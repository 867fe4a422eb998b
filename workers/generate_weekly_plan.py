"""
`python -m workers.generate_weekly_plan --blueprint=user.json [--week-start=2025-01-06]`
Run as Cloud Run Jobs or Cloud Tasks later.
"""
import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from api.v1.plans import get_generator_factory, get_lookup, get_store
from core.models.blueprint import Blueprint, GenerationPreferences


async def _run(blueprint: Blueprint, prefs: GenerationPreferences) -> int:
    store = await get_store()
    build = await get_generator_factory(store, await get_lookup())
    outcome = await build(blueprint.user_id).generate_plan(blueprint, prefs)
    print(outcome.model_dump_json(indent=2, exclude_none=True))
    return 1 if outcome.outcome == "failed" else 0


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--blueprint", type=Path, required=True)
    ap.add_argument("--week-start", type=date.fromisoformat, default=None)
    args = ap.parse_args()

    bp = Blueprint.model_validate(json.loads(args.blueprint.read_text()))
    prefs = GenerationPreferences(week_start_date=args.week_start) if args.week_start else GenerationPreferences()
    sys.exit(asyncio.run(_run(bp, prefs)))
