"""
Entry guard of the generation pipeline.

`ensure_complete()` either returns the daily targets a plan will be
validated against (supplied or derived from body metrics) or raises
`IncompleteBlueprint` listing every missing field.
"""

from __future__ import annotations

import logging

from core.errors import IncompleteBlueprint
from core.models.blueprint import Blueprint, NutritionalTargets
from core.nutrition_calc import NutritionalCalculator, can_compute

_LOG = logging.getLogger(__name__)

_calc = NutritionalCalculator()


def missing_fields(bp: Blueprint) -> list[str]:
    missing: list[str] = []
    if not bp.user_id:
        missing.append("user_id")
    if not bp.diet_type:
        missing.append("diet_type")
    if bp.household_size < 1:
        missing.append("household_size")
    if bp.targets is None and not can_compute(bp.body):
        missing.append("nutritional_targets")
    elif bp.targets is not None and bp.targets.daily_calories <= 0:
        missing.append("nutritional_targets.daily_calories")
    return missing


def ensure_complete(bp: Blueprint) -> NutritionalTargets:
    missing = missing_fields(bp)
    if missing:
        raise IncompleteBlueprint(missing)
    if bp.targets is not None:
        return bp.targets
    targets = _calc.targets(bp.body)
    _LOG.info("derived targets for user %s: %.0f kcal", bp.user_id, targets.daily_calories)
    return targets
