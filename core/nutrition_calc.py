"""
core/nutrition_calc.py
────────────────────────────────────────────────────────────────────────
Derives daily nutritional targets for a blueprint that ships body
metrics but no explicit targets:

1. BMR  (Mifflin–St Jeor)
2. TDEE (PAL multiplier + workouts)
3. IBW  (Devine)
4. Optimal calories + macros for the goal branches
5. Fibre
"""

from __future__ import annotations

import logging

from core.models.blueprint import BodyMetrics, NutritionalTargets

Logger = logging.getLogger(__name__)


def _flag(conds: list[str] | None, keys: tuple[str, ...]) -> bool:
    if not conds:
        return False
    clow = [c.lower() for c in conds]
    return any(any(k in c for k in keys) for c in clow)


def has_diabetes(b: BodyMetrics) -> bool:
    return _flag(b.health_conditions, ("diabetes", "pre-diabetes"))


def can_compute(b: BodyMetrics | None) -> bool:
    return bool(b and b.age and b.weight_kg and b.height_cm)


# ──────────────────────────────────────────────────────────────────────
#  Calculator
# ──────────────────────────────────────────────────────────────────────
class NutritionalCalculator:
    """Source-of-truth for kcal + macros when the caller supplies none."""

    _PAL = [1.2, 1.375, 1.55, 1.725, 1.9]  # index = daily_activity-1

    # --------------- public entrypoint --------------------------------
    def targets(self, b: BodyMetrics) -> NutritionalTargets:
        if not can_compute(b):
            raise ValueError("age, weight_kg and height_cm are required")
        kcal = self._optimal_calories(b)
        ibw = self._ibw(b)
        macros = self._macro_targets(b, kcal, ibw)
        Logger.debug("derived targets %s (ibw=%.1f)", macros, ibw)
        return NutritionalTargets(
            daily_calories=round(kcal, 0),
            daily_protein=macros["protein"],
            daily_fat=macros["fat"],
            daily_carbohydrates=macros["carbohydrates"],
            daily_fiber=self._fiber(b, kcal),
            calculation_method="mifflin_st_jeor",
        )

    # --------------- BMR / TDEE / IBW -------------------------------
    def bmr(self, b: BodyMetrics) -> float:
        base = 10 * b.weight_kg + 6.25 * b.height_cm - 5 * b.age
        return base + (5 if b.gender.lower() == "male" else -161)

    def tdee(self, b: BodyMetrics) -> float:
        idx = min(max(b.daily_activity, 1), 5) - 1
        pal = self._PAL[idx] + 0.02 * b.workouts_per_week
        return self.bmr(b) * pal

    def _ibw(self, b: BodyMetrics) -> float:
        """Devine formula (kg)."""
        height_in = b.height_cm / 2.54
        base = 50 if b.gender.lower() == "male" else 45.5
        return base + 2.3 * (height_in - 60)

    # --------------- Calories ---------------------------------------
    def _optimal_calories(self, b: BodyMetrics) -> float:
        tdee_val = self.tdee(b)
        if b.goal == "lose":
            return tdee_val - 500
        if b.goal == "gain":
            return tdee_val + 300
        return tdee_val  # maintain

    # --------------- Macros -----------------------------------------
    def _macro_targets(self, b: BodyMetrics, kcal: float, ibw: float) -> dict[str, float]:
        """
        Default 45/30/25 split; muscle gain pins protein to 2.4 g/kg IBW,
        diabetes pins carbohydrates to 40 % and lets fat absorb the rest.
        """
        carbs_pc, prot_pc, fat_pc = 0.45, 0.30, 0.25

        if b.wants_muscle:
            prot_g = 2.4 * ibw
            fat_g = fat_pc * kcal / 9
            carbs_g = (kcal - (prot_g * 4 + fat_g * 9)) / 4
        else:
            prot_g = prot_pc * kcal / 4
            fat_g = fat_pc * kcal / 9
            carbs_g = carbs_pc * kcal / 4

        if has_diabetes(b):
            carbs_g = 0.40 * kcal / 4
            fat_g = (kcal - (prot_g * 4 + carbs_g * 4)) / 9

        return {
            "protein": round(max(prot_g, 0), 1),
            "carbohydrates": round(max(carbs_g, 0), 1),
            "fat": round(max(fat_g, 0), 1),
        }

    # --------------- Fibre ------------------------------------------
    def _fiber(self, b: BodyMetrics, kcal: float) -> float:
        if has_diabetes(b):
            return round(14 * (kcal / 1000), 1)
        return 38.0 if b.gender.lower() == "male" else 28.0
