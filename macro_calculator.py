"""
Macro arithmetic on generated plans.

This module checks the generator's advisory macro numbers, it never trusts
them blindly:
- calculate_day_totals / average_daily_macros sum meal and snack values
- validate_weekly_macros compares the 7-day average to the full-recipe target
- normalize_serving_scale fixes plans written per person instead of per recipe

Nothing here rejects a plan. Deviations are flagged and logged so the
background recalculation (macro_recalculator.py) can correct the numbers.
"""

from typing import Dict, List, Sequence, Tuple
import sys

from observability import setup_structured_logger
from schemas import DayEntry, MacroTarget, MacroValidationReport, Meal
from validation_config import (
    DEFAULT_DEVIATION_POLICY,
    SERVING_SCALE_MATCH_PCT,
    SERVINGS_PER_RECIPE,
    MacroDeviationPolicy,
    deviation_pct,
)

logger = setup_structured_logger("blueprint.macros")

MACRO_KEYS = ("calories", "protein", "carbs", "fat")
# Axes checked against the deviation threshold
DEVIATION_AXES = ("protein", "carbs", "fat")


def calculate_meal_macros(meal: Meal) -> Dict[str, float]:
    return {key: float(getattr(meal, key) or 0.0) for key in MACRO_KEYS}


def calculate_day_totals(day: DayEntry) -> Dict[str, float]:
    """Calculate total macros for a day from every meal slot plus snacks.

    Args:
        day: One plan day

    Returns:
        Dict with calories, protein, carbs, fat (full-recipe values)
    """
    totals = {key: 0.0 for key in MACRO_KEYS}

    for meal in day.all_meals():
        for key, value in calculate_meal_macros(meal).items():
            totals[key] += value

    totals["calories"] = round(totals["calories"])
    totals["protein"] = round(totals["protein"], 1)
    totals["carbs"] = round(totals["carbs"], 1)
    totals["fat"] = round(totals["fat"], 1)

    return totals


def average_daily_macros(days: Sequence[DayEntry]) -> Dict[str, float]:
    """Average of calculate_day_totals over all days (zeros for an empty plan)."""
    if not days:
        return {key: 0.0 for key in MACRO_KEYS}

    sums = {key: 0.0 for key in MACRO_KEYS}
    for day in days:
        for key, value in calculate_day_totals(day).items():
            sums[key] += value
    return {key: round(value / len(days), 1) for key, value in sums.items()}


def validate_weekly_macros(
    days: Sequence[DayEntry],
    target: MacroTarget,
    servings: int = SERVINGS_PER_RECIPE,
    policy: MacroDeviationPolicy = DEFAULT_DEVIATION_POLICY,
) -> MacroValidationReport:
    """Compare the 7-day average with target × servings, per macro axis.

    An axis over policy.warning_pct is flagged and logged as critical. The
    report is marked rejected only when the policy asks for it.
    """
    average = average_daily_macros(days)
    full_target = {key: float(value) for key, value in target.scaled(servings).items()}

    deviations = {
        axis: round(deviation_pct(average[axis], full_target[axis]), 3)
        for axis in DEVIATION_AXES
    }
    flagged = [axis for axis in DEVIATION_AXES if deviations[axis] > policy.warning_pct]
    critical = bool(flagged)

    fields = {
        "average_daily": average,
        "target_full_recipe": full_target,
        "deviations": deviations,
        "flagged": flagged,
    }
    if critical:
        details = ", ".join(
            f"{axis} {average[axis]:.1f}g vs {full_target[axis]:.0f}g ({deviations[axis] * 100:.0f}%)"
            for axis in flagged
        )
        print(f"   ❌ CRITICAL: macro targets way off - {details}", file=sys.stderr)
        logger.critical("Weekly macros outside tolerance", extra={"extra_fields": fields})
    else:
        print(
            f"   ✅ Macro averages: P={average['protein']:.1f}g C={average['carbs']:.1f}g "
            f"F={average['fat']:.1f}g ({average['calories']:.0f} kcal)",
            file=sys.stderr,
        )
        logger.info("Weekly macros within tolerance", extra={"extra_fields": fields})

    return MacroValidationReport(
        average_daily=average,
        target_full_recipe=full_target,
        deviations=deviations,
        flagged=flagged,
        critical=critical,
        rejected=critical and policy.reject,
    )


def _scale_meal(meal: Meal, factor: float) -> Meal:
    return meal.model_copy(
        update={key: round(float(getattr(meal, key)) * factor, 1) for key in MACRO_KEYS}
    )


def _scale_day(day: DayEntry, factor: float) -> DayEntry:
    update = {slot: _scale_meal(meal, factor) for slot, meal in day.meal_items()}
    update["snacks"] = [_scale_meal(snack, factor) for snack in day.snacks]
    return day.model_copy(update=update)


def normalize_serving_scale(
    days: List[DayEntry],
    target: MacroTarget,
    servings: int = SERVINGS_PER_RECIPE,
    match_pct: float = SERVING_SCALE_MATCH_PCT,
) -> Tuple[List[DayEntry], bool]:
    """Detect per-person macros and scale them up to full-recipe values.

    The first day decides: its calories are compared with both the per-person
    and the full-recipe target. When they are too low for a full recipe but
    plausible for one person, every meal of every day is multiplied by
    `servings`.

    Returns:
        (days, scaled) - the original list when nothing changed
    """
    if not days:
        return days, False

    first_calories = calculate_day_totals(days[0])["calories"]
    per_person = float(target.calories)
    full_recipe = per_person * servings

    if first_calories <= 0 or full_recipe <= 0:
        return days, False

    too_low_for_full = first_calories < full_recipe * (1 - match_pct)
    plausible_per_person = first_calories >= per_person * (1 - match_pct)

    if not (too_low_for_full and plausible_per_person):
        return days, False

    print(
        f"   🔧 First day has {first_calories:.0f} kcal (per-person target {per_person:.0f}); "
        f"scaling all meals ×{servings}",
        file=sys.stderr,
    )
    logger.warning(
        "Plan macros were per person, scaled to full recipe",
        extra={
            "extra_fields": {
                "first_day_calories": first_calories,
                "per_person_target": per_person,
                "full_recipe_target": full_recipe,
                "factor": servings,
            }
        },
    )
    return [_scale_day(day, float(servings)) for day in days], True
