"""Centralized validation thresholds for profiles and generated plans.

Single source of truth for the tolerance values used across:
- macro_targets.py (calorie goal bounds, custom macro override check)
- macro_calculator.py (weekly macro deviation check, serving-scale detection)
- schemas.py (meals/snacks per day clamping)

Deviation thresholds are intentionally lenient: the generator's macro values
are advisory estimates and a noisy plan is better than no plan.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class MacroDeviationPolicy:
    """How the weekly macro check treats deviation from the target.

    Deviation is |actual - target| / target per macro axis, computed on the
    7-day average of full-recipe totals.

    `reject` stays False: plans over the warning threshold are flagged and
    logged as critical but still persisted. Tightening this is a product
    decision, not a validation bug fix.
    """

    warning_pct: float = 0.50
    reject: bool = False


DEFAULT_DEVIATION_POLICY = MacroDeviationPolicy()

# Calorie goal must fall in this band (kcal/day, per person)
MIN_CALORIE_GOAL = 1200
MAX_CALORIE_GOAL = 5000

# A custom macro override is honored only if its energy is within 20% of the goal
CUSTOM_MACRO_TOLERANCE_PCT = 0.20

# Serving-scale detection: first-day totals within 50% of a target "match" it
SERVING_SCALE_MATCH_PCT = 0.50

# Meal structure bounds
DEFAULT_MEALS_PER_DAY = 3
MIN_MEALS_PER_DAY = 1
MAX_MEALS_PER_DAY = 5
DEFAULT_SNACKS_PER_DAY = 2
MIN_SNACKS_PER_DAY = 0
MAX_SNACKS_PER_DAY = 3

# Recipes are always written for this many servings
SERVINGS_PER_RECIPE = 4

# Plans cover exactly one week
DAYS_PER_PLAN = 7


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def deviation_pct(actual: float, target: float) -> float:
    """Relative deviation of actual from target (0.25 == 25%).

    Returns 0.0 when the target is zero: nothing to compare against.
    """
    if target == 0:
        return 0.0
    return abs(actual - target) / target
