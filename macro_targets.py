"""Deterministic calorie and macro target resolution.

Pure functions, no I/O:
- calculate_bmr: Mifflin-St Jeor basal metabolic rate
- resolve_calorie_goal: explicit goal or BMR x activity multiplier, bounded
- resolve_preset: dietary preference name -> DietPreset
- resolve_macro_targets: (profile, calorie goal) -> MacroTarget
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from pipeline_errors import PreconditionFailedError
from schemas import MacroTarget, NutritionProfile
from validation_config import (
    CUSTOM_MACRO_TOLERANCE_PCT,
    MAX_CALORIE_GOAL,
    MIN_CALORIE_GOAL,
    clamp,
)

PROFILE_INCOMPLETE_MESSAGE = "Set your weight, height, and age, or set a custom calorie goal"

ACTIVITY_MULTIPLIERS: Dict[str, float] = {
    "sedentary": 1.2,
    "lightly_active": 1.375,
    "light": 1.375,
    "moderate": 1.55,
    "moderately_active": 1.55,
    "active": 1.725,
    "very_active": 1.9,
}
DEFAULT_ACTIVITY_MULTIPLIER = 1.55

DEFAULT_WEIGHT_KG = 75.0
WEIGHT_TREND_DEAD_BAND_KG = 0.1

# Protein band (g per kg of body weight)
PROTEIN_MIN_PER_KG = {"lose": 1.5, "gain": 1.4, "maintain": 1.3}
PROTEIN_MIN_GRAMS = 80.0
PROTEIN_MAX_GRAMS = 220.0
DEFAULT_PROTEIN_MAX_PER_KG = 2.0

# Fat floor: max(20% of calories, 0.5 g/kg)
FAT_FLOOR_CALORIE_SHARE = 0.20
FAT_FLOOR_GRAMS_PER_KG = 0.5

DEFAULT_RATIO_BOUNDS = {
    "protein": (0.15, 0.45),
    "carbs": (0.0, 0.65),
    "fat": (0.20, 0.80),
}


@dataclass(frozen=True)
class DietPreset:
    """Macro ratio template for a dietary preference."""

    key: str
    title: str
    protein: float
    carbs: float
    fat: float
    strict_low_carb: bool = False
    protein_max_per_kg: float = DEFAULT_PROTEIN_MAX_PER_KG
    bounds: Tuple[Tuple[str, Tuple[float, float]], ...] = ()

    def ratio_bounds(self) -> Dict[str, Tuple[float, float]]:
        merged = dict(DEFAULT_RATIO_BOUNDS)
        merged.update(dict(self.bounds))
        return merged


DIET_PRESETS: Dict[str, DietPreset] = {
    preset.key: preset
    for preset in (
        DietPreset("balanced", "Balanced", 0.25, 0.50, 0.25),
        DietPreset("high_protein", "High Protein", 0.35, 0.40, 0.25, protein_max_per_kg=2.2),
        DietPreset("moderate_low_carb", "Moderate Low Carb", 0.30, 0.25, 0.45),
        DietPreset("ketogenic", "Ketogenic", 0.20, 0.05, 0.75, strict_low_carb=True),
        DietPreset("very_low_carb", "Very Low Carb", 0.35, 0.05, 0.60, strict_low_carb=True),
        DietPreset(
            "carnivore",
            "Carnivore",
            0.45,
            0.01,
            0.54,
            strict_low_carb=True,
            protein_max_per_kg=2.4,
            bounds=(("protein", (0.15, 0.50)),),
        ),
        DietPreset("mediterranean", "Mediterranean", 0.20, 0.50, 0.30),
        DietPreset("plant_based", "Plant Based", 0.20, 0.55, 0.25),
        DietPreset("vegetarian", "Vegetarian", 0.20, 0.55, 0.25),
        DietPreset("vegan", "Vegan", 0.20, 0.58, 0.22),
        DietPreset("paleo", "Paleo", 0.30, 0.35, 0.35),
        DietPreset("zone_diet", "Zone Diet", 0.30, 0.40, 0.30),
        DietPreset("low_fat", "Low Fat", 0.20, 0.65, 0.15, bounds=(("fat", (0.10, 0.30)),)),
    )
}

PRESET_ALIASES: Dict[str, str] = {
    "keto": "ketogenic",
    "keto_low_carb": "ketogenic",
    "low_carb": "moderate_low_carb",
    "zone": "zone_diet",
    "plant-based": "plant_based",
    "high-protein": "high_protein",
    "low-fat": "low_fat",
}


def _preset_key(name: str) -> str:
    return "_".join(name.strip().lower().replace("-", " ").split())


def resolve_preset(name: Optional[str]) -> DietPreset:
    """Resolve a preset key, alias or display title.

    Raises:
        PreconditionFailedError: For an unknown preference
    """
    raw = (name or "balanced").strip().lower()
    if raw in PRESET_ALIASES:
        return DIET_PRESETS[PRESET_ALIASES[raw]]

    key = _preset_key(raw)
    key = PRESET_ALIASES.get(key, key)
    if key in DIET_PRESETS:
        return DIET_PRESETS[key]

    for preset in DIET_PRESETS.values():
        if preset.title.lower() == raw:
            return preset

    raise PreconditionFailedError(f"Unknown dietary preference: {name}")


def activity_multiplier(level: Optional[str]) -> float:
    key = _preset_key(level or "")
    return ACTIVITY_MULTIPLIERS.get(key, DEFAULT_ACTIVITY_MULTIPLIER)


def calculate_bmr(profile: NutritionProfile) -> float:
    """Mifflin-St Jeor BMR; the sex constant is +5 (male) or -161 (otherwise).

    Raises:
        PreconditionFailedError: If weight, height or age is missing
    """
    if not (profile.weight_kg and profile.height_cm and profile.age):
        raise PreconditionFailedError(PROFILE_INCOMPLETE_MESSAGE)
    sex_constant = 5 if (profile.sex or "").strip().lower() == "male" else -161
    return 10 * profile.weight_kg + 6.25 * profile.height_cm - 5 * profile.age + sex_constant


def resolve_calorie_goal(profile: NutritionProfile) -> int:
    """Explicit calorie goal, else BMR x activity multiplier.

    Raises:
        PreconditionFailedError: If no goal can be derived or it falls
            outside [MIN_CALORIE_GOAL, MAX_CALORIE_GOAL]
    """
    if profile.calorie_goal:
        goal = round(profile.calorie_goal)
    else:
        goal = round(calculate_bmr(profile) * activity_multiplier(profile.activity_level))

    if goal < MIN_CALORIE_GOAL or goal > MAX_CALORIE_GOAL:
        raise PreconditionFailedError(
            f"{PROFILE_INCOMPLETE_MESSAGE} (calorie goal {goal} outside "
            f"{MIN_CALORIE_GOAL}-{MAX_CALORIE_GOAL})"
        )
    return goal


def weight_trend(profile: NutritionProfile) -> str:
    """'lose', 'gain' or 'maintain' from goal vs current weight."""
    if not profile.weight_kg or not profile.goal_weight_kg:
        return "maintain"
    if profile.goal_weight_kg < profile.weight_kg - WEIGHT_TREND_DEAD_BAND_KG:
        return "lose"
    if profile.goal_weight_kg > profile.weight_kg + WEIGHT_TREND_DEAD_BAND_KG:
        return "gain"
    return "maintain"


def adjusted_ratios(preset: DietPreset, trend: str) -> Dict[str, float]:
    """Preset ratios shifted for the weight trend, clamped and renormalized."""
    ratios = {"protein": preset.protein, "carbs": preset.carbs, "fat": preset.fat}

    if not preset.strict_low_carb:
        if trend == "lose":
            ratios["protein"] += 0.05
            ratios["carbs"] -= 0.05
        elif trend == "gain":
            ratios["carbs"] += 0.05
            ratios["fat"] += 0.02
            ratios["protein"] -= 0.02

    for macro, (lower, upper) in preset.ratio_bounds().items():
        ratios[macro] = clamp(ratios[macro], lower, upper)

    total = sum(ratios.values())
    if total > 0:
        ratios = {macro: value / total for macro, value in ratios.items()}
    return ratios


def _custom_targets(profile: NutritionProfile, calories: int, preset: DietPreset) -> Optional[MacroTarget]:
    override = profile.macro_override
    if override is None:
        return None

    if override.protein_grams <= 0 or override.carbs_grams < 0 or override.fat_grams <= 0:
        print("   ⚠️ Ignoring custom macros: protein and fat must be positive", file=sys.stderr)
        return None

    implied = override.protein_grams * 4 + override.carbs_grams * 4 + override.fat_grams * 9
    if abs(implied - calories) > calories * CUSTOM_MACRO_TOLERANCE_PCT:
        print(
            f"   ⚠️ Ignoring custom macros: {implied:.0f} kcal implied vs {calories} kcal goal",
            file=sys.stderr,
        )
        return None

    protein = round(override.protein_grams)
    carbs = round(override.carbs_grams)
    fat = round(override.fat_grams)
    return MacroTarget(
        calories=calories,
        protein_grams=protein,
        carbs_grams=carbs,
        fat_grams=fat,
        protein_percent=round(protein * 4 / calories * 100),
        carbs_percent=round(carbs * 4 / calories * 100),
        fat_percent=round(fat * 9 / calories * 100),
        preset=preset.key,
        source="custom",
        recommendation="Custom macro targets",
    )


def resolve_macro_targets(profile: NutritionProfile, calorie_goal: int) -> MacroTarget:
    """Split a calorie goal into protein / carbs / fat grams.

    Order of operations:
    1. A valid custom override wins outright.
    2. Preset ratios, adjusted for weight trend (not for strict low-carb).
    3. Ratios clamped to preset bounds and renormalized to 1.0.
    4. Protein grams clamped to a per-kg band.
    5. Carbs and fat share the remaining calories by ratio, with a fat
       floor of max(20% of calories, 0.5 g/kg).

    Raises:
        PreconditionFailedError: For an unknown dietary preference
    """
    preset = resolve_preset(profile.dietary_preference)
    calories = int(calorie_goal)

    custom = _custom_targets(profile, calories, preset)
    if custom is not None:
        return custom

    trend = weight_trend(profile)
    ratios = adjusted_ratios(preset, trend)
    weight_kg = profile.weight_kg or DEFAULT_WEIGHT_KG

    protein_min = max(PROTEIN_MIN_PER_KG[trend] * weight_kg, PROTEIN_MIN_GRAMS)
    protein_max = max(min(preset.protein_max_per_kg * weight_kg, PROTEIN_MAX_GRAMS), protein_min)
    protein_grams = clamp(calories * ratios["protein"] / 4.0, protein_min, protein_max)

    remaining = max(calories - protein_grams * 4.0, 0.0)
    carb_fat_total = ratios["carbs"] + ratios["fat"]
    carbs_share = ratios["carbs"] / carb_fat_total if carb_fat_total > 0 else 0.6

    fat_floor = max(calories * FAT_FLOOR_CALORIE_SHARE, weight_kg * FAT_FLOOR_GRAMS_PER_KG * 9)
    fat_calories = min(max(remaining * (1 - carbs_share), fat_floor), remaining)
    carb_calories = max(remaining - fat_calories, 0.0)

    protein = round(protein_grams)
    carbs = max(round(carb_calories / 4.0), 0)
    fat = max(round(fat_calories / 9.0), 0)

    trend_note = {
        "lose": "Elevated protein and slightly lower carbs to support fat loss.",
        "gain": "Extra carbs and fats to fuel muscle gain and recovery.",
        "maintain": "Balanced ratios to support maintenance.",
    }[trend]

    carbs_pct = round(carbs * 4 / calories * 100)
    protein_pct = round(protein * 4 / calories * 100)
    fat_pct = round(fat * 9 / calories * 100)

    return MacroTarget(
        calories=calories,
        protein_grams=protein,
        carbs_grams=carbs,
        fat_grams=fat,
        protein_percent=protein_pct,
        carbs_percent=carbs_pct,
        fat_percent=fat_pct,
        preset=preset.key,
        source="preset",
        recommendation=(
            f"{preset.title} focus: {carbs_pct}% carbs / {protein_pct}% protein / "
            f"{fat_pct}% fat. {trend_note}"
        ),
    )
