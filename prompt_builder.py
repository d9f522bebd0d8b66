"""Render the weekly plan generation request from a profile and its targets."""
from __future__ import annotations

from datetime import date
from typing import List

from dietary_rules import rule_for
from llm_config import GENERATION_TEMPERATURE, MAX_OUTPUT_TOKENS
from schemas import GenerationRequest, MacroTarget, NutritionProfile, meal_slots_for
from validation_config import DAYS_PER_PLAN, SERVINGS_PER_RECIPE
from variety_advisor import VarietyContext

# Calorie floor as a share of the full-recipe target
CALORIE_FLOOR_PCT = 0.80
MAX_EGGS_PER_PERSON_PER_WEEK = 12
PROTEIN_VARIETY = (5, 7)
MAX_UNIQUE_ITEMS = 25

IMPERIAL_UNITS = "lbs, oz, cups, fl oz, tbsp, tsp"
METRIC_UNITS = "g, kg, ml, L"

CYCLE_GUIDANCE = {
    "menstrual": """MENSTRUAL CYCLE PHASE: Menstrual
- Iron-rich foods throughout the week: lean red meat, spinach, lentils, beans
- Vitamin C alongside iron for absorption: bell peppers, citrus, tomatoes
- Magnesium-rich foods for cramps: dark leafy greens, nuts, seeds, whole grains""",
    "follicular": """MENSTRUAL CYCLE PHASE: Follicular
- Complex carbs for sustained energy: whole grains, sweet potatoes, quinoa
- Protein-rich ingredients to support strength training
- B vitamins for energy metabolism: whole grains, eggs, leafy greens""",
    "ovulation": """MENSTRUAL CYCLE PHASE: Ovulation
- High-quality proteins for muscle support
- Antioxidant-rich foods: berries, dark leafy greens, colorful vegetables
- Nutrient-dense, energizing meals""",
    "luteal": """MENSTRUAL CYCLE PHASE: Luteal
- Magnesium-rich foods for PMS symptoms: dark leafy greens, nuts, seeds, dark chocolate
- B6 for mood support: poultry, fish, whole grains, bananas
- Potassium-rich foods against bloating: bananas, avocados, sweet potatoes
- Omega-3 sources: fatty fish, walnuts, chia seeds""",
}

_MEAL_SHAPE = (
    '{ "name": "...", "calories": ..., "protein": ..., "carbs": ..., "fat": ..., '
    '"ingredients": ["..."], "steps": ["..."] }'
)


def unit_directive(use_imperial: bool) -> str:
    """Allowed and forbidden units, with examples."""
    if use_imperial:
        return (
            f"- Use IMPERIAL units ONLY: {IMPERIAL_UNITS}. NEVER use {METRIC_UNITS}.\n"
            '- Examples: "2 lbs chicken breast", "1 cup broccoli", "8 oz cheddar cheese", '
            '"1 tbsp olive oil", "3 eggs"'
        )
    return (
        f"- Use METRIC units ONLY: {METRIC_UNITS}. NEVER use {IMPERIAL_UNITS}.\n"
        '- Examples: "900 g chicken breast", "250 g broccoli", "200 g cheddar cheese", '
        '"15 ml olive oil", "3 eggs"'
    )


def _personal_constraints(profile: NutritionProfile) -> str:
    lines: List[str] = []
    if profile.allergies:
        lines.append(
            f"- ALLERGIES (NEVER include, not even as a garnish): {', '.join(profile.allergies)}"
        )
    if profile.dislikes:
        lines.append(f"- Avoid disliked foods: {', '.join(profile.dislikes)}")
    if profile.favorite_foods:
        lines.append(f"- Feature favorite foods where they fit: {', '.join(profile.favorite_foods)}")
    return "\n".join(lines)


def _json_shape(week_start: date, calories: int, slots: List[str], snacks: int) -> str:
    slot_lines = "\n".join(f'      "{slot}": {_MEAL_SHAPE},' for slot in slots)
    snack_shapes = ", ".join([_MEAL_SHAPE] * snacks)
    return f"""{{
  "weekStarting": "{week_start.isoformat()}",
  "dailyCalories": {calories},
  "meals": [
    {{
      "day": "Monday",
{slot_lines}
      "snacks": [{snack_shapes}]
    }},
    ... (repeat for Tuesday-Sunday)
  ]
}}"""


def build_system_instructions(use_imperial: bool) -> str:
    units = (
        f"IMPERIAL units for every ingredient ({IMPERIAL_UNITS}); NEVER {METRIC_UNITS}"
        if use_imperial
        else f"METRIC units for every ingredient ({METRIC_UNITS}); NEVER {IMPERIAL_UNITS}"
    )
    return (
        "You are a nutrition assistant. Return ONLY valid JSON. No markdown, no code blocks, "
        f"no explanations. The 'meals' array MUST contain exactly {DAYS_PER_PLAN} objects, one per day "
        f"from Monday to Sunday. Do not stop after one day. Use {units}."
    )


def build_user_prompt(
    profile: NutritionProfile,
    target: MacroTarget,
    variety: VarietyContext,
    week_start: date,
    servings: int = SERVINGS_PER_RECIPE,
) -> str:
    full = target.scaled(servings)
    calorie_floor = round(full["calories"] * CALORIE_FLOOR_PCT)
    slots = meal_slots_for(profile.meals_per_day)
    snacks = profile.snacks_per_day
    rule = rule_for(target.preset)
    personal = _personal_constraints(profile)
    cycle = CYCLE_GUIDANCE.get((profile.cycle_phase or "").strip().lower(), "")
    low, high = PROTEIN_VARIETY

    sections = [
        f"Generate a complete {DAYS_PER_PLAN}-day meal plan for {servings} people, "
        f"week starting {week_start.isoformat()}.",
        f"""DAILY TARGETS PER PERSON:
- {target.calories} calories
- {target.protein_grams}g protein
- {target.carbs_grams}g carbs
- {target.fat_grams}g fat

DAILY TARGETS FOR ALL {servings} PEOPLE (FULL RECIPE):
- {full['calories']} calories
- {full['protein']}g protein
- {full['carbs']}g carbs
- {full['fat']}g fat
- Each day MUST total at least {calorie_floor} calories across all meals and snacks""",
        f"""MEAL STRUCTURE:
- Meals per day: {', '.join(slots)}
- Snacks per day: {snacks}
- Each recipe serves {servings} people; report macros for the FULL RECIPE (all {servings} servings)
- Daily total = sum of all meals + snacks for that day""",
        f"""DIET ({target.preset}):
- {rule.prompt_rule}""",
        f"""INGREDIENTS:
{unit_directive(profile.use_imperial)}
- Each ingredient MUST be "quantity unit name", or "quantity name" for countable items ("3 eggs", "2 apples")
- NEVER use the word "unit" or "units"
- Every meal and snack lists its ingredients, including spices and seasonings""",
        f"""SHOPPING LIST:
- Use only {low}-{high} different proteins across all {DAYS_PER_PLAN} days
- At most {MAX_EGGS_PER_PERSON_PER_WEEK} eggs per person per week ({MAX_EGGS_PER_PERSON_PER_WEEK * servings} eggs in total)
- Reuse vegetables and pantry items heavily
- At most {MAX_UNIQUE_ITEMS} unique ingredients in total""",
    ]
    if personal:
        sections.append(f"PERSONAL PREFERENCES:\n{personal}")
    if cycle:
        sections.append(cycle)
    sections.append(variety.render())
    sections.append(f"RETURN JSON FORMAT:\n{_json_shape(week_start, target.calories, slots, snacks)}")
    sections.append(
        f"CRITICAL: You MUST generate all {DAYS_PER_PLAN} days. Each meal MUST have an ingredients "
        "array. Return ONLY valid JSON."
    )
    return "\n\n".join(section for section in sections if section)


def build_generation_request(
    profile: NutritionProfile,
    target: MacroTarget,
    variety: VarietyContext,
    week_start: date,
) -> GenerationRequest:
    """Assemble system instructions and prompt for one generation run."""
    return GenerationRequest(
        system_instructions=build_system_instructions(profile.use_imperial),
        user_prompt=build_user_prompt(profile, target, variety, week_start),
        max_output_tokens=MAX_OUTPUT_TOKENS,
        temperature=GENERATION_TEMPERATURE,
    )
