"""Plan documents shaped like generator output.

Macros are full-recipe values (4 servings) that add up to exactly
8000 kcal / 500 g protein / 1000 g carbs / 224 g fat per day, i.e. a
2000 kcal balanced target for one person.
"""
import json
from typing import Any, Dict, List, Optional, Sequence

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

MEAL_TEMPLATES = {
    "breakfast": (
        "Oat Bowl", 1600, 100, 200, 44,
        ["2 cups rolled oats", "4 eggs", "2 cups milk", "1 cup blueberries"],
    ),
    "lunch": (
        "Chicken Rice Bowl", 2400, 150, 300, 68,
        ["2 lbs chicken breast", "2 cups brown rice", "2 cups broccoli", "1 tbsp olive oil"],
    ),
    "dinner": (
        "Salmon with Potatoes", 2800, 175, 350, 78,
        ["2 lbs salmon fillets", "2 lbs potatoes", "3 cups spinach", "2 tbsp butter"],
    ),
}

SNACK_TEMPLATES = [
    ("Greek Yogurt Cup", 600, 37.5, 75, 17, ["2 cups greek yogurt", "1 tbsp honey"]),
    ("Apple and Cheese", 600, 37.5, 75, 17, ["4 apples", "4 oz cheddar cheese"]),
]

FULL_RECIPE_DAY = {"calories": 8000, "protein": 500, "carbs": 1000, "fat": 224}


def make_meal(template: tuple, day_name: str, factor: float = 1.0) -> Dict[str, Any]:
    name, calories, protein, carbs, fat, ingredients = template
    return {
        "name": f"{day_name} {name}",
        "calories": calories * factor,
        "protein": protein * factor,
        "carbs": carbs * factor,
        "fat": fat * factor,
        "ingredients": list(ingredients),
        "steps": ["Prep the ingredients", "Cook and divide into 4 portions"],
    }


def make_day(index: int, factor: float = 1.0) -> Dict[str, Any]:
    day_name = DAY_NAMES[index % len(DAY_NAMES)]
    day: Dict[str, Any] = {"day": day_name}
    for slot, template in MEAL_TEMPLATES.items():
        day[slot] = make_meal(template, day_name, factor)
    day["snacks"] = [make_meal(template, day_name, factor) for template in SNACK_TEMPLATES]
    return day


def make_plan_document(
    week_start: str = "2025-01-06",
    days: int = 7,
    factor: float = 1.0,
    meal_names: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """A generator-style plan. `factor=0.25` gives per-person macros."""
    meals: List[Dict[str, Any]] = [make_day(i, factor) for i in range(days)]
    if meal_names:
        for day, name in zip(meals, meal_names):
            day["dinner"]["name"] = name
    return {"weekStarting": week_start, "dailyCalories": 2000, "meals": meals}


def plan_json(**kwargs: Any) -> str:
    return json.dumps(make_plan_document(**kwargs), indent=2)
