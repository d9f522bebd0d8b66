"""Hard ingredient constraints per diet preset.

The same table feeds two places:
- prompt_builder.py renders `prompt_rule` into the generation prompt
- find_dietary_violations() scans a generated plan for forbidden keywords

The scan is advisory: violations are logged and stored on the plan as
warnings, the plan itself is still accepted.
"""

import re
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from observability import setup_structured_logger
from schemas import DayEntry

logger = setup_structured_logger("blueprint.dietary")

_MEAT = (
    "chicken", "beef", "pork", "lamb", "turkey", "fish", "salmon", "tuna", "shrimp", "seafood", "meat", "meatball", "bacon",
)
_ANIMAL_PRODUCTS = ("egg", "milk", "buttermilk", "cheese", "yogurt", "butter", "cream", "dairy", "honey", "whey", "ghee")
_STARCHES = ("bread", "pasta", "rice", "potato", "grain", "bean", "oat", "oatmeal", "tortilla", "cereal")

# Plant foods whose names contain a forbidden keyword
KEYWORD_EXCEPTIONS: Dict[str, Tuple[str, ...]] = {
    "butter": (
        "peanut butter",
        "almond butter",
        "cashew butter",
        "nut butter",
        "seed butter",
        "cocoa butter",
        "apple butter",
        "vegan butter",
    ),
    "milk": ("almond milk", "oat milk", "soy milk", "coconut milk", "rice milk", "cashew milk", "plant milk"),
    "cream": ("coconut cream", "cream of tartar", "vegan cream"),
    "cheese": ("vegan cheese", "cashew cheese"),
    "yogurt": ("coconut yogurt", "soy yogurt", "vegan yogurt"),
}


@dataclass(frozen=True)
class DietaryRule:
    """Prompt text plus the keywords that must not appear in the plan."""

    prompt_rule: str
    forbidden: Tuple[str, ...] = field(default_factory=tuple)


DIETARY_RULES = {
    "vegetarian": DietaryRule(
        "VEGETARIAN: NO meat, poultry, fish or seafood. Eggs and dairy are allowed.",
        _MEAT,
    ),
    "vegan": DietaryRule(
        "VEGAN: NO animal products at all - no meat, fish, eggs, dairy or honey.",
        _MEAT + _ANIMAL_PRODUCTS,
    ),
    "plant_based": DietaryRule(
        "PLANT-BASED: build every meal around plants; NO meat, poultry, fish or seafood.",
        _MEAT,
    ),
    "ketogenic": DietaryRule(
        "KETOGENIC: under 25g net carbs per person per day. NO bread, pasta, rice, potatoes, grains, beans or sugar.",
        _STARCHES + ("sugar",),
    ),
    "very_low_carb": DietaryRule(
        "VERY LOW CARB: NO bread, pasta, rice, potatoes, grains or beans. Use non-starchy vegetables.",
        _STARCHES,
    ),
    "carnivore": DietaryRule(
        "CARNIVORE: animal foods only - meat, fish, eggs and limited dairy. NO plants, grains, beans, fruit or vegetables.",
        _STARCHES + ("broccoli", "spinach", "apple", "banana", "lettuce", "tofu"),
    ),
    "paleo": DietaryRule(
        "PALEO: NO grains, legumes, dairy, refined sugar or processed foods.",
        ("bread", "pasta", "rice", "oat", "bean", "lentil", "cheese", "milk", "yogurt", "tofu", "sugar"),
    ),
    "low_fat": DietaryRule(
        "LOW FAT: lean proteins and minimal added oils. NO deep-fried foods, bacon or heavy cream.",
        ("bacon", "heavy cream", "deep-fried", "lard"),
    ),
}

DEFAULT_RULE = DietaryRule("Follow the macro split; no ingredient restrictions beyond allergies.")


def rule_for(preset_key: str) -> DietaryRule:
    return DIETARY_RULES.get(preset_key, DEFAULT_RULE)


def _plan_text(days: Iterable[DayEntry]) -> str:
    parts: List[str] = []
    for day in days:
        for meal in day.all_meals():
            parts.append(meal.name)
            parts.extend(meal.ingredients)
    return "\n".join(parts).lower()


def contains_keyword(text: str, keyword: str) -> bool:
    """Whole-word match (plurals included) after dropping the keyword's plant-food exceptions.

    "egg" matches "3 eggs" but not "eggplant"; "milk" ignores "almond milk".
    """
    for phrase in KEYWORD_EXCEPTIONS.get(keyword, ()):
        text = text.replace(phrase, " ")
    return re.search(rf"\b{re.escape(keyword)}(?:s|es)?\b", text) is not None


def find_dietary_violations(days: Iterable[DayEntry], preset_key: str) -> List[str]:
    """Forbidden keywords for `preset_key` that appear in meal names or ingredients."""
    rule = rule_for(preset_key)
    if not rule.forbidden:
        return []

    text = _plan_text(days)
    found = [keyword for keyword in rule.forbidden if contains_keyword(text, keyword)]
    if found:
        print(
            f"   ⚠️ Dietary violation: found {', '.join(found)} in {preset_key} plan",
            file=sys.stderr,
        )
        logger.warning(
            "Dietary violations in generated plan",
            extra={"extra_fields": {"preset": preset_key, "violations": found}},
        )
    return found
