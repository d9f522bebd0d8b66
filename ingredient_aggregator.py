"""Consolidate a week of free-text ingredients into a bounded shopping list.

Parsing is a small ordered grammar; the first matcher that accepts wins:
1. quantity + unit + name       ("2 lbs chicken breast", "200g rice")
2. name + quantity + unit       ("chicken breast 2 lbs")
3. quantity + countable noun    ("3 eggs")
4. whole string as name, qty 1  ("salt to taste")

Entries are merged on their normalized name by summing quantities. Units
are never converted: differing units for the same name are summed anyway
and a warning is logged.
"""

from __future__ import annotations

import re
import sys
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from observability import setup_structured_logger
from schemas import DayEntry, ShoppingListItem

logger = setup_structured_logger("blueprint.shopping")

MAX_SHOPPING_ITEMS = 25
MAX_PROTEIN_ITEMS = 7
MIN_PROTEIN_ITEMS = 5

CATEGORY_ORDER = ["Proteins", "Produce", "Dairy", "Grains", "Pantry", "Other"]

# Matched in order: an item lands in the first category with a keyword hit
CATEGORY_KEYWORDS: "OrderedDict[str, Tuple[str, ...]]" = OrderedDict(
    [
        (
            "Proteins",
            (
                "chicken", "beef", "pork", "turkey", "lamb", "fish", "salmon", "tuna",
                "cod", "shrimp", "steak", "sausage", "bacon", "ham", "tofu", "tempeh",
                "beans", "lentils", "chickpeas", "eggs", "egg",
            ),
        ),
        (
            "Produce",
            (
                "broccoli", "spinach", "lettuce", "tomato", "pepper", "onion", "garlic",
                "carrot", "celery", "cucumber", "zucchini", "mushroom", "avocado",
                "apple", "banana", "berry", "berries", "fruit", "vegetable", "greens",
                "cabbage", "kale", "potato", "lemon", "lime", "eggplant",
            ),
        ),
        (
            "Dairy",
            (
                "milk", "cheese", "yogurt", "butter", "cream", "sour cream",
                "cottage cheese", "feta", "parmesan", "cheddar", "mozzarella",
            ),
        ),
        ("Grains", ("rice", "pasta", "bread", "quinoa", "oats", "oat", "flour", "tortilla")),
        ("Pantry", ("oil", "vinegar", "salt", "pepper", "spice", "seasoning", "honey", "sauce")),
    ]
)

# Substring keywords misfire on these ("eggplant" and "veggie" contain "egg")
CATEGORY_OVERRIDES: Dict[str, str] = {
    "eggplant": "Produce",
    "butternut": "Produce",
    "peanut butter": "Pantry",
    "almond butter": "Pantry",
    "coconut milk": "Pantry",
    "almond milk": "Dairy",
    "black pepper": "Pantry",
    "broth": "Pantry",
    "veggie": "Produce",
}

# Canonical unit per accepted spelling (weight and volume only)
UNIT_ALIASES: Dict[str, str] = {
    "lb": "lbs", "lbs": "lbs", "pound": "lbs", "pounds": "lbs",
    "oz": "oz", "ounce": "oz", "ounces": "oz",
    "fl oz": "fl oz", "floz": "fl oz",
    "cup": "cups", "cups": "cups",
    "tbsp": "tbsp", "tablespoon": "tbsp", "tablespoons": "tbsp",
    "tsp": "tsp", "teaspoon": "tsp", "teaspoons": "tsp",
    "quart": "quarts", "quarts": "quarts", "qt": "quarts",
    "pint": "pints", "pints": "pints",
    "g": "g", "gram": "g", "grams": "g",
    "kg": "kg", "kilogram": "kg", "kilograms": "kg",
    "mg": "mg",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml", "millilitre": "ml",
    "l": "L", "liter": "L", "liters": "L", "litre": "L", "litres": "L",
}

UNICODE_FRACTIONS = {"½": 0.5, "¼": 0.25, "¾": 0.75, "⅓": 1 / 3, "⅔": 2 / 3, "⅛": 0.125}

# Cut / prep descriptors stripped from names before merging
DESCRIPTOR_PATTERN = re.compile(
    r"\b(?:breasts?|thighs?|drumsticks?|wings?|fillets?|loins?|ground|minced|fresh|"
    r"dried|frozen|boneless|skinless|chopped|diced|sliced|shredded|grated|large|"
    r"medium|small|raw|cooked)\b",
    re.IGNORECASE,
)

_QTY = r"(?P<qty>\d+\s+\d+/\d+|\d+/\d+|\d*\.\d+|\d+)"
_UNIT = r"(?P<unit>fl\.?\s*oz|[a-zA-Z]+)"


@dataclass(frozen=True)
class ParsedIngredient:
    raw_text: str
    quantity: float
    unit: str
    normalized_name: str


def _parse_quantity(text: str) -> float:
    text = text.strip()
    if " " in text:
        whole, fraction = text.split(None, 1)
        return float(whole) + _parse_quantity(fraction)
    if "/" in text:
        num, den = text.split("/", 1)
        return float(num) / float(den) if float(den) else 0.0
    return float(text)


def canonical_unit(token: str) -> Optional[str]:
    """Canonical unit for a token, or None if it is not a weight/volume unit."""
    key = re.sub(r"[.\s]+", " ", token.strip().lower()).strip()
    if key.replace(" ", "") == "floz":
        key = "fl oz"
    return UNIT_ALIASES.get(key)


def _replace_unicode_fractions(text: str) -> str:
    for symbol, value in UNICODE_FRACTIONS.items():
        text = re.sub(rf"(\d)\s*{symbol}", lambda m: str(int(m.group(1)) + value), text)
        text = text.replace(symbol, str(value))
    return text


def _match_quantity_unit_name(text: str) -> Optional[Tuple[float, str, str]]:
    match = re.match(rf"^{_QTY}\s*{_UNIT}\.?\s+(?P<name>.+)$", text)
    if not match:
        return None
    unit = canonical_unit(match.group("unit"))
    if unit is None:
        return None
    return _parse_quantity(match.group("qty")), unit, match.group("name")


def _match_name_quantity_unit(text: str) -> Optional[Tuple[float, str, str]]:
    match = re.match(rf"^(?P<name>.+?)\s+{_QTY}\s*{_UNIT}\.?$", text)
    if not match:
        return None
    unit = canonical_unit(match.group("unit"))
    if unit is None:
        return None
    return _parse_quantity(match.group("qty")), unit, match.group("name")


def _match_quantity_countable(text: str) -> Optional[Tuple[float, str, str]]:
    match = re.match(rf"^{_QTY}\s+(?P<name>.+)$", text)
    if not match:
        return None
    return _parse_quantity(match.group("qty")), "", match.group("name")


INGREDIENT_GRAMMAR: List[Callable[[str], Optional[Tuple[float, str, str]]]] = [
    _match_quantity_unit_name,
    _match_name_quantity_unit,
    _match_quantity_countable,
]


def normalize_name(name: str) -> str:
    """Head noun of an ingredient: lowercased, descriptors stripped.

    "Chicken Breast (boneless), diced" -> "chicken"
    """
    text = name.lower()
    text = re.sub(r"\([^)]*\)", " ", text)
    text = text.split(",")[0]
    text = re.sub(r"^\s*of\s+", "", text)
    stripped = DESCRIPTOR_PATTERN.sub(" ", text)
    stripped = re.sub(r"[^a-z0-9' -]", " ", stripped)
    stripped = " ".join(stripped.split()).strip(" -")
    return stripped or " ".join(text.split())


def merge_key(normalized_name: str) -> str:
    """Merge key: normalized name with light singularization of the last word."""
    words = normalized_name.split()
    if not words:
        return normalized_name
    last = words[-1]
    if last.endswith("oes") and len(last) > 4:
        last = last[:-2]
    elif last.endswith("ies") and len(last) > 4:
        last = last[:-3] + "y"
    elif last.endswith("s") and not last.endswith("ss") and len(last) > 3:
        last = last[:-1]
    return " ".join(words[:-1] + [last])


def parse_ingredient(raw: str) -> ParsedIngredient:
    """Parse one free-text ingredient line."""
    text = _replace_unicode_fractions(" ".join(str(raw).split()))
    text = text.lstrip("-•*· ").strip()

    for matcher in INGREDIENT_GRAMMAR:
        try:
            result = matcher(text)
        except (ValueError, ZeroDivisionError):
            result = None
        if result is not None:
            quantity, unit, name = result
            return ParsedIngredient(
                raw_text=raw,
                quantity=quantity,
                unit=unit,
                normalized_name=normalize_name(name),
            )

    return ParsedIngredient(raw_text=raw, quantity=1.0, unit="", normalized_name=normalize_name(text))


def categorize_item(name: str) -> str:
    """First category whose keyword appears in the name, else "Other"."""
    lowered = name.lower()
    for phrase, category in CATEGORY_OVERRIDES.items():
        if phrase in lowered:
            return category
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return "Other"


def iter_day_ingredients(days: Iterable[DayEntry]) -> Iterable[str]:
    for day in days:
        for meal in day.all_meals():
            for ingredient in meal.ingredients:
                yield ingredient


def merge_ingredients(raw_ingredients: Iterable[str]) -> List[ShoppingListItem]:
    """Parse and merge ingredients, summing quantities per normalized name."""
    merged: "OrderedDict[str, ShoppingListItem]" = OrderedDict()
    mismatches = 0

    for raw in raw_ingredients:
        if not raw or not str(raw).strip():
            continue
        parsed = parse_ingredient(raw)
        if not parsed.normalized_name:
            continue
        key = merge_key(parsed.normalized_name)

        existing = merged.get(key)
        if existing is None:
            merged[key] = ShoppingListItem(
                name=parsed.normalized_name,
                quantity=parsed.quantity,
                unit=parsed.unit,
            )
            continue

        if parsed.unit != existing.unit:
            mismatches += 1
            logger.warning(
                f"Unit mismatch while merging '{key}'",
                extra={
                    "extra_fields": {
                        "ingredient": key,
                        "kept_unit": existing.unit,
                        "other_unit": parsed.unit,
                        "raw_text": parsed.raw_text,
                    }
                },
            )
        existing.quantity += parsed.quantity

    if mismatches:
        print(
            f"   ⚠️ {mismatches} unit mismatches summed without conversion",
            file=sys.stderr,
        )
    return list(merged.values())


def build_shopping_list(
    items: Iterable[ShoppingListItem],
    max_items: int = MAX_SHOPPING_ITEMS,
    max_proteins: int = MAX_PROTEIN_ITEMS,
) -> Dict[str, List[ShoppingListItem]]:
    """Categorize, sort and truncate merged items.

    Each category is sorted by quantity (descending). Proteins keep at most
    `max_proteins` items; then categories are filled in CATEGORY_ORDER until
    `max_items` is reached, so lower-priority categories are cut first.
    """
    grouped: Dict[str, List[ShoppingListItem]] = {category: [] for category in CATEGORY_ORDER}
    for item in items:
        grouped[categorize_item(item.name)].append(item)

    for category in grouped:
        grouped[category].sort(key=lambda item: item.quantity, reverse=True)
    grouped["Proteins"] = grouped["Proteins"][:max_proteins]

    shopping_list: Dict[str, List[ShoppingListItem]] = {}
    remaining = max_items
    for category in CATEGORY_ORDER:
        kept = grouped[category][: max(remaining, 0)]
        remaining -= len(kept)
        if kept:
            shopping_list[category] = kept
    return shopping_list


def aggregate_shopping_list(days: Iterable[DayEntry]) -> Dict[str, List[ShoppingListItem]]:
    """Full pass: every ingredient of every meal -> bounded shopping list."""
    days = list(days)
    merged = merge_ingredients(iter_day_ingredients(days))
    shopping_list = build_shopping_list(merged)

    total = sum(len(items) for items in shopping_list.values())
    logger.info(
        "Shopping list aggregated",
        extra={
            "extra_fields": {
                "unique_ingredients": len(merged),
                "kept_items": total,
                "per_category": {k: len(v) for k, v in shopping_list.items()},
            }
        },
    )
    print(
        f"   🛒 Shopping list: {total} items kept from {len(merged)} unique ingredients",
        file=sys.stderr,
    )
    return shopping_list
