"""USDA FoodData Central client used to reconcile generated macro estimates."""
import os
import sys
from typing import Any, Dict, Iterable, List, Optional, Protocol

import requests

from ingredient_aggregator import ParsedIngredient, merge_key, parse_ingredient
from nutrition_cache import FoodNutritionCache, get_nutrition_cache
from observability import setup_structured_logger
from retry_utils import CircuitBreaker, CircuitBreakerOpen, get_nutrition_circuit_breaker
from schemas import NutritionFacts

logger = setup_structured_logger("blueprint.nutrition")

USDA_API_KEY = os.getenv("USDA_API_KEY", "DEMO_KEY")
USDA_BASE_URL = os.getenv("USDA_BASE_URL", "https://api.nal.usda.gov/fdc/v1").rstrip("/")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("USDA_REQUEST_TIMEOUT", "15"))

# FoodData Central nutrient ids
ENERGY_KCAL = 1008
PROTEIN = 1003
CARBOHYDRATE = 1005
TOTAL_FAT = 1004
TOTAL_SUGARS = 2000

# nutrient id -> (micronutrient key, multiplier)
MICRONUTRIENT_IDS: Dict[int, tuple] = {
    1106: ("vitamin_a", 1.0),
    1162: ("vitamin_c", 1.0),
    1110: ("vitamin_d", 40.0),  # mcg -> IU
    1109: ("vitamin_e", 1.0),
    1185: ("vitamin_k", 1.0),
    1165: ("vitamin_b1", 1.0),
    1166: ("vitamin_b2", 1.0),
    1167: ("vitamin_b3", 1.0),
    1175: ("vitamin_b6", 1.0),
    1177: ("vitamin_b9", 1.0),
    1178: ("vitamin_b12", 1.0),
    1087: ("calcium", 1.0),
    1089: ("iron", 1.0),
    1090: ("magnesium", 1.0),
    1091: ("phosphorus", 1.0),
    1092: ("potassium", 1.0),
    1093: ("sodium", 1.0),
    1095: ("zinc", 1.0),
}

# Approximate grams per canonical unit (volume units assume water density)
UNIT_GRAMS: Dict[str, float] = {
    "cups": 240.0,
    "tbsp": 15.0,
    "tsp": 5.0,
    "oz": 28.35,
    "fl oz": 29.57,
    "lbs": 453.6,
    "g": 1.0,
    "kg": 1000.0,
    "mg": 0.001,
    "ml": 1.0,
    "L": 1000.0,
    "pints": 473.0,
    "quarts": 946.0,
}

# Grams per countable item ("3 eggs")
COUNTABLE_GRAMS: Dict[str, float] = {
    "egg": 50.0,
    "piece": 100.0,
    "slice": 25.0,
}


class NutritionLookupError(Exception):
    """Lookup failure; status_code drives the retry decision."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NutritionLookup(Protocol):
    def lookup_meal(self, ingredients: Iterable[str]) -> NutritionFacts:
        ...


def parse_food_nutrients(food: Dict[str, Any]) -> NutritionFacts:
    """Per-100 g facts from a search hit or a food detail document."""
    values: Dict[str, float] = {}
    micronutrients: Dict[str, float] = {}

    for nutrient in food.get("foodNutrients") or []:
        nutrient_id = nutrient.get("nutrientId")
        if nutrient_id is None and isinstance(nutrient.get("nutrient"), dict):
            nutrient_id = nutrient["nutrient"].get("id")
        amount = nutrient.get("value", nutrient.get("amount")) or 0
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            continue

        if nutrient_id == ENERGY_KCAL:
            values["calories"] = amount
        elif nutrient_id == PROTEIN:
            values["protein_g"] = amount
        elif nutrient_id == CARBOHYDRATE:
            values["carbs_g"] = amount
        elif nutrient_id == TOTAL_FAT:
            values["fat_g"] = amount
        elif nutrient_id == TOTAL_SUGARS:
            values["sugar_g"] = amount
        elif nutrient_id in MICRONUTRIENT_IDS:
            key, multiplier = MICRONUTRIENT_IDS[nutrient_id]
            if amount > 0:
                micronutrients[key] = amount * multiplier

    return NutritionFacts(micronutrients=micronutrients, **values)


def grams_from_table(parsed: ParsedIngredient) -> Optional[float]:
    """Total grams via the unit table or the countable-noun table, else None."""
    if parsed.unit:
        per_unit = UNIT_GRAMS.get(parsed.unit)
        return per_unit * parsed.quantity if per_unit else None
    per_item = COUNTABLE_GRAMS.get(merge_key(parsed.normalized_name).split(" ")[-1])
    return per_item * parsed.quantity if per_item else None


def grams_from_portions(portions: List[Dict[str, Any]], parsed: ParsedIngredient) -> Optional[float]:
    """Total grams from a food's `foodPortions`, matching the unit or the food name."""
    needle = (parsed.unit or merge_key(parsed.normalized_name)).lower().rstrip("s")
    if not needle:
        return None
    for portion in portions:
        unit_name = portion.get("measureUnit")
        if isinstance(unit_name, dict):
            unit_name = unit_name.get("name")
        haystack = " ".join(
            str(part or "") for part in (unit_name, portion.get("modifier"), portion.get("portionDescription"))
        ).lower()
        gram_weight = portion.get("gramWeight") or 0
        if needle in haystack and gram_weight > 0:
            return float(gram_weight) * parsed.quantity
    return None


class UsdaNutritionClient:
    """Look up ingredient nutrition on FoodData Central, scaled to the quantity."""

    def __init__(
        self,
        api_key: str = USDA_API_KEY,
        base_url: str = USDA_BASE_URL,
        session: Optional[requests.Session] = None,
        cache: Optional[FoodNutritionCache] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else get_nutrition_cache()
        self.circuit_breaker = circuit_breaker or get_nutrition_circuit_breaker()
        self.timeout = timeout

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.circuit_breaker.can_execute():
            raise CircuitBreakerOpen(f"Circuit breaker '{self.circuit_breaker.name}' is open")

        try:
            response = self.session.get(
                f"{self.base_url}{path}",
                params={"api_key": self.api_key, **params},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            self.circuit_breaker.record_failure()
            raise NutritionLookupError(f"USDA request timeout: {e}", status_code=408) from e
        except requests.exceptions.RequestException as e:
            self.circuit_breaker.record_failure()
            raise NutritionLookupError(f"USDA network error: {e}", status_code=503) from e

        if response.status_code != 200:
            if response.status_code == 429 or response.status_code >= 500:
                self.circuit_breaker.record_failure()
            raise NutritionLookupError(
                f"USDA error {response.status_code}: {str(response.text)[:200]}",
                status_code=response.status_code,
            )

        self.circuit_breaker.record_success()
        try:
            return response.json()
        except ValueError as e:
            raise NutritionLookupError(f"Invalid JSON from USDA: {e}", status_code=502) from e

    def _search(self, query: str) -> Dict[str, Any]:
        """Cached per-100 g facts for a query.

        Raises:
            NutritionLookupError: status 404 when no food matches
        """
        cached = self.cache.get(query)
        if cached and cached.get("negative"):
            raise NutritionLookupError(f"No food found for: {query} (cached)", status_code=404)
        if cached:
            return cached

        data = self._get("/foods/search", {"query": query, "pageSize": 1})
        foods = data.get("foods") or []
        if not foods:
            self.cache.set_negative(query)
            raise NutritionLookupError(f"No food found for: {query}", status_code=404)

        food = foods[0]
        facts = parse_food_nutrients(food)
        entry = {"facts": facts, "fdc_id": food.get("fdcId"), "food_name": food.get("description", "")}
        self.cache.set(query, facts, fdc_id=entry["fdc_id"], food_name=entry["food_name"])
        return entry

    def _portion_grams(self, fdc_id: Optional[int], parsed: ParsedIngredient) -> Optional[float]:
        if fdc_id is None:
            return None
        try:
            detail = self._get(f"/food/{fdc_id}", {})
        except (NutritionLookupError, CircuitBreakerOpen) as e:
            print(f"   ⚠️ Detail lookup failed for FDC {fdc_id}, using per-100g values: {e}", file=sys.stderr)
            return None
        return grams_from_portions(detail.get("foodPortions") or [], parsed)

    def lookup_ingredient(self, ingredient_text: str) -> NutritionFacts:
        """Nutrition for one ingredient line, scaled to its quantity.

        Scaling order: unit gram table, then foodPortions from the food
        detail, then the unscaled per-100 g values.
        """
        parsed = parse_ingredient(ingredient_text)
        query = parsed.normalized_name or ingredient_text
        entry = self._search(query)
        per_100g: NutritionFacts = entry["facts"]

        grams = grams_from_table(parsed)
        if grams is None:
            grams = self._portion_grams(entry.get("fdc_id"), parsed)
        if grams is None or grams <= 0:
            logger.info(
                "No gram weight for ingredient, using per-100g values",
                extra={"extra_fields": {"ingredient": ingredient_text, "unit": parsed.unit}},
            )
            return per_100g
        return per_100g.scaled(grams / 100.0)

    def lookup_meal(self, ingredients: Iterable[str]) -> NutritionFacts:
        """Sum of all matched ingredients.

        Unmatched ingredients (404) are skipped. Other errors propagate so the
        caller can retry the whole meal.

        Raises:
            NutritionLookupError: When no ingredient matched at all
        """
        total = NutritionFacts()
        matched = 0
        skipped: List[str] = []
        for ingredient in ingredients:
            if not ingredient or not str(ingredient).strip():
                continue
            try:
                total = total.plus(self.lookup_ingredient(str(ingredient)))
                matched += 1
            except NutritionLookupError as e:
                if e.status_code != 404:
                    raise
                skipped.append(str(ingredient))

        if skipped:
            logger.info(
                "Ingredients without a USDA match",
                extra={"extra_fields": {"skipped": skipped, "matched": matched}},
            )
        if matched == 0:
            raise NutritionLookupError("No food found for any ingredient", status_code=404)
        return total
