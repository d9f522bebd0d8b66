"""Pydantic models for profiles, generated plans and pipeline metadata."""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, Field, field_validator

from validation_config import (
    DAYS_PER_PLAN,
    DEFAULT_MEALS_PER_DAY,
    DEFAULT_SNACKS_PER_DAY,
    MAX_MEALS_PER_DAY,
    MAX_SNACKS_PER_DAY,
    MIN_MEALS_PER_DAY,
    MIN_SNACKS_PER_DAY,
    SERVINGS_PER_RECIPE,
)


# Slot keys, in display order
ALL_MEAL_SLOTS: Tuple[str, ...] = ("breakfast", "lunch", "dinner", "meal", "meal4", "meal5")

MEAL_SLOTS_BY_COUNT: Dict[int, List[str]] = {
    1: ["meal"],
    2: ["breakfast", "dinner"],
    3: ["breakfast", "lunch", "dinner"],
    4: ["breakfast", "lunch", "dinner", "meal4"],
    5: ["breakfast", "lunch", "dinner", "meal4", "meal5"],
}

_NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")


def meal_slots_for(meals_per_day: int) -> List[str]:
    """Slot keys a day must contain for the given meals-per-day."""
    count = max(MIN_MEALS_PER_DAY, min(MAX_MEALS_PER_DAY, int(meals_per_day)))
    return list(MEAL_SLOTS_BY_COUNT[count])


def coerce_number(value: Any) -> float:
    """Best-effort float from model output ("350 kcal" -> 350.0, None -> 0.0)."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _NUMBER_PATTERN.search(str(value))
        if not match:
            return 0.0
        number = float(match.group(0))
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _coerce_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = re.split(r"[\n;]+", value)
    if not isinstance(value, list):
        value = [value]
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


# ============================================================================
# Profile & Targets
# ============================================================================


class MacroOverride(BaseModel):
    """User-provided macro grams that replace the preset split when valid."""

    protein_grams: float = Field(..., description="Daily protein grams")
    carbs_grams: float = Field(..., description="Daily carbohydrate grams")
    fat_grams: float = Field(..., description="Daily fat grams")


class NutritionProfile(BaseModel):
    """Read-only nutrition inputs owned by the user."""

    model_config = {"extra": "allow"}

    weight_kg: Optional[float] = Field(default=None, gt=0, description="Current body weight")
    height_cm: Optional[float] = Field(default=None, gt=0, description="Height")
    age: Optional[int] = Field(default=None, gt=0, description="Age in years")
    sex: Optional[str] = Field(default=None, description="'male' or 'female'")
    activity_level: str = Field(default="moderate", description="Activity multiplier key")
    dietary_preference: str = Field(default="balanced", description="Preset key or display name")
    goal_weight_kg: Optional[float] = Field(default=None, gt=0, description="Target weight for trend")
    calorie_goal: Optional[float] = Field(default=None, description="Explicit daily calorie goal")
    macro_override: Optional[MacroOverride] = None
    use_imperial: bool = True
    meals_per_day: int = DEFAULT_MEALS_PER_DAY
    snacks_per_day: int = DEFAULT_SNACKS_PER_DAY
    allergies: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    favorite_foods: List[str] = Field(default_factory=list)
    cycle_phase: Optional[str] = Field(
        default=None, description="menstrual, follicular, ovulation or luteal"
    )

    @field_validator("meals_per_day", mode="before")
    @classmethod
    def _clamp_meals(cls, value: Any) -> int:
        if value is None or value == "":
            return DEFAULT_MEALS_PER_DAY
        return int(max(MIN_MEALS_PER_DAY, min(MAX_MEALS_PER_DAY, round(float(value)))))

    @field_validator("snacks_per_day", mode="before")
    @classmethod
    def _clamp_snacks(cls, value: Any) -> int:
        if value is None or value == "":
            return DEFAULT_SNACKS_PER_DAY
        return int(max(MIN_SNACKS_PER_DAY, min(MAX_SNACKS_PER_DAY, round(float(value)))))

    @field_validator("allergies", "dislikes", "favorite_foods", mode="before")
    @classmethod
    def _split_lists(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = value.split(",")
        return _coerce_string_list(value)

    @field_validator("calorie_goal", mode="before")
    @classmethod
    def _blank_goal(cls, value: Any) -> Any:
        if value in ("", 0):
            return None
        return value

    @property
    def unit_system(self) -> str:
        return "imperial" if self.use_imperial else "metric"


class MacroTarget(BaseModel):
    """Per-person daily calorie and macro targets."""

    calories: int
    protein_grams: int
    carbs_grams: int
    fat_grams: int
    protein_percent: int = 0
    carbs_percent: int = 0
    fat_percent: int = 0
    preset: str = "balanced"
    source: Literal["preset", "custom"] = "preset"
    recommendation: str = ""

    def scaled(self, servings: int = SERVINGS_PER_RECIPE) -> Dict[str, int]:
        """Full-recipe targets for `servings` people."""
        return {
            "calories": self.calories * servings,
            "protein": self.protein_grams * servings,
            "carbs": self.carbs_grams * servings,
            "fat": self.fat_grams * servings,
        }


class BlueprintRequest(BaseModel):
    """One generation request for a (user, week)."""

    user_id: str = Field(..., min_length=1)
    week_start_date: date
    servings_per_recipe: int = SERVINGS_PER_RECIPE

    @property
    def week_key(self) -> str:
        return self.week_start_date.isoformat()


# ============================================================================
# Generation
# ============================================================================


class ModelTier(str, Enum):
    ECONOMY = "economy"
    PREMIUM = "premium"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    MALFORMED = "malformed"
    TOO_SHORT = "too_short"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    FATAL = "fatal"


class GenerationRequest(BaseModel):
    """Rendered request sent to the generative text service."""

    system_instructions: str
    user_prompt: str
    max_output_tokens: int
    temperature: float


class GenerationResponse(BaseModel):
    """Raw generator reply."""

    text: str = ""
    token_usage: int = 0
    model: str = ""


class GenerationAttempt(BaseModel):
    """One orchestrator attempt (logged, kept only inside metadata)."""

    tier: ModelTier
    attempt_index: int
    outcome: AttemptOutcome
    model: str = ""
    duration_ms: float = 0.0
    detail: Optional[str] = None


class GenerationMetadata(BaseModel):
    """Which tier produced the plan and how many attempts it took."""

    tier: ModelTier
    attempt_count: int = Field(..., ge=1)
    model: str = ""
    token_usage: int = 0
    attempts: List[GenerationAttempt] = Field(default_factory=list)


# ============================================================================
# Plan content
# ============================================================================


class Meal(BaseModel):
    """One recipe. Macro fields are FULL RECIPE totals (all servings)."""

    model_config = {"extra": "allow", "populate_by_name": True}

    name: str = "Unnamed meal"
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    ingredients: List[str] = Field(default_factory=list)
    steps: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("steps", "instructions"),
    )

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        return text or "Unnamed meal"

    @field_validator("calories", "protein", "carbs", "fat", mode="before")
    @classmethod
    def _coerce_macros(cls, value: Any) -> float:
        return coerce_number(value)

    @field_validator("ingredients", mode="before")
    @classmethod
    def _coerce_ingredients(cls, value: Any) -> List[str]:
        if isinstance(value, list):
            flattened = []
            for item in value:
                if isinstance(item, dict):
                    parts = [item.get("quantity"), item.get("unit"), item.get("name") or item.get("item")]
                    item = " ".join(str(p).strip() for p in parts if p not in (None, ""))
                flattened.append(item)
            value = flattened
        return _coerce_string_list(value)

    @field_validator("steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: Any) -> List[str]:
        return _coerce_string_list(value)


class DayEntry(BaseModel):
    """One day: meal slots plus snacks."""

    model_config = {"extra": "allow"}

    day: str = ""
    breakfast: Optional[Meal] = None
    lunch: Optional[Meal] = None
    dinner: Optional[Meal] = None
    meal: Optional[Meal] = None
    meal4: Optional[Meal] = None
    meal5: Optional[Meal] = None
    snacks: List[Meal] = Field(default_factory=list)

    @field_validator(*ALL_MEAL_SLOTS, mode="before")
    @classmethod
    def _coerce_slot(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        if isinstance(value, (dict, Meal)):
            return value
        return None

    @field_validator("snacks", mode="before")
    @classmethod
    def _coerce_snacks(cls, value: Any) -> List[Any]:
        if value is None:
            return []
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            return []
        snacks = []
        for snack in value:
            if isinstance(snack, str):
                snacks.append({"name": snack})
            elif isinstance(snack, (dict, Meal)):
                snacks.append(snack)
        return snacks

    def meal_items(self) -> List[Tuple[str, Meal]]:
        """(slot, meal) pairs for every filled slot, in display order."""
        return [(slot, getattr(self, slot)) for slot in ALL_MEAL_SLOTS if getattr(self, slot) is not None]

    def all_meals(self) -> List[Meal]:
        return [meal for _, meal in self.meal_items()] + list(self.snacks)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ShoppingListItem(BaseModel):
    """Merged shopping list entry."""

    name: str
    quantity: float
    unit: str = ""

    @property
    def display(self) -> str:
        return f"{self.name} – {self.quantity:.1f} {self.unit}".rstrip()

    def to_document(self) -> Dict[str, Any]:
        return {
            "item": self.name,
            "quantity": round(self.quantity, 2),
            "unit": self.unit,
            "display": self.display,
        }


class MacroValidationReport(BaseModel):
    """Outcome of the weekly macro budget check."""

    average_daily: Dict[str, float]
    target_full_recipe: Dict[str, float]
    deviations: Dict[str, float]
    flagged: List[str] = Field(default_factory=list)
    critical: bool = False
    rejected: bool = False


class GeneratedPlan(BaseModel):
    """A validated seven-day plan ready for persistence."""

    user_id: str
    week_start_date: date
    daily_calorie_target: int
    meals: List[DayEntry]
    shopping_list: Dict[str, List[ShoppingListItem]] = Field(default_factory=dict)
    unit_system: Literal["imperial", "metric"]
    household_size: int = SERVINGS_PER_RECIPE
    generated_at: datetime
    generation_metadata: GenerationMetadata
    macro_targets: MacroTarget
    macro_report: Optional[MacroValidationReport] = None
    dietary_warnings: List[str] = Field(default_factory=list)

    @field_validator("meals")
    @classmethod
    def _exactly_one_week(cls, value: List[DayEntry]) -> List[DayEntry]:
        if len(value) != DAYS_PER_PLAN:
            raise ValueError(f"plan must have exactly {DAYS_PER_PLAN} days, got {len(value)}")
        return value

    @property
    def week_key(self) -> str:
        return self.week_start_date.isoformat()

    def to_document(self) -> Dict[str, Any]:
        """Storage-boundary shape of the plan."""
        return {
            "userId": self.user_id,
            "weekStartDate": self.week_key,
            "dailyCalories": self.daily_calorie_target,
            "meals": [day.to_document() for day in self.meals],
            "shoppingList": {
                category: [item.to_document() for item in items]
                for category, items in self.shopping_list.items()
            },
            "unitSystem": self.unit_system,
            "useImperial": self.unit_system == "imperial",
            "householdSize": self.household_size,
            "generatedAt": self.generated_at.isoformat(),
            "generationMetadata": self.generation_metadata.model_dump(mode="json"),
            "macroTargets": self.macro_targets.model_dump(mode="json"),
            "macroReport": self.macro_report.model_dump(mode="json") if self.macro_report else None,
            "dietaryWarnings": list(self.dietary_warnings),
        }


# ============================================================================
# Nutrition lookup
# ============================================================================


class NutritionFacts(BaseModel):
    """Nutrition for a given quantity of food (or a sum of several)."""

    calories: float = 0.0
    protein_g: float = 0.0
    carbs_g: float = 0.0
    fat_g: float = 0.0
    sugar_g: float = 0.0
    micronutrients: Dict[str, float] = Field(default_factory=dict)

    def scaled(self, factor: float) -> "NutritionFacts":
        return NutritionFacts(
            calories=self.calories * factor,
            protein_g=self.protein_g * factor,
            carbs_g=self.carbs_g * factor,
            fat_g=self.fat_g * factor,
            sugar_g=self.sugar_g * factor,
            micronutrients={k: v * factor for k, v in self.micronutrients.items()},
        )

    def plus(self, other: "NutritionFacts") -> "NutritionFacts":
        micros = dict(self.micronutrients)
        for key, value in other.micronutrients.items():
            micros[key] = micros.get(key, 0.0) + value
        return NutritionFacts(
            calories=self.calories + other.calories,
            protein_g=self.protein_g + other.protein_g,
            carbs_g=self.carbs_g + other.carbs_g,
            fat_g=self.fat_g + other.fat_g,
            sugar_g=self.sugar_g + other.sugar_g,
            micronutrients=micros,
        )


# ============================================================================
# HTTP request models
# ============================================================================


class BlueprintGenerateRequest(BaseModel):
    """Request body for synchronous blueprint generation."""

    user_id: str = Field(..., min_length=1, description="Owner of the nutrition profile")
    week_start_date: Optional[str] = Field(
        default=None,
        description="Any date in the target week (YYYY-MM-DD). Defaults to the current week.",
    )


class BlueprintAsyncRequest(BlueprintGenerateRequest):
    """Request body for async generation with a completion callback."""

    callback_url: str = Field(..., description="URL to POST the result to when generation completes")
