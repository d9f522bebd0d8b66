"""Look back over recent weeks so a new plan does not repeat them."""

import sys
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from ingredient_aggregator import parse_ingredient
from observability import setup_structured_logger
from week_calendar import HISTORY_WEEKS, previous_week_starts, week_key

logger = setup_structured_logger("blueprint.variety")

MAX_MEAL_NAMES = 100
MAX_INGREDIENTS = 150
RENDERED_INGREDIENTS = 50

GENERIC_VARIETY_REQUIREMENT = """VARIETY REQUIREMENT:
- Every meal across the week MUST have a unique name
- Rotate cuisines and cooking methods from day to day
- Vary the vegetables and grains; do not repeat the same side dish more than twice"""


@dataclass
class VarietyContext:
    """Meal names and ingredient heads seen in prior weeks."""

    meal_names: List[str] = field(default_factory=list)
    ingredient_names: List[str] = field(default_factory=list)
    weeks_found: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.meal_names and not self.ingredient_names

    def render(self) -> str:
        """Exclusion block for the prompt (generic requirement with no history)."""
        if self.is_empty:
            return GENERIC_VARIETY_REQUIREMENT

        lines = [f"VARIETY (based on the last {self.weeks_found} weeks):"]
        if self.meal_names:
            lines.append("- DO NOT reuse any of these meal names:")
            lines.append("  " + "; ".join(self.meal_names))
        if self.ingredient_names:
            shown = self.ingredient_names[:RENDERED_INGREDIENTS]
            lines.append("- Prefer ingredients other than these recently used ones:")
            lines.append("  " + ", ".join(shown))
        lines.append("- Every meal across the week MUST have a unique name")
        return "\n".join(lines)


def _add_unique(target: List[str], seen: set, value: str, cap: int) -> None:
    text = (value or "").strip()
    key = text.lower()
    if not text or key in seen or len(target) >= cap:
        return
    seen.add(key)
    target.append(text)


def _iter_plan_meals(plan: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    for day in plan.get("meals") or []:
        if not isinstance(day, dict):
            continue
        for key, value in day.items():
            if key == "snacks" and isinstance(value, list):
                for snack in value:
                    if isinstance(snack, dict):
                        yield snack
            elif isinstance(value, dict):
                yield value


def extract_history(plans: Iterable[Dict[str, Any]]) -> VarietyContext:
    """Collect deduplicated meal names and ingredient heads from stored plans."""
    context = VarietyContext()
    seen_meals: set = set()
    seen_ingredients: set = set()

    for plan in plans:
        context.weeks_found += 1
        for meal in _iter_plan_meals(plan):
            _add_unique(context.meal_names, seen_meals, str(meal.get("name") or ""), MAX_MEAL_NAMES)
            for raw in meal.get("ingredients") or []:
                if not isinstance(raw, str):
                    continue
                name = parse_ingredient(raw).normalized_name
                _add_unique(context.ingredient_names, seen_ingredients, name, MAX_INGREDIENTS)
    return context


def build_variety_context(
    store: Any,
    user_id: str,
    week_start: date,
    weeks: int = HISTORY_WEEKS,
) -> VarietyContext:
    """Fetch up to `weeks` prior plans and summarize them.

    Store failures never block generation: they are logged and an empty
    context (generic variety requirement) is returned.
    """
    try:
        plans: List[Dict[str, Any]] = []
        for previous in previous_week_starts(week_start, weeks):
            plan: Optional[Dict[str, Any]] = store.get_plan(user_id, week_key(previous))
            if plan:
                plans.append(plan)
        context = extract_history(plans)
    except Exception as e:
        print(f"   ⚠️ Could not load plan history for variety: {e}", file=sys.stderr)
        logger.warning(
            "Variety history unavailable",
            extra={"extra_fields": {"user_id": user_id, "error": str(e), "error_type": type(e).__name__}},
        )
        return VarietyContext()

    logger.info(
        "Variety context built",
        extra={
            "extra_fields": {
                "user_id": user_id,
                "weeks_found": context.weeks_found,
                "meal_names": len(context.meal_names),
                "ingredients": len(context.ingredient_names),
            }
        },
    )
    return context
