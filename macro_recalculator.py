"""Background pass that replaces generated macro estimates with looked-up values.

Runs after the plan is persisted and the caller has its response. Meals are
looked up in batches of BATCH_SIZE concurrent calls; each successful meal gets
exactly its calories / protein / carbs / fat rewritten through a dotted-path
partial update, guarded by the plan's generatedAt so a plan regenerated
mid-run is never touched. Failed meals keep the generator's estimates.
Nothing raised here ever reaches the caller.
"""

import concurrent.futures
import math
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from nutrition_lookup import NutritionLookup
from observability import log_workflow, setup_structured_logger
from plan_store import StalePlanError
from retry_utils import DEFAULT_MAX_ATTEMPTS, is_rate_limit_error, is_retriable_error, linear_backoff_delay
from schemas import ALL_MEAL_SLOTS, NutritionFacts

logger = setup_structured_logger("blueprint.recalc")

BATCH_SIZE = 5
MEAL_TIMEOUT_SECONDS = 30.0
BATCH_PAUSE_SECONDS = 1.0


@dataclass(frozen=True)
class MealRef:
    """A meal inside a stored plan, addressed by its dotted path."""

    path: str
    name: str
    ingredients: Tuple[str, ...]


@dataclass
class RecalculationSummary:
    updated: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    stale: bool = False

    @property
    def total(self) -> int:
        return len(self.updated) + len(self.failed)


def collect_meal_refs(plan: Dict[str, Any]) -> List[MealRef]:
    """Every meal and snack with a non-empty ingredient list.

    Paths look like ``meals.2.dinner`` or ``meals.0.snacks.1``.
    """
    refs: List[MealRef] = []
    for day_index, day in enumerate(plan.get("meals") or []):
        if not isinstance(day, dict):
            continue
        for slot in ALL_MEAL_SLOTS:
            meal = day.get(slot)
            if isinstance(meal, dict) and meal.get("ingredients"):
                refs.append(MealRef(f"meals.{day_index}.{slot}", str(meal.get("name", "")), tuple(meal["ingredients"])))
        for snack_index, snack in enumerate(day.get("snacks") or []):
            if isinstance(snack, dict) and snack.get("ingredients"):
                refs.append(
                    MealRef(
                        f"meals.{day_index}.snacks.{snack_index}",
                        str(snack.get("name", "")),
                        tuple(snack["ingredients"]),
                    )
                )
    return refs


def rounded_macros(facts: NutritionFacts) -> Dict[str, float]:
    """Calories as int, grams to one decimal.

    Raises:
        ValueError: If any value is NaN or infinite
    """
    raw = {
        "calories": facts.calories,
        "protein": facts.protein_g,
        "carbs": facts.carbs_g,
        "fat": facts.fat_g,
    }
    for key, value in raw.items():
        if value is None or math.isnan(value) or math.isinf(value):
            raise ValueError(f"Invalid {key} value from lookup: {value}")
    return {
        "calories": int(round(raw["calories"])),
        "protein": round(raw["protein"], 1),
        "carbs": round(raw["carbs"], 1),
        "fat": round(raw["fat"], 1),
    }


class MacroRecalculator:
    """Look up every meal of a stored plan and write back its macros."""

    def __init__(
        self,
        store: Any,
        lookup: NutritionLookup,
        batch_size: int = BATCH_SIZE,
        meal_timeout: float = MEAL_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_pause: float = BATCH_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.lookup = lookup
        self.batch_size = batch_size
        self.meal_timeout = meal_timeout
        self.max_attempts = max_attempts
        self.batch_pause = batch_pause
        self._sleep = sleep

    def recalculate(self, user_id: str, week_key: str) -> RecalculationSummary:
        """Recalculate all meals of one plan. Never raises."""
        summary = RecalculationSummary()
        try:
            with log_workflow(logger, "macro_recalculation", user_id=user_id, week=week_key):
                plan = self.store.get_plan(user_id, week_key)
                if not plan:
                    print(f"   ⚠️ No plan {week_key} for {user_id}, nothing to recalculate", file=sys.stderr)
                    return summary

                refs = collect_meal_refs(plan)
                expected = {"generatedAt": plan.get("generatedAt")}
                print(f"   🔬 Recalculating macros for {len(refs)} meals", file=sys.stderr)
                for start in range(0, len(refs), self.batch_size):
                    if start > 0:
                        self._sleep(self.batch_pause)
                    self._run_batch(user_id, week_key, refs[start : start + self.batch_size], summary, expected)
        except (StalePlanError, KeyError) as e:
            summary.stale = True
            print(f"   ⚠️ Plan {week_key} was replaced during recalculation, stopping: {e}", file=sys.stderr)
        except Exception as e:
            print(f"   ❌ Macro recalculation aborted: {e}", file=sys.stderr)

        logger.info(
            "Macro recalculation finished",
            extra={
                "extra_fields": {
                    "user_id": user_id,
                    "week": week_key,
                    "updated": len(summary.updated),
                    "failed": len(summary.failed),
                    "stale": summary.stale,
                }
            },
        )
        print(
            f"   ✅ Macro recalculation: {len(summary.updated)} updated, {len(summary.failed)} kept estimates",
            file=sys.stderr,
        )
        return summary

    def _run_batch(
        self,
        user_id: str,
        week_key: str,
        batch: List[MealRef],
        summary: RecalculationSummary,
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        pending = list(batch)
        for attempt in range(self.max_attempts):
            retry: List[MealRef] = []
            rate_limited = False
            executor = concurrent.futures.ThreadPoolExecutor(max_workers=len(pending), thread_name_prefix="macro-recalc")
            try:
                futures = [(ref, executor.submit(self.lookup.lookup_meal, ref.ingredients)) for ref in pending]
                for ref, future in futures:
                    try:
                        macros = rounded_macros(future.result(timeout=self.meal_timeout))
                    except concurrent.futures.TimeoutError:
                        error: Exception = TimeoutError(f"lookup exceeded {self.meal_timeout:.0f}s")
                    except Exception as e:
                        error = e
                    else:
                        self._write_back(user_id, week_key, ref, macros, expected)
                        summary.updated.append(ref.path)
                        continue

                    if attempt + 1 < self.max_attempts and is_retriable_error(error):
                        rate_limited = rate_limited or is_rate_limit_error(error)
                        retry.append(ref)
                    else:
                        summary.failed[ref.path] = f"{type(error).__name__}: {error}"
                        logger.warning(
                            "Meal macro lookup failed, keeping estimate",
                            extra={
                                "extra_fields": {
                                    "path": ref.path,
                                    "meal": ref.name,
                                    "attempts": attempt + 1,
                                    "error": str(error),
                                    "status_code": getattr(error, "status_code", None),
                                }
                            },
                        )
            finally:
                executor.shutdown(wait=False)

            if not retry:
                return
            delay = linear_backoff_delay(attempt, rate_limited=rate_limited)
            print(
                f"   🔄 Retrying {len(retry)} meal lookups in {delay:.0f}s (attempt {attempt + 2}/{self.max_attempts})",
                file=sys.stderr,
            )
            self._sleep(delay)
            pending = retry

    def _write_back(
        self,
        user_id: str,
        week_key: str,
        ref: MealRef,
        macros: Dict[str, float],
        expected: Optional[Dict[str, Any]],
    ) -> None:
        self.store.update_plan_fields(
            user_id,
            week_key,
            {f"{ref.path}.{key}": value for key, value in macros.items()},
            expected=expected,
        )


def schedule_recalculation(
    recalculator: Optional[MacroRecalculator],
    user_id: str,
    week_key: str,
) -> Optional[threading.Thread]:
    """Start recalculation on a daemon thread and return immediately."""
    if recalculator is None:
        return None
    thread = threading.Thread(
        target=recalculator.recalculate,
        args=(user_id, week_key),
        name=f"macro-recalc-{user_id}-{week_key}",
        daemon=True,
    )
    thread.start()
    return thread
