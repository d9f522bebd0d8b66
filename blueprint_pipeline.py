"""End-to-end weekly blueprint generation for one (user, week)."""
from __future__ import annotations

import sys
import threading
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from collaborators import EntitlementChecker, Notifier, default_entitlements, default_notifier
from dietary_rules import find_dietary_violations
from generation_orchestrator import GenerationOrchestrator
from ingredient_aggregator import aggregate_shopping_list
from llm_client import LiteLLMGenerator
from macro_calculator import normalize_serving_scale, validate_weekly_macros
from macro_recalculator import MacroRecalculator, schedule_recalculation
from macro_targets import resolve_calorie_goal, resolve_macro_targets
from nutrition_lookup import UsdaNutritionClient
from observability import log_data_structure, log_workflow, setup_structured_logger
from pipeline_errors import (
    GenerationConflictError,
    InternalError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from plan_store import JsonFilePlanStore, PlanStore
from prompt_builder import build_generation_request
from schemas import BlueprintRequest, DayEntry, GeneratedPlan, MacroTarget
from variety_advisor import build_variety_context
from week_calendar import BLUEPRINT_TIMEZONE, current_week_monday, parse_week_key

logger = setup_structured_logger("blueprint.pipeline")

# Called with (user_id, week_key) once the plan is stored
RecalculationScheduler = Callable[[str, str], None]


class WeekGuard:
    """Non-blocking per-(user, week) lock: a second caller is rejected, not queued."""

    def __init__(self):
        self._active: set = set()
        self._lock = threading.Lock()

    def acquire(self, user_id: str, week: str) -> bool:
        with self._lock:
            if (user_id, week) in self._active:
                return False
            self._active.add((user_id, week))
            return True

    def release(self, user_id: str, week: str) -> None:
        with self._lock:
            self._active.discard((user_id, week))


class WeeklyBlueprintPipeline:
    """Profile -> targets -> prompt -> generation -> validation -> shopping list -> store."""

    def __init__(
        self,
        store: PlanStore,
        orchestrator: GenerationOrchestrator,
        recalculator: Optional[MacroRecalculator] = None,
        entitlements: Optional[EntitlementChecker] = None,
        notifier: Optional[Notifier] = None,
        tz_name: str = BLUEPRINT_TIMEZONE,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.recalculator = recalculator
        self.entitlements = entitlements or default_entitlements()
        self.notifier = notifier or default_notifier()
        self.tz_name = tz_name
        self._now = now
        self._guard = WeekGuard()

    def resolve_week(self, week_start_date: Optional[Union[str, date]]) -> date:
        """Monday of the requested week, or of the current week in tz_name.

        Raises:
            PreconditionFailedError: For an unparseable date
        """
        if week_start_date in (None, ""):
            return current_week_monday(self._now(), self.tz_name)
        try:
            return parse_week_key(week_start_date)
        except ValueError as e:
            raise PreconditionFailedError(f"Invalid week_start_date '{week_start_date}': {e}") from e

    def default_scheduler(self, user_id: str, week: str) -> None:
        schedule_recalculation(self.recalculator, user_id, week)

    def generate_blueprint(
        self,
        user_id: str,
        week_start_date: Optional[Union[str, date]] = None,
        schedule_recalculation: Optional[RecalculationScheduler] = None,
    ) -> GeneratedPlan:
        """Generate, validate and persist one weekly blueprint.

        Raises:
            PermissionDeniedError: User lacks the elevated tier
            PreconditionFailedError: Missing/incomplete profile or unknown diet
            GenerationConflictError: Same (user, week) already generating
            ResourceExhaustedError / DeadlineExceededError / InternalError:
                Generation or persistence failed
        """
        if not self.entitlements.is_entitled(user_id):
            raise PermissionDeniedError("Weekly blueprints require an active Pro subscription")

        profile = self.store.get_profile(user_id)
        if profile is None:
            raise PreconditionFailedError("User profile not found. Complete your nutrition profile first.")

        calorie_goal = resolve_calorie_goal(profile)
        target = resolve_macro_targets(profile, calorie_goal)
        blueprint = BlueprintRequest(user_id=user_id, week_start_date=self.resolve_week(week_start_date))
        week_start = blueprint.week_start_date
        week = blueprint.week_key

        if not self._guard.acquire(user_id, week):
            raise GenerationConflictError(f"A blueprint for week {week} is already being generated")

        try:
            with log_workflow(logger, "weekly_blueprint", user_id=user_id, week=week, preset=target.preset):
                print(
                    f"\n🍽️  Generating weekly blueprint for {user_id} (week {week}, "
                    f"{calorie_goal} kcal, {target.preset})\n",
                    file=sys.stderr,
                )
                self._delete_existing(user_id, week)

                variety = build_variety_context(self.store, user_id, week_start)
                request = build_generation_request(profile, target, variety, week_start)
                result = self.orchestrator.run(request)

                days, scaled = self._sanitize_days(result.document, target, blueprint.servings_per_recipe)
                macro_report = validate_weekly_macros(days, target, servings=blueprint.servings_per_recipe)
                if macro_report.rejected:
                    raise InternalError(
                        f"Generated plan macros out of tolerance: {', '.join(macro_report.flagged)}",
                        attempt_count=result.metadata.attempt_count,
                    )
                violations = find_dietary_violations(days, target.preset)
                shopping_list = aggregate_shopping_list(days)

                try:
                    plan = GeneratedPlan(
                        user_id=user_id,
                        week_start_date=week_start,
                        daily_calorie_target=calorie_goal,
                        meals=days,
                        shopping_list=shopping_list,
                        unit_system=profile.unit_system,
                        household_size=blueprint.servings_per_recipe,
                        generated_at=self._now(),
                        generation_metadata=result.metadata,
                        macro_targets=target,
                        macro_report=macro_report,
                        dietary_warnings=violations,
                    )
                except ValidationError as e:
                    raise InternalError(
                        f"Generated plan failed validation: {e}",
                        attempt_count=result.metadata.attempt_count,
                    ) from e

                try:
                    self.store.write_plan(user_id, week, plan.to_document())
                except Exception as e:
                    raise InternalError(
                        f"Failed to save blueprint: {e}",
                        attempt_count=result.metadata.attempt_count,
                    ) from e

                print(
                    f"   💾 Saved blueprint {week} ({sum(len(v) for v in shopping_list.values())} shopping items"
                    f"{', scaled to full recipe' if scaled else ''})",
                    file=sys.stderr,
                )
        finally:
            self._guard.release(user_id, week)

        self._notify(plan)
        self._schedule(schedule_recalculation or self.default_scheduler, user_id, week)
        return plan

    def _delete_existing(self, user_id: str, week: str) -> None:
        try:
            if self.store.delete_plan(user_id, week):
                print(f"   🗑️  Deleted existing blueprint {week}", file=sys.stderr)
        except Exception as e:
            print(f"   ⚠️ Error deleting existing blueprint (non-fatal): {e}", file=sys.stderr)
            logger.warning(
                "Existing blueprint delete failed",
                extra={"extra_fields": {"user_id": user_id, "week": week, "error": str(e)}},
            )

    def _sanitize_days(self, document: Dict, target: MacroTarget, servings: int) -> Tuple[List[DayEntry], bool]:
        """Coerce raw day dicts into DayEntry and fix per-person macros."""
        raw_days = document.get("meals") or []
        days = []
        for index, raw in enumerate(raw_days):
            try:
                days.append(DayEntry.model_validate(raw if isinstance(raw, dict) else {}))
            except ValidationError as e:
                log_data_structure(logger, f"Unusable day {index}", raw, level="WARNING")
                raise InternalError(f"Generated day {index} is invalid: {e}") from e
        return normalize_serving_scale(days, target, servings=servings)

    def _notify(self, plan: GeneratedPlan) -> None:
        try:
            self.notifier.plan_ready(
                plan.user_id,
                plan.week_key,
                {
                    "daily_calories": plan.daily_calorie_target,
                    "tier": plan.generation_metadata.tier.value,
                    "attempt_count": plan.generation_metadata.attempt_count,
                },
            )
        except Exception as e:
            print(f"   ⚠️ Plan-ready notification failed (non-fatal): {e}", file=sys.stderr)
            logger.warning(
                "Plan-ready notification failed",
                extra={"extra_fields": {"user_id": plan.user_id, "week": plan.week_key, "error": str(e)}},
            )

    def _schedule(self, scheduler: RecalculationScheduler, user_id: str, week: str) -> None:
        try:
            scheduler(user_id, week)
        except Exception as e:
            print(f"   ⚠️ Could not schedule macro recalculation (non-fatal): {e}", file=sys.stderr)
            logger.warning(
                "Macro recalculation scheduling failed",
                extra={"extra_fields": {"user_id": user_id, "week": week, "error": str(e)}},
            )


def build_default_pipeline() -> WeeklyBlueprintPipeline:
    """Wire the production collaborators from environment configuration."""
    load_dotenv()
    store = JsonFilePlanStore()
    return WeeklyBlueprintPipeline(
        store=store,
        orchestrator=GenerationOrchestrator(LiteLLMGenerator()),
        recalculator=MacroRecalculator(store, UsdaNutritionClient()),
    )
