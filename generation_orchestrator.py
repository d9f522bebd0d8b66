"""Retry / escalation state machine around the plan generator.

States:
    IDLE -> ATTEMPTING -> {SUCCESS | MALFORMED | TOO_SHORT | TIMEOUT |
                           RATE_LIMITED | SERVER_ERROR | FATAL}
         -> ACCEPTED | ATTEMPTING (retry / escalate) | EXHAUSTED

Budget: at most MAX_ATTEMPTS attempts; attempts 0..4 use the economy tier
and the final attempt escalates to premium. Attempts run strictly one at a
time, each raced against a wall-clock timeout.
"""

from __future__ import annotations

import concurrent.futures
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from json_recovery import JSONRecoveryError, parse_model_json
from llm_client import TextGenerator, classify_generation_error
from llm_config import (
    ATTEMPT_TIMEOUT_SECONDS,
    MAX_ATTEMPTS,
    MIN_ATTEMPT_WINDOW_SECONDS,
    MIN_RESPONSE_LENGTH,
    RATE_LIMIT_BACKOFF_SECONDS,
    RETRY_BACKOFF_SECONDS,
    TOTAL_BUDGET_SECONDS,
    tier_for_attempt,
)
from observability import log_data_structure, log_generation_attempt, setup_structured_logger
from pipeline_errors import (
    BlueprintError,
    DeadlineExceededError,
    InternalError,
    ResourceExhaustedError,
)
from schemas import (
    AttemptOutcome,
    GenerationAttempt,
    GenerationMetadata,
    GenerationRequest,
    GenerationResponse,
    ModelTier,
)
from validation_config import DAYS_PER_PLAN

logger = setup_structured_logger("blueprint.generation")


class OrchestratorState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    MALFORMED = "malformed"
    TOO_SHORT = "too_short"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    FATAL = "fatal"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


class Transition(str, Enum):
    ACCEPT = "accept"
    RETRY_SAME_TIER = "retry_same_tier"
    ESCALATE = "escalate"
    EXHAUSTED = "exhausted"
    ABORT = "abort"


# Outcome -> (action, backoff seconds before the next attempt).
# RETRY_SAME_TIER is turned into ESCALATE or EXHAUSTED by the attempt budget.
TRANSITION_TABLE: Dict[AttemptOutcome, Tuple[Transition, float]] = {
    AttemptOutcome.SUCCESS: (Transition.ACCEPT, 0.0),
    AttemptOutcome.FATAL: (Transition.ABORT, 0.0),
    AttemptOutcome.RATE_LIMITED: (Transition.RETRY_SAME_TIER, RATE_LIMIT_BACKOFF_SECONDS),
    AttemptOutcome.SERVER_ERROR: (Transition.RETRY_SAME_TIER, RETRY_BACKOFF_SECONDS),
    AttemptOutcome.TIMEOUT: (Transition.RETRY_SAME_TIER, RETRY_BACKOFF_SECONDS),
    AttemptOutcome.TOO_SHORT: (Transition.RETRY_SAME_TIER, RETRY_BACKOFF_SECONDS),
    AttemptOutcome.MALFORMED: (Transition.RETRY_SAME_TIER, RETRY_BACKOFF_SECONDS),
}


def next_transition(outcome: AttemptOutcome, attempt_index: int, max_attempts: int = MAX_ATTEMPTS) -> Transition:
    """Resolve the table action against the remaining attempt budget."""
    action, _ = TRANSITION_TABLE[outcome]
    if action is not Transition.RETRY_SAME_TIER:
        return action
    if attempt_index + 1 >= max_attempts:
        return Transition.EXHAUSTED
    if tier_for_attempt(attempt_index + 1) != tier_for_attempt(attempt_index):
        return Transition.ESCALATE
    return Transition.RETRY_SAME_TIER


def validate_plan_structure(document: Any, expected_days: int = DAYS_PER_PLAN) -> Optional[str]:
    """Return a problem description, or None if the document has a valid day array."""
    if not isinstance(document, dict):
        return f"top-level value is {type(document).__name__}, expected object"
    meals = document.get("meals")
    if not isinstance(meals, list):
        return "missing 'meals' day array"
    if len(meals) != expected_days:
        return f"'meals' has {len(meals)} days, expected {expected_days}"
    return None


@dataclass
class GenerationResult:
    document: Dict[str, Any]
    metadata: GenerationMetadata


class GenerationOrchestrator:
    """Drive a TextGenerator until it yields a structurally valid 7-day plan."""

    def __init__(
        self,
        generator: TextGenerator,
        max_attempts: int = MAX_ATTEMPTS,
        attempt_timeout: float = ATTEMPT_TIMEOUT_SECONDS,
        total_budget: float = TOTAL_BUDGET_SECONDS,
        min_attempt_window: float = MIN_ATTEMPT_WINDOW_SECONDS,
        min_response_length: int = MIN_RESPONSE_LENGTH,
        expected_days: int = DAYS_PER_PLAN,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.generator = generator
        self.max_attempts = max_attempts
        self.attempt_timeout = attempt_timeout
        self.total_budget = total_budget
        self.min_attempt_window = min_attempt_window
        self.min_response_length = min_response_length
        self.expected_days = expected_days
        self._sleep = sleep
        self._clock = clock
        self.state = OrchestratorState.IDLE

    def run(self, request: GenerationRequest) -> GenerationResult:
        """Run attempts until ACCEPT, ABORT or the budget is spent.

        Raises:
            ResourceExhaustedError: Last attempt was rate limited
            DeadlineExceededError: Last attempt timed out, or the overall budget ran out
            InternalError: Malformed/short output on every attempt, or a fatal error
        """
        attempts: List[GenerationAttempt] = []
        token_usage = 0
        started = self._clock()
        self.state = OrchestratorState.IDLE

        for attempt_index in range(self.max_attempts):
            remaining = self.total_budget - (self._clock() - started)
            if attempt_index > 0 and remaining < self.min_attempt_window:
                self.state = OrchestratorState.EXHAUSTED
                print(
                    f"   ⏰ Generation budget spent after {attempt_index} attempts",
                    file=sys.stderr,
                )
                raise DeadlineExceededError(
                    f"Generation budget of {self.total_budget:.0f}s exhausted after "
                    f"{attempt_index} attempts",
                    attempt_count=attempt_index,
                )

            tier = ModelTier(tier_for_attempt(attempt_index))
            timeout = max(min(self.attempt_timeout, remaining), 1.0)
            self.state = OrchestratorState.ATTEMPTING

            attempt_started = self._clock()
            outcome, document, detail, response = self._attempt(request, tier, timeout)
            duration_ms = (self._clock() - attempt_started) * 1000
            token_usage += response.token_usage if response else 0

            attempt = GenerationAttempt(
                tier=tier,
                attempt_index=attempt_index,
                outcome=outcome,
                model=response.model if response else "",
                duration_ms=duration_ms,
                detail=detail,
            )
            attempts.append(attempt)
            log_generation_attempt(
                logger, attempt_index, tier.value, attempt.model, outcome.value, duration_ms, detail
            )
            self.state = OrchestratorState(outcome.value)

            transition = next_transition(outcome, attempt_index, self.max_attempts)
            if transition is Transition.ACCEPT:
                self.state = OrchestratorState.ACCEPTED
                print(
                    f"   ✅ Plan generated on attempt {attempt_index + 1} ({tier.value} tier)",
                    file=sys.stderr,
                )
                metadata = GenerationMetadata(
                    tier=tier,
                    attempt_count=len(attempts),
                    model=attempt.model,
                    token_usage=token_usage,
                    attempts=attempts,
                )
                return GenerationResult(document=document, metadata=metadata)

            if transition is Transition.ABORT:
                self.state = OrchestratorState.EXHAUSTED
                raise InternalError(
                    f"Generator rejected the request: {detail}",
                    attempt_count=len(attempts),
                )

            if transition is Transition.EXHAUSTED:
                break

            _, backoff = TRANSITION_TABLE[outcome]
            arrow = "⬆️ escalating to premium" if transition is Transition.ESCALATE else "🔄 retrying"
            print(
                f"   ⚠️ Attempt {attempt_index + 1}/{self.max_attempts} {outcome.value}: {detail} "
                f"({arrow} in {backoff:.0f}s)",
                file=sys.stderr,
            )
            self._sleep(backoff)

        self.state = OrchestratorState.EXHAUSTED
        raise self._exhaustion_error(attempts)

    def _attempt(
        self,
        request: GenerationRequest,
        tier: ModelTier,
        timeout: float,
    ) -> Tuple[AttemptOutcome, Optional[Dict[str, Any]], Optional[str], Optional[GenerationResponse]]:
        # A fresh single-worker pool per attempt so a hung call never blocks the next one
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="blueprint-gen")
        try:
            future = executor.submit(self.generator.generate, request, tier, timeout)
            try:
                response = future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                return AttemptOutcome.TIMEOUT, None, f"no response within {timeout:.0f}s", None
            except BlueprintError:
                raise
            except Exception as exc:  # noqa: BLE001 - classified below
                return classify_generation_error(exc), None, f"{type(exc).__name__}: {exc}", None
        finally:
            executor.shutdown(wait=False)

        text = response.text or ""
        if len(text) < self.min_response_length:
            return (
                AttemptOutcome.TOO_SHORT,
                None,
                f"response is {len(text)} chars (< {self.min_response_length})",
                response,
            )

        try:
            document, passes = parse_model_json(text)
        except JSONRecoveryError as exc:
            log_data_structure(logger, "Unrecoverable generator output", text, level="WARNING")
            return AttemptOutcome.MALFORMED, None, str(exc), response

        problem = validate_plan_structure(document, self.expected_days)
        if problem:
            return AttemptOutcome.MALFORMED, None, problem, response

        detail = f"repaired in {passes} passes" if passes else None
        return AttemptOutcome.SUCCESS, document, detail, response

    @staticmethod
    def _exhaustion_error(attempts: List[GenerationAttempt]) -> BlueprintError:
        count = len(attempts)
        last = attempts[-1].outcome if attempts else None
        message = f"Plan generation failed after {count} attempts (last outcome: {last.value if last else 'none'})"
        if last is AttemptOutcome.RATE_LIMITED:
            return ResourceExhaustedError(message, attempt_count=count)
        if last is AttemptOutcome.TIMEOUT:
            return DeadlineExceededError(message, attempt_count=count)
        return InternalError(message, attempt_count=count)
