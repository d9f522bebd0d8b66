"""Unit tests for the generation retry / escalation state machine."""
import time

import pytest

from generation_orchestrator import (
    GenerationOrchestrator,
    OrchestratorState,
    Transition,
    next_transition,
    validate_plan_structure,
)
from pipeline_errors import DeadlineExceededError, InternalError, ResourceExhaustedError
from schemas import AttemptOutcome, GenerationRequest, GenerationResponse, ModelTier
from tests.fixtures.fakes import (
    AuthenticationError,
    FakeClock,
    FakeGenerator,
    RateLimitError,
    RecordingSleep,
)
from tests.fixtures.plans import make_plan_document, plan_json

REQUEST = GenerationRequest(
    system_instructions="Return JSON",
    user_prompt="Plan my week",
    max_output_tokens=8000,
    temperature=0.8,
)


def _orchestrator(responses, **kwargs):
    generator = FakeGenerator(responses)
    sleep = kwargs.pop("sleep", RecordingSleep())
    return GenerationOrchestrator(generator, sleep=sleep, **kwargs), generator, sleep


@pytest.mark.priority_high
@pytest.mark.unit
class TestTransitions:
    @pytest.mark.parametrize(
        "outcome,attempt_index,expected",
        [
            (AttemptOutcome.SUCCESS, 0, Transition.ACCEPT),
            (AttemptOutcome.FATAL, 0, Transition.ABORT),
            (AttemptOutcome.MALFORMED, 0, Transition.RETRY_SAME_TIER),
            (AttemptOutcome.RATE_LIMITED, 3, Transition.RETRY_SAME_TIER),
            (AttemptOutcome.TIMEOUT, 4, Transition.ESCALATE),
            (AttemptOutcome.SERVER_ERROR, 5, Transition.EXHAUSTED),
        ],
    )
    def test_next_transition(self, outcome, attempt_index, expected):
        assert next_transition(outcome, attempt_index, 6) is expected

    def test_structure_checks(self):
        assert validate_plan_structure(make_plan_document()) is None
        assert "expected object" in validate_plan_structure([1, 2])
        assert "missing 'meals'" in validate_plan_structure({"days": []})
        assert "6 days" in validate_plan_structure(make_plan_document(days=6))


@pytest.mark.priority_high
@pytest.mark.unit
class TestOrchestratorRun:
    @pytest.mark.timeout(10)
    def test_first_attempt_success(self):
        orchestrator, generator, sleep = _orchestrator([plan_json()])
        result = orchestrator.run(REQUEST)

        assert len(result.document["meals"]) == 7
        assert result.metadata.tier is ModelTier.ECONOMY
        assert result.metadata.attempt_count == 1
        assert result.metadata.model == "fake-economy"
        assert result.metadata.token_usage == 1200
        assert orchestrator.state is OrchestratorState.ACCEPTED
        assert sleep.calls == []

    @pytest.mark.timeout(10)
    def test_too_short_then_success(self):
        orchestrator, _, sleep = _orchestrator(['{"meals": []}', plan_json()])
        result = orchestrator.run(REQUEST)

        outcomes = [attempt.outcome for attempt in result.metadata.attempts]
        assert outcomes == [AttemptOutcome.TOO_SHORT, AttemptOutcome.SUCCESS]
        assert result.metadata.attempt_count == 2
        assert sleep.calls == [2.0]

    @pytest.mark.timeout(10)
    def test_malformed_and_wrong_day_count_are_retried(self):
        orchestrator, generator, _ = _orchestrator(["x" * 2500, plan_json(days=6), plan_json()])
        result = orchestrator.run(REQUEST)

        outcomes = [attempt.outcome for attempt in result.metadata.attempts]
        assert outcomes == [AttemptOutcome.MALFORMED, AttemptOutcome.MALFORMED, AttemptOutcome.SUCCESS]
        assert "6 days" in result.metadata.attempts[1].detail
        assert result.metadata.attempt_count == 3
        assert result.metadata.tier is ModelTier.ECONOMY
        assert generator.tiers == [ModelTier.ECONOMY] * 3

    @pytest.mark.timeout(10)
    def test_repaired_output_is_accepted(self):
        fenced = "```json\n" + plan_json().rstrip("}").rstrip() + ",\n}\n```"
        orchestrator, _, _ = _orchestrator([fenced])
        result = orchestrator.run(REQUEST)
        assert result.metadata.attempts[0].detail == "repaired in 1 passes"

    @pytest.mark.timeout(10)
    def test_last_attempt_escalates_to_premium(self):
        orchestrator, generator, _ = _orchestrator(["short"] * 5 + [plan_json()])
        result = orchestrator.run(REQUEST)

        assert generator.tiers == [ModelTier.ECONOMY] * 5 + [ModelTier.PREMIUM]
        assert result.metadata.tier is ModelTier.PREMIUM
        assert result.metadata.attempt_count == 6

    @pytest.mark.timeout(10)
    def test_exhausted_malformed_is_internal(self):
        orchestrator, generator, _ = _orchestrator(["short"])
        with pytest.raises(InternalError) as exc:
            orchestrator.run(REQUEST)

        assert exc.value.attempt_count == 6
        assert len(generator.calls) == 6
        assert orchestrator.state is OrchestratorState.EXHAUSTED

    @pytest.mark.timeout(10)
    def test_exhausted_rate_limit_is_resource_exhausted(self):
        orchestrator, _, sleep = _orchestrator([RateLimitError("429 Too Many Requests")])
        with pytest.raises(ResourceExhaustedError) as exc:
            orchestrator.run(REQUEST)

        assert exc.value.code == "resource-exhausted"
        assert sleep.calls == [5.0] * 5

    @pytest.mark.timeout(10)
    def test_exhausted_timeout_is_deadline(self):
        orchestrator, _, _ = _orchestrator([TimeoutError("read timed out")])
        with pytest.raises(DeadlineExceededError):
            orchestrator.run(REQUEST)

    @pytest.mark.timeout(10)
    def test_rate_limit_recovers(self):
        orchestrator, _, _ = _orchestrator([RateLimitError("slow down"), plan_json()])
        result = orchestrator.run(REQUEST)
        assert result.metadata.attempts[0].outcome is AttemptOutcome.RATE_LIMITED

    @pytest.mark.timeout(10)
    def test_fatal_aborts_without_retry(self):
        orchestrator, generator, sleep = _orchestrator([AuthenticationError("bad key"), plan_json()])
        with pytest.raises(InternalError) as exc:
            orchestrator.run(REQUEST)

        assert exc.value.attempt_count == 1
        assert len(generator.calls) == 1
        assert sleep.calls == []

    @pytest.mark.timeout(10)
    def test_budget_stops_new_attempts(self):
        clock = FakeClock()
        sleep = RecordingSleep(clock=clock, advance=300.0)
        orchestrator, generator, _ = _orchestrator(["short"], sleep=sleep, clock=clock, total_budget=540)

        with pytest.raises(DeadlineExceededError) as exc:
            orchestrator.run(REQUEST)

        # 0s and 300s leave enough budget, 600s does not
        assert exc.value.attempt_count == 2
        assert len(generator.calls) == 2

    @pytest.mark.timeout(10)
    def test_attempt_timeout_capped_by_remaining_budget(self):
        clock = FakeClock()
        sleep = RecordingSleep(clock=clock, advance=400.0)
        orchestrator, generator, _ = _orchestrator(
            ["short", plan_json()], sleep=sleep, clock=clock, total_budget=540, attempt_timeout=240
        )
        orchestrator.run(REQUEST)
        assert [call["timeout"] for call in generator.calls] == [240, 140]

    @pytest.mark.timeout(30)
    def test_hung_generator_times_out(self):
        class SlowGenerator:
            def generate(self, request, tier, timeout):
                time.sleep(1.5)
                return GenerationResponse(text=plan_json())

        orchestrator = GenerationOrchestrator(
            SlowGenerator(), max_attempts=1, attempt_timeout=0.01, sleep=RecordingSleep()
        )
        with pytest.raises(DeadlineExceededError):
            orchestrator.run(REQUEST)
