"""Unit tests for error classification, backoff and the circuit breaker."""
import pytest

from retry_utils import (
    CircuitBreaker,
    is_rate_limit_error,
    is_retriable_error,
    linear_backoff_delay,
)
from tests.fixtures.fakes import AuthenticationError, RateLimitError


class StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


@pytest.mark.priority_high
@pytest.mark.unit
class TestClassification:
    def test_rate_limit_by_class_name(self):
        assert is_rate_limit_error(RateLimitError("slow down"))

    def test_rate_limit_by_status_and_message(self):
        assert is_rate_limit_error(StatusError("nope", 429))
        assert is_rate_limit_error(Exception("Quota exceeded for model"))
        assert not is_rate_limit_error(StatusError("server error", 500))

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retriable_statuses(self, status):
        assert is_retriable_error(StatusError("boom", status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_not_retriable(self, status):
        assert not is_retriable_error(StatusError("connection timeout", status))

    def test_builtin_timeouts_retriable(self):
        assert is_retriable_error(TimeoutError())
        assert is_retriable_error(ConnectionError())

    def test_message_fallback(self):
        assert is_retriable_error(Exception("Request timed out"))
        assert not is_retriable_error(Exception("invalid api key"))

    def test_auth_error_not_retriable(self):
        assert not is_retriable_error(AuthenticationError("bad key"))


@pytest.mark.priority_high
@pytest.mark.unit
class TestLinearBackoff:
    def test_generic(self):
        delays = [linear_backoff_delay(n, rate_limit_delay=5.0, generic_delay=2.0) for n in range(3)]
        assert delays == [2.0, 4.0, 6.0]

    def test_rate_limited(self):
        delays = [linear_backoff_delay(n, True, rate_limit_delay=5.0, generic_delay=2.0) for n in range(3)]
        assert delays == [5.0, 10.0, 15.0]


@pytest.mark.priority_medium
@pytest.mark.unit
class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("t", failure_threshold=3, recovery_timeout=60)
        for _ in range(2):
            breaker.record_failure()
        assert breaker.can_execute()
        breaker.record_failure()
        assert breaker.state == "open"
        assert not breaker.can_execute()

    def test_success_resets_count(self):
        breaker = CircuitBreaker("t", failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == "closed"

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker("t", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        assert breaker.can_execute()
        assert breaker.state == "half-open"
        breaker.record_success()
        assert breaker.state == "closed"

    def test_reset(self):
        breaker = CircuitBreaker("t", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        breaker.reset()
        assert breaker.can_execute()
        assert breaker.failure_count == 0
