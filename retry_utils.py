"""Retry helpers shared by the generator loop and the nutrition lookups.

Provides:
- linear_backoff_delay: Delay that grows with the retry number, longer for rate limits
- is_rate_limit_error / is_retriable_error: Error classification
- CircuitBreaker: Opens after consecutive failures, auto-recovers
- get_nutrition_circuit_breaker: Shared instance for the nutrition API
"""

import os
import sys
import threading
import time
from typing import Optional


# Configuration (can be overridden via environment variables)
DEFAULT_MAX_ATTEMPTS = int(os.getenv("NUTRITION_MAX_RETRIES", "3"))
RATE_LIMIT_DELAY_SECONDS = float(os.getenv("NUTRITION_RATE_LIMIT_DELAY", "5.0"))
GENERIC_RETRY_DELAY_SECONDS = float(os.getenv("NUTRITION_RETRY_DELAY", "2.0"))

# Errors that should trigger retry
RATE_LIMIT_STATUS_CODES = {429}
RETRIABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}
RATE_LIMIT_KEYWORDS = ("rate limit", "too many requests", "429", "quota")
RETRIABLE_KEYWORDS = (
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "connection",
    "500",
    "502",
    "503",
    "504",
)


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open and requests are blocked."""

    pass


def _status_code(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(exc: Exception) -> bool:
    """Check if an error means the upstream asked us to slow down."""
    if exc.__class__.__name__ in {"RateLimitError", "RateLimitException"}:
        return True
    if _status_code(exc) in RATE_LIMIT_STATUS_CODES:
        return True
    message = str(exc).lower()
    return any(kw in message for kw in RATE_LIMIT_KEYWORDS)


def is_retriable_error(exc: Exception) -> bool:
    """Check if an error is retriable (rate limit, timeout, 5xx).

    Args:
        exc: Exception to check

    Returns:
        True if the error should trigger a retry
    """
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True

    status = _status_code(exc)
    if status is not None:
        return status in RETRIABLE_STATUS_CODES

    message = str(exc).lower()
    return any(kw in message for kw in RETRIABLE_KEYWORDS)


def linear_backoff_delay(
    retry_number: int,
    rate_limited: bool = False,
    rate_limit_delay: float = RATE_LIMIT_DELAY_SECONDS,
    generic_delay: float = GENERIC_RETRY_DELAY_SECONDS,
) -> float:
    """Delay before the next attempt: base * (retry_number + 1).

    Args:
        retry_number: 0 for the first retry, 1 for the second...
        rate_limited: Use the (longer) rate-limit base delay
        rate_limit_delay: Base delay for rate-limit responses
        generic_delay: Base delay for other retriable failures

    Returns:
        Delay in seconds
    """
    base = rate_limit_delay if rate_limited else generic_delay
    return base * (retry_number + 1)


class CircuitBreaker:
    """Simple thread-safe circuit breaker.

    Opens after `failure_threshold` consecutive failures.
    Half-opens after `recovery_timeout` seconds.
    Closes after first success in half-open state.

    States:
    - closed: Normal operation, requests go through
    - open: Requests blocked, waiting for recovery timeout
    - half-open: Testing if service recovered
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"
        self._lock = threading.Lock()

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()
            if self.failure_count >= self.failure_threshold and self.state != "open":
                self.state = "open"
                print(
                    f"   ⚡ Circuit breaker '{self.name}' OPENED after {self.failure_count} failures",
                    file=sys.stderr,
                )

    def record_success(self) -> None:
        with self._lock:
            if self.state == "half-open":
                print(
                    f"   ⚡ Circuit breaker '{self.name}' CLOSED after success",
                    file=sys.stderr,
                )
            self.failure_count = 0
            self.state = "closed"

    def can_execute(self) -> bool:
        """Check if requests can proceed."""
        with self._lock:
            if self.state != "open":
                return True

            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                self.state = "half-open"
                print(
                    f"   ⚡ Circuit breaker '{self.name}' HALF-OPEN, testing...",
                    file=sys.stderr,
                )
                return True
            return False

    def reset(self) -> None:
        with self._lock:
            self.failure_count = 0
            self.state = "closed"
            self.last_failure_time = None


_nutrition_circuit_breaker: Optional[CircuitBreaker] = None


def get_nutrition_circuit_breaker() -> CircuitBreaker:
    """Get the shared nutrition API circuit breaker."""
    global _nutrition_circuit_breaker
    if _nutrition_circuit_breaker is None:
        _nutrition_circuit_breaker = CircuitBreaker(
            name="nutrition_api",
            failure_threshold=int(os.getenv("NUTRITION_CIRCUIT_FAILURE_THRESHOLD", "5")),
            recovery_timeout=float(os.getenv("NUTRITION_CIRCUIT_RECOVERY_TIMEOUT", "60.0")),
        )
    return _nutrition_circuit_breaker


def reset_nutrition_circuit_breaker() -> None:
    """Reset the shared breaker (useful for testing)."""
    if _nutrition_circuit_breaker is not None:
        _nutrition_circuit_breaker.reset()
