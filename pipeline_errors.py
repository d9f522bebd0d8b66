"""Typed errors surfaced by the weekly blueprint pipeline.

Each error carries a stable ``code`` that callers (HTTP layer, schedulers)
map to their own status vocabulary:

- failed-precondition: profile incomplete or unknown dietary preference
- permission-denied: caller lacks the elevated tier
- resource-exhausted: generator kept rate limiting us
- deadline-exceeded: generator kept timing out / overall budget spent
- aborted: another generation for the same week is running
- internal: everything else (malformed output, persistence failure)
"""

from typing import Optional


class BlueprintError(Exception):
    """Base class for pipeline failures surfaced to the caller."""

    code = "internal"

    def __init__(self, message: str, attempt_count: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.attempt_count = attempt_count

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.attempt_count is not None:
            payload["attempt_count"] = self.attempt_count
        return payload


class PreconditionFailedError(BlueprintError):
    code = "failed-precondition"


class PermissionDeniedError(BlueprintError):
    code = "permission-denied"


class ResourceExhaustedError(BlueprintError):
    code = "resource-exhausted"


class DeadlineExceededError(BlueprintError):
    code = "deadline-exceeded"


class GenerationConflictError(BlueprintError):
    """Raised when the same (user, week) is already being generated."""

    code = "aborted"


class InternalError(BlueprintError):
    code = "internal"
