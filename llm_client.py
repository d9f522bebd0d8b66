"""litellm-backed text generator and generator error classification."""

from __future__ import annotations

import sys
from typing import Any, Optional, Protocol

import litellm

from llm_config import DEFAULT_API_KEY, DEFAULT_BASE_URL, get_model_for_tier
from schemas import AttemptOutcome, GenerationRequest, GenerationResponse, ModelTier

AUTH_ERROR_NAMES = {"AuthenticationError", "PermissionDeniedError"}
TIMEOUT_ERROR_NAMES = {"Timeout", "APITimeoutError", "TimeoutError", "ReadTimeout"}
RATE_LIMIT_ERROR_NAMES = {"RateLimitError", "RateLimitException"}
SERVER_ERROR_NAMES = {
    "InternalServerError",
    "ServiceUnavailableError",
    "APIConnectionError",
    "BadGatewayError",
}

RATE_LIMIT_KEYWORDS = ("rate limit", "429", "quota", "too many requests")
TIMEOUT_KEYWORDS = ("timed out", "timeout", "deadline")


class TextGenerator(Protocol):
    """Anything that can turn a GenerationRequest into text for a tier."""

    def generate(self, request: GenerationRequest, tier: ModelTier, timeout: float) -> GenerationResponse:
        ...


def _status_code(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    return status if isinstance(status, int) else None


def classify_generation_error(exc: Exception) -> AttemptOutcome:
    """Map a generator exception to an attempt outcome.

    401/403 are FATAL (retrying cannot fix credentials); 429 is
    RATE_LIMITED; timeouts are TIMEOUT; everything else, including 5xx and
    connection failures, is SERVER_ERROR and retried.
    """
    name = exc.__class__.__name__
    status = _status_code(exc)
    message = str(exc).lower()

    if name in AUTH_ERROR_NAMES or status in (401, 403):
        return AttemptOutcome.FATAL
    if name in RATE_LIMIT_ERROR_NAMES or status == 429 or any(k in message for k in RATE_LIMIT_KEYWORDS):
        return AttemptOutcome.RATE_LIMITED
    if isinstance(exc, TimeoutError) or name in TIMEOUT_ERROR_NAMES or status in (408, 504):
        return AttemptOutcome.TIMEOUT
    if any(k in message for k in TIMEOUT_KEYWORDS):
        return AttemptOutcome.TIMEOUT
    return AttemptOutcome.SERVER_ERROR


def _extract_text(response: Any) -> str:
    choices = getattr(response, "choices", None)
    if not choices:
        raise ValueError("Generator returned no choices")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return (content or "").strip()


def _extract_usage(response: Any) -> int:
    usage = getattr(response, "usage", None)
    total = getattr(usage, "total_tokens", None) if usage is not None else None
    return int(total) if isinstance(total, (int, float)) else 0


class LiteLLMGenerator:
    """Call the configured tier model through litellm.completion()."""

    def __init__(self, api_base: Optional[str] = DEFAULT_BASE_URL, api_key: Optional[str] = DEFAULT_API_KEY):
        self.api_base = api_base
        self.api_key = api_key

    def generate(self, request: GenerationRequest, tier: ModelTier, timeout: float) -> GenerationResponse:
        model = get_model_for_tier(ModelTier(tier).value)
        print(f"   🤖 Calling {model} ({ModelTier(tier).value} tier)", file=sys.stderr)

        response = litellm.completion(
            model=model,
            messages=[
                {"role": "system", "content": request.system_instructions},
                {"role": "user", "content": request.user_prompt},
            ],
            temperature=request.temperature,
            max_tokens=request.max_output_tokens,
            response_format={"type": "json_object"},
            api_base=self.api_base,
            api_key=self.api_key,
            drop_params=True,
            timeout=timeout,
        )
        return GenerationResponse(
            text=_extract_text(response),
            token_usage=_extract_usage(response),
            model=model,
        )
