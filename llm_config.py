"""Centralized generator configuration - single source of truth.

Model tiers, generation parameters and the attempt budget used by
generation_orchestrator.py and llm_client.py.

Two tiers exist: "economy" handles every attempt but the last one, which
escalates to "premium". Override the model names via environment variables
to point at another provider supported by litellm.
"""

import os
from typing import Dict, Optional

# Default endpoint (None lets litellm use the provider default)
DEFAULT_BASE_URL: Optional[str] = os.getenv("OPENAI_API_BASE") or None
DEFAULT_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY") or None

ECONOMY_MODEL = os.getenv("BLUEPRINT_ECONOMY_MODEL", "gpt-4o-mini")
PREMIUM_MODEL = os.getenv("BLUEPRINT_PREMIUM_MODEL", "gpt-4o")

MODEL_TIERS: Dict[str, str] = {
    "economy": ECONOMY_MODEL,
    "premium": PREMIUM_MODEL,
}

# Attempt budget: attempts 0..4 economy, attempt 5 premium
MAX_ATTEMPTS = 6
ECONOMY_ATTEMPTS = 5

# Generation parameters
GENERATION_TEMPERATURE = float(os.getenv("BLUEPRINT_TEMPERATURE", "0.8"))
MAX_OUTPUT_TOKENS = int(os.getenv("BLUEPRINT_MAX_OUTPUT_TOKENS", "8000"))

# Timeouts (seconds)
ATTEMPT_TIMEOUT_SECONDS = float(os.getenv("BLUEPRINT_ATTEMPT_TIMEOUT", "240"))
TOTAL_BUDGET_SECONDS = float(os.getenv("BLUEPRINT_TOTAL_BUDGET", "540"))
# Do not start a new attempt with less than this left in the budget
MIN_ATTEMPT_WINDOW_SECONDS = float(os.getenv("BLUEPRINT_MIN_ATTEMPT_WINDOW", "30"))

# A complete 7-day plan is several thousand characters; anything shorter was cut off
MIN_RESPONSE_LENGTH = int(os.getenv("BLUEPRINT_MIN_RESPONSE_LENGTH", "2000"))

# Backoff before the next attempt, per failure kind
RATE_LIMIT_BACKOFF_SECONDS = float(os.getenv("BLUEPRINT_RATE_LIMIT_BACKOFF", "5.0"))
RETRY_BACKOFF_SECONDS = float(os.getenv("BLUEPRINT_RETRY_BACKOFF", "2.0"))


def tier_for_attempt(attempt_index: int) -> str:
    """Return the model tier for a 0-indexed attempt.

    Args:
        attempt_index: 0..MAX_ATTEMPTS-1

    Returns:
        "economy" for the first ECONOMY_ATTEMPTS attempts, "premium" afterwards
    """
    return "economy" if attempt_index < ECONOMY_ATTEMPTS else "premium"


def get_model_for_tier(tier: str) -> str:
    """Resolve the model name configured for a tier.

    Raises:
        KeyError: For an unknown tier name
    """
    return MODEL_TIERS[tier]
