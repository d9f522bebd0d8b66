"""Unit tests for generator error classification and the litellm adapter."""
from types import SimpleNamespace

import pytest

import llm_client
from llm_client import LiteLLMGenerator, classify_generation_error
from llm_config import ECONOMY_ATTEMPTS, MAX_ATTEMPTS, get_model_for_tier, tier_for_attempt
from schemas import AttemptOutcome, GenerationRequest, ModelTier
from tests.fixtures.fakes import AuthenticationError, RateLimitError


class StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class APIConnectionError(Exception):
    pass


@pytest.mark.priority_high
@pytest.mark.unit
class TestClassification:
    @pytest.mark.parametrize(
        "exc,outcome",
        [
            (AuthenticationError("invalid api key"), AttemptOutcome.FATAL),
            (StatusError("forbidden", 403), AttemptOutcome.FATAL),
            (RateLimitError("slow down"), AttemptOutcome.RATE_LIMITED),
            (Exception("You exceeded your current quota"), AttemptOutcome.RATE_LIMITED),
            (TimeoutError(), AttemptOutcome.TIMEOUT),
            (StatusError("gateway timeout", 504), AttemptOutcome.TIMEOUT),
            (Exception("Request timed out"), AttemptOutcome.TIMEOUT),
            (StatusError("bad gateway", 502), AttemptOutcome.SERVER_ERROR),
            (APIConnectionError("connection reset"), AttemptOutcome.SERVER_ERROR),
            (ValueError("Generator returned no choices"), AttemptOutcome.SERVER_ERROR),
        ],
    )
    def test_classify(self, exc, outcome):
        assert classify_generation_error(exc) is outcome


@pytest.mark.priority_medium
@pytest.mark.unit
class TestTiers:
    def test_tier_schedule(self):
        tiers = [tier_for_attempt(i) for i in range(MAX_ATTEMPTS)]
        assert tiers == ["economy"] * ECONOMY_ATTEMPTS + ["premium"] * (MAX_ATTEMPTS - ECONOMY_ATTEMPTS)

    def test_unknown_tier(self):
        with pytest.raises(KeyError):
            get_model_for_tier("luxury")


@pytest.mark.priority_medium
@pytest.mark.unit
class TestLiteLLMGenerator:
    def test_generate_passes_request_through(self, monkeypatch):
        captured = {}

        def fake_completion(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content='  {"meals": []}  '))],
                usage=SimpleNamespace(total_tokens=321),
            )

        monkeypatch.setattr(llm_client.litellm, "completion", fake_completion)
        request = GenerationRequest(
            system_instructions="system", user_prompt="user", max_output_tokens=4000, temperature=0.5
        )

        response = LiteLLMGenerator(api_base=None, api_key="k").generate(request, ModelTier.PREMIUM, 90.0)

        assert response.text == '{"meals": []}'
        assert response.token_usage == 321
        assert response.model == get_model_for_tier("premium")
        assert captured["messages"][0] == {"role": "system", "content": "system"}
        assert captured["messages"][1] == {"role": "user", "content": "user"}
        assert captured["max_tokens"] == 4000
        assert captured["timeout"] == 90.0
        assert captured["response_format"] == {"type": "json_object"}

    def test_no_choices_raises(self, monkeypatch):
        monkeypatch.setattr(llm_client.litellm, "completion", lambda **kwargs: SimpleNamespace(choices=[]))
        request = GenerationRequest(system_instructions="s", user_prompt="u", max_output_tokens=10, temperature=0)
        with pytest.raises(ValueError):
            LiteLLMGenerator().generate(request, ModelTier.ECONOMY, 10.0)
