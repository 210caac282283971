"""
Tests for the model-call client setup errors.
"""

import asyncio

import pytest

from jobmatch.core.config import settings
from jobmatch.services.common.llm_client import LLMClient
from jobmatch.services.match.errors import ErrorType, MatcherValidationError, categorize_error, is_retryable_error
from jobmatch.services.match.resilience.retry import retry_with_backoff


class TestMissingApiKey:
    """A missing OpenAI key is a configuration problem, not a transient failure."""

    def test_raises_validation_error(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
        client = LLMClient(model="gpt-4.1-mini", provider="openai")

        with pytest.raises(MatcherValidationError) as exc_info:
            asyncio.run(client("system", "prompt"))
        assert categorize_error(exc_info.value) is ErrorType.VALIDATION
        assert not is_retryable_error(exc_info.value)

    def test_not_retried(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
        client = LLMClient(model="gpt-4.1-mini", provider="openai")
        calls = [0]

        async def call():
            calls[0] += 1
            return await client("system", "prompt")

        with pytest.raises(MatcherValidationError):
            asyncio.run(retry_with_backoff(call, max_retries=3, base_delay_ms=0, max_delay_ms=0, jitter_ms=0))
        assert calls[0] == 1
