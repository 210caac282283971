"""
Tests for the matcher error taxonomy, classification and message sanitizing.
"""

import asyncio
import json

import httpx
import openai
import pytest
import requests

from jobmatch.services.match.errors import (
    CircuitOpenError,
    ErrorClassifier,
    ErrorType,
    JobNotFoundError,
    MatcherTimeoutError,
    NoProfileError,
    StructuredOutputError,
    categorize_error,
    is_rate_limit_error,
    is_retryable_error,
    is_server_error,
    sanitize_error_message,
)


def _openai_status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("provider error", response=response, body=None)


class TestCategorizeError:
    """Foreign and native exceptions map onto the taxonomy."""

    def test_native_errors_keep_their_type(self):
        assert categorize_error(NoProfileError()) is ErrorType.VALIDATION
        assert categorize_error(JobNotFoundError(4)) is ErrorType.VALIDATION
        assert categorize_error(MatcherTimeoutError("slow")) is ErrorType.TIMEOUT
        assert categorize_error(CircuitOpenError("open")) is ErrorType.CIRCUIT_BREAKER
        assert categorize_error(StructuredOutputError("empty", ErrorType.NO_OBJECT)) is ErrorType.NO_OBJECT

    def test_openai_errors(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        assert categorize_error(openai.APITimeoutError(request=request)) is ErrorType.TIMEOUT
        assert categorize_error(openai.APIConnectionError(request=request)) is ErrorType.NETWORK
        assert categorize_error(_openai_status_error(openai.RateLimitError, 429)) is ErrorType.RATE_LIMIT
        assert categorize_error(_openai_status_error(openai.InternalServerError, 503)) is ErrorType.RATE_LIMIT
        assert categorize_error(_openai_status_error(openai.BadRequestError, 400)) is ErrorType.VALIDATION

    def test_requests_errors(self):
        assert categorize_error(requests.Timeout("read timed out")) is ErrorType.TIMEOUT
        assert categorize_error(requests.ConnectionError("refused")) is ErrorType.NETWORK
        response = requests.Response()
        response.status_code = 429
        assert categorize_error(requests.HTTPError("too many", response=response)) is ErrorType.RATE_LIMIT

    def test_builtin_errors(self):
        assert categorize_error(asyncio.TimeoutError()) is ErrorType.TIMEOUT
        assert categorize_error(json.JSONDecodeError("bad", "{", 0)) is ErrorType.JSON_PARSE

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Request timed out", ErrorType.TIMEOUT),
            ("fetch failed: ECONNREFUSED", ErrorType.NETWORK),
            ("HTTP 503 Service Unavailable", ErrorType.RATE_LIMIT),
            ("status: 529 overloaded", ErrorType.RATE_LIMIT),
            ("Rate limit reached for requests", ErrorType.RATE_LIMIT),
            ("You exceeded your current quota", ErrorType.RATE_LIMIT),
            ("Unexpected token < in JSON", ErrorType.JSON_PARSE),
            ("invalid schema for response", ErrorType.VALIDATION),
            ("something odd happened", ErrorType.UNKNOWN),
        ],
    )
    def test_message_patterns(self, message, expected):
        assert categorize_error(RuntimeError(message)) is expected

    def test_custom_adapter_takes_precedence(self):
        classifier = ErrorClassifier()
        classifier.register(lambda e: ErrorType.NETWORK if isinstance(e, KeyError) else None)
        assert classifier.classify(KeyError("x")) is ErrorType.NETWORK
        assert classifier.classify(RuntimeError("x")) is ErrorType.UNKNOWN


class TestRetryability:
    """Only validation and circuit-breaker errors are final."""

    def test_non_retryable(self):
        assert not is_retryable_error(NoProfileError())
        assert not is_retryable_error(CircuitOpenError("open"))
        assert not is_retryable_error(RuntimeError("schema validation failed"))

    def test_retryable(self):
        assert is_retryable_error(MatcherTimeoutError("slow"))
        assert is_retryable_error(StructuredOutputError("no json"))
        assert is_retryable_error(RuntimeError("connection reset"))
        assert is_retryable_error(RuntimeError("something odd happened"))

    def test_rate_limit_and_server_detection(self):
        assert is_rate_limit_error(RuntimeError("429 Too Many Requests"))
        assert is_server_error(RuntimeError("502 Bad Gateway"))
        assert not is_server_error(RuntimeError("bad request"))


class TestSanitizeErrorMessage:
    """Secrets and PII are redacted before storage."""

    def test_email_redacted(self):
        assert "[EMAIL_REDACTED]" in sanitize_error_message("failed for jane.doe@example.com")

    def test_bearer_token_redacted(self):
        out = sanitize_error_message("Authorization: Bearer abc.def.ghi")
        assert "abc.def.ghi" not in out
        assert "Bearer [TOKEN_REDACTED]" in out

    def test_hex_key_redacted(self):
        out = sanitize_error_message("key 0123456789abcdef0123456789abcdef rejected")
        assert "0123456789abcdef0123456789abcdef" not in out

    def test_long_number_redacted(self):
        assert "[NUMERIC_REDACTED]" in sanitize_error_message("card 4111111111111111 declined")

    def test_secret_json_payload_redacted(self):
        out = sanitize_error_message('body {"api_key": "x", "model": "m"} rejected')
        assert "[JSON_PAYLOAD_REDACTED]" in out
        assert '"api_key"' not in out

    def test_truncated(self):
        assert len(sanitize_error_message("word " * 500)) == 1000
