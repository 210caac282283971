# jobmatch/services/match/errors.py
"""
Matcher error taxonomy.

Every failure that reaches a match log is reduced to one ErrorType. Errors raised by the
matcher itself carry their type; foreign exceptions (provider SDKs, HTTP clients, asyncio)
go through ErrorClassifier, which asks small provider adapters first and falls back to
message patterns. Validation and circuit-breaker errors are never retried.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from enum import Enum
from typing import Callable, List, Optional

import openai
import requests
from pydantic import ValidationError

logger = logging.getLogger("match.errors")


class ErrorType(str, Enum):
    NETWORK = "network"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    JSON_PARSE = "json_parse"
    NO_OBJECT = "no_object"
    TIMEOUT = "timeout"
    CIRCUIT_BREAKER = "circuit_breaker"
    UNKNOWN = "unknown"


NON_RETRYABLE_TYPES = frozenset({ErrorType.VALIDATION, ErrorType.CIRCUIT_BREAKER})


class MatcherError(Exception):
    """Base class for errors raised by the matcher."""

    error_type: ErrorType = ErrorType.UNKNOWN

    def __init__(self, message: str, *, error_type: Optional[ErrorType] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if error_type is not None:
            self.error_type = error_type
        self.retryable = retryable if retryable is not None else self.error_type not in NON_RETRYABLE_TYPES
        self.attempt_count: Optional[int] = None


class MatcherValidationError(MatcherError):
    error_type = ErrorType.VALIDATION


class NoProfileError(MatcherValidationError):
    def __init__(self, message: str = "No candidate profile found"):
        super().__init__(message)


class JobNotFoundError(MatcherValidationError):
    def __init__(self, job_id: int):
        super().__init__(f"Job with ID {job_id} not found")
        self.job_id = job_id


class MatcherTimeoutError(MatcherError):
    error_type = ErrorType.TIMEOUT


class MatcherRateLimitError(MatcherError):
    error_type = ErrorType.RATE_LIMIT


class MatcherNetworkError(MatcherError):
    error_type = ErrorType.NETWORK


class CircuitOpenError(MatcherError):
    """Raised without calling the provider while the circuit is open."""
    error_type = ErrorType.CIRCUIT_BREAKER

    def __init__(self, message: str, remaining_ms: int = 0):
        super().__init__(message)
        self.remaining_ms = remaining_ms


class StructuredOutputError(MatcherError):
    """The model answered, but no usable JSON could be recovered (json_parse / no_object)."""

    def __init__(self, message: str, error_type: ErrorType = ErrorType.JSON_PARSE, preview: str = ""):
        super().__init__(message, error_type=error_type)
        self.preview = preview


class MatchCancelledError(MatcherError):
    """The run was stopped before this job was dispatched."""

    def __init__(self, message: str = "Match cancelled before the job was attempted"):
        super().__init__(message, retryable=False)


class MatchQueueResetError(MatcherError):
    """The match queue was reset while this work was still waiting."""

    def __init__(self, message: str = "Match queue was reset before the work started"):
        super().__init__(message, retryable=False)


# ===== Classification =====

ErrorAdapter = Callable[[BaseException], Optional[ErrorType]]

SERVER_ERROR_CODES = ("502", "503", "504", "529")
RATE_LIMIT_CODES = ("429",)
_STATUS_RE = re.compile(r"(?:status|http|error)[:\s]*(\d{3})", re.IGNORECASE)


def _status_code_in(message: str) -> Optional[str]:
    match = _STATUS_RE.search(message)
    return match.group(1) if match else None


def is_server_error(error: BaseException) -> bool:
    message = str(error).lower()
    if _status_code_in(message) in SERVER_ERROR_CODES:
        return True
    if any(code in message for code in SERVER_ERROR_CODES):
        return True
    return any(
        phrase in message
        for phrase in ("bad gateway", "service unavailable", "gateway timeout", "overloaded", "temporarily unavailable")
    )


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, (MatcherRateLimitError, openai.RateLimitError)):
        return True
    message = str(error).lower()
    if _status_code_in(message) in RATE_LIMIT_CODES:
        return True
    return any(
        phrase in message
        for phrase in ("rate limit", "too many requests", "tokens per", "token limit", "quota", "throttl")
    )


def openai_error_adapter(error: BaseException) -> Optional[ErrorType]:
    """OpenAI SDK exceptions -> taxonomy."""
    if isinstance(error, openai.APITimeoutError):
        return ErrorType.TIMEOUT
    if isinstance(error, openai.APIConnectionError):
        return ErrorType.NETWORK
    if isinstance(error, (openai.RateLimitError, openai.InternalServerError)):
        return ErrorType.RATE_LIMIT
    if isinstance(error, (openai.BadRequestError, openai.AuthenticationError, openai.PermissionDeniedError)):
        return ErrorType.VALIDATION
    return None


def requests_error_adapter(error: BaseException) -> Optional[ErrorType]:
    """requests exceptions (Ollama transport) -> taxonomy."""
    if isinstance(error, requests.Timeout):
        return ErrorType.TIMEOUT
    if isinstance(error, requests.ConnectionError):
        return ErrorType.NETWORK
    if isinstance(error, requests.HTTPError) and error.response is not None:
        status = error.response.status_code
        if status == 429 or status >= 500:
            return ErrorType.RATE_LIMIT
        if status in (400, 401, 403, 404, 422):
            return ErrorType.VALIDATION
    return None


def builtin_error_adapter(error: BaseException) -> Optional[ErrorType]:
    if isinstance(error, asyncio.TimeoutError):
        return ErrorType.TIMEOUT
    if isinstance(error, json.JSONDecodeError):
        return ErrorType.JSON_PARSE
    if isinstance(error, ValidationError):
        return ErrorType.VALIDATION
    if isinstance(error, ConnectionError):
        return ErrorType.NETWORK
    return None


def classify_by_message(error: BaseException) -> ErrorType:
    message = str(error).lower()
    name = type(error).__name__

    if "CircuitBreakerOpen" in name or "circuit breaker" in message:
        return ErrorType.CIRCUIT_BREAKER
    if "NoObjectGenerated" in name or "no object generated" in message:
        return ErrorType.NO_OBJECT
    if "timeout" in message or "timed out" in message or "Timeout" in name:
        return ErrorType.TIMEOUT
    if "network" in message or "fetch" in message or "econnrefused" in message or "connection" in message:
        return ErrorType.NETWORK
    if is_server_error(error) or is_rate_limit_error(error):
        return ErrorType.RATE_LIMIT
    if any(word in message for word in ("json", "parse", "unexpected token", "syntax")):
        return ErrorType.JSON_PARSE
    if any(word in message for word in ("validation", "invalid", "schema")):
        return ErrorType.VALIDATION
    return ErrorType.UNKNOWN


class ErrorClassifier:
    """
    Maps raw exceptions onto ErrorType.
    Adapters are consulted in order; the first non-None answer wins. New providers
    register their own adapter instead of growing the message patterns.
    """

    def __init__(self, adapters: Optional[List[ErrorAdapter]] = None):
        self._adapters: List[ErrorAdapter] = list(adapters or [])

    def register(self, adapter: ErrorAdapter, *, first: bool = True) -> None:
        if first:
            self._adapters.insert(0, adapter)
        else:
            self._adapters.append(adapter)

    def classify(self, error: BaseException) -> ErrorType:
        if isinstance(error, MatcherError):
            return error.error_type
        for adapter in self._adapters:
            error_type = adapter(error)
            if error_type is not None:
                return error_type
        return classify_by_message(error)


default_classifier = ErrorClassifier([openai_error_adapter, requests_error_adapter, builtin_error_adapter])


def categorize_error(error: BaseException) -> ErrorType:
    return default_classifier.classify(error)


def is_retryable_error(error: BaseException) -> bool:
    if isinstance(error, MatcherError):
        return error.retryable
    return categorize_error(error) not in NON_RETRYABLE_TYPES


# ===== Sanitizing =====

MAX_LOGGED_MESSAGE = 1000

_REDACTIONS = (
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL_REDACTED]"),
    (re.compile(r"Bearer\s+\S+", re.IGNORECASE), "Bearer [TOKEN_REDACTED]"),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{16,}"), "[API_KEY_REDACTED]"),
    (re.compile(r"\b[a-fA-F0-9]{32,}\b"), "[API_KEY_REDACTED]"),
    (re.compile(r"\b\d{16,}\b"), "[NUMERIC_REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}"), "[TOKEN_REDACTED]"),
    (
        re.compile(r"\{[^}]*[\"'](?:api_key|token|key|secret|password|auth)[\"'][^}]*\}", re.IGNORECASE),
        "[JSON_PAYLOAD_REDACTED]",
    ),
)


def sanitize_error_message(message: str, limit: int = MAX_LOGGED_MESSAGE) -> str:
    """Redact obvious secrets and PII, then truncate for storage."""
    sanitized = message or ""
    for pattern, replacement in _REDACTIONS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized[:limit]
