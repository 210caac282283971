# jobmatch/services/match/resilience/retry.py
"""
Retry with exponential backoff and a deadline wrapper for provider calls.

The first call is always made; up to `max_retries` further attempts follow a
retryable failure. Non-retryable errors (validation, circuit breaker) are raised
immediately without spending the retry budget.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from jobmatch.services.match.errors import MatcherError, MatcherTimeoutError, is_retryable_error

logger = logging.getLogger("match.retry")

T = TypeVar("T")

RetryHook = Callable[[int, float, BaseException], Optional[float]]
AttemptHook = Callable[[int], None]

MAX_JITTER_MS = 1000
RATE_LIMIT_BACKOFF_FACTOR = 3


def compute_backoff_ms(attempt: int, base_delay_ms: int, max_delay_ms: int, jitter_ms: int = 0) -> float:
    """Delay before retry number `attempt` (1-based): capped exponential plus uniform jitter."""
    exponential = min(base_delay_ms * (2 ** (attempt - 1)), max_delay_ms)
    jitter = random.uniform(0, min(jitter_ms, MAX_JITTER_MS)) if jitter_ms > 0 else 0.0
    return exponential + jitter


def widen_delay(delay_ms: float, max_delay_ms: int) -> float:
    """Longer wait for rate-limit / overloaded-server failures, bounded by the max delay."""
    return max(delay_ms, min(delay_ms * RATE_LIMIT_BACKOFF_FACTOR, max_delay_ms))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay_ms: int = 2000,
    max_delay_ms: int = 32_000,
    jitter_ms: int = MAX_JITTER_MS,
    on_retry: Optional[RetryHook] = None,
    on_attempt: Optional[AttemptHook] = None,
    log_error: bool = True,
    label: str = "operation",
) -> T:
    """
    Await `fn()` until it succeeds or the retry budget is spent.

    Args:
        max_retries: retries after the first call (total attempts = max_retries + 1)
        on_retry: called as on_retry(attempt, delay_ms, error) before sleeping; a returned
            number replaces the computed delay
        on_attempt: called with the 1-based attempt number before each call

    Raises:
        The last error once retries are exhausted, or the first non-retryable error.
        MatcherError instances get `attempt_count` set.
    """
    attempt = 0
    while True:
        attempt += 1
        if on_attempt:
            on_attempt(attempt)
        try:
            return await fn()
        except Exception as e:
            if isinstance(e, MatcherError):
                e.attempt_count = attempt

            if not is_retryable_error(e):
                if log_error:
                    logger.warning("%s failed with non-retryable error: %s", label, e)
                raise

            if attempt > max_retries:
                if log_error:
                    logger.error("%s failed after %d attempts: %s", label, attempt, e)
                raise

            delay = compute_backoff_ms(attempt, base_delay_ms, max_delay_ms, jitter_ms)
            if on_retry:
                override = on_retry(attempt, delay, e)
                if override is not None:
                    delay = override
            if log_error:
                logger.info("%s attempt %d failed (%s); retrying in %.0fms", label, attempt, e, delay)
            await asyncio.sleep(delay / 1000.0)


async def with_timeout(awaitable: Awaitable[T], timeout_ms: int, label: str = "operation") -> T:
    """
    Await with a deadline.
    On expiry the awaiting task is cancelled; the underlying transport may still finish.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as e:
        raise MatcherTimeoutError(f"{label} timed out after {timeout_ms}ms") from e
