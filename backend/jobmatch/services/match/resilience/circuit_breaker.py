# jobmatch/services/match/resilience/circuit_breaker.py
"""
Circuit breaker guarding the model provider.

States:
- CLOSED: normal operation, calls pass through
- OPEN: too many consecutive failures, calls are rejected without reaching the provider
- HALF_OPEN: cool-down elapsed, a limited number of trial calls decide whether to close again

One instance is owned by the MatchEngine and shared by every run of that engine.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from jobmatch.services.match.errors import CircuitOpenError

logger = logging.getLogger("match.circuit_breaker")

T = TypeVar("T")


@dataclass(frozen=True)
class CircuitBreakerStats:
    state: str
    failure_count: int
    success_count: int
    half_open_calls: int
    last_failure_time: Optional[float]


class CircuitBreaker:

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        failure_threshold: int = 10,
        reset_timeout_ms: int = 60_000,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            failure_threshold: consecutive CLOSED failures that open the circuit
            reset_timeout_ms: cool-down before an OPEN circuit admits trial calls
            half_open_max_calls: trial calls admitted (and successes needed) while HALF_OPEN
            clock: monotonic seconds source, injectable for tests
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self.state = self.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.half_open_calls = 0
        self._half_open_in_flight = 0

    # ----- state checks -----

    def _elapsed_ms(self) -> float:
        if self.last_failure_time is None:
            return float("inf")
        return (self._clock() - self.last_failure_time) * 1000.0

    def remaining_ms(self) -> int:
        """Cool-down left before an OPEN circuit will admit trial calls."""
        if self.state != self.OPEN:
            return 0
        return max(0, int(self.reset_timeout_ms - self._elapsed_ms()))

    def can_execute(self) -> bool:
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            if self._elapsed_ms() >= self.reset_timeout_ms:
                self._transition(self.HALF_OPEN)
                self.half_open_calls = 0
                self._half_open_in_flight = 0
                return True
            return False

        # HALF_OPEN: trials already recorded plus trials still running
        return self.half_open_calls + self._half_open_in_flight < self.half_open_max_calls

    # ----- outcome recording -----

    def record_success(self) -> None:
        self.success_count += 1
        if self.state == self.HALF_OPEN:
            self.half_open_calls += 1
            if self.half_open_calls >= self.half_open_max_calls:
                self._transition(self.CLOSED)
                self.failure_count = 0
                self.half_open_calls = 0
        elif self.state == self.CLOSED:
            self.failure_count = 0

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == self.HALF_OPEN:
            self.half_open_calls += 1
            self._transition(self.OPEN)
            logger.warning("Trial call failed while HALF_OPEN, circuit reopened: %s", error)
        elif self.state == self.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(self.OPEN)
            logger.warning(
                "Circuit opened after %d consecutive failures (last: %s)", self.failure_count, error
            )

    # ----- guarded call -----

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run `fn` if the circuit admits it, recording the outcome.

        Raises:
            CircuitOpenError: the circuit rejected the call; `fn` was not invoked.
        """
        if not self.can_execute():
            remaining = self.remaining_ms()
            raise CircuitOpenError(
                f"Circuit breaker is {self.state}. Service unavailable. Retry after {remaining / 1000:.0f}s",
                remaining_ms=remaining,
            )

        trial = self.state == self.HALF_OPEN
        if trial:
            self._half_open_in_flight += 1
        try:
            result = await fn()
        except Exception as e:
            if trial:
                self._half_open_in_flight -= 1
            self.record_failure(e)
            raise
        if trial:
            self._half_open_in_flight -= 1
        self.record_success()
        return result

    # ----- management -----

    def reset(self) -> None:
        self.state = self.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.half_open_calls = 0
        self._half_open_in_flight = 0

    def reconfigure(
        self,
        *,
        failure_threshold: Optional[int] = None,
        reset_timeout_ms: Optional[int] = None,
        half_open_max_calls: Optional[int] = None,
    ) -> None:
        if failure_threshold is not None:
            self.failure_threshold = failure_threshold
        if reset_timeout_ms is not None:
            self.reset_timeout_ms = reset_timeout_ms
        if half_open_max_calls is not None:
            self.half_open_max_calls = half_open_max_calls
        self.reset()

    def get_stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            state=self.state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            half_open_calls=self.half_open_calls,
            last_failure_time=self.last_failure_time,
        )

    def _transition(self, new_state: str) -> None:
        if new_state != self.state:
            logger.info("Circuit breaker %s -> %s", self.state, new_state)
            self.state = new_state
