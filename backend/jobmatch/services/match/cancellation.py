# jobmatch/services/match/cancellation.py
"""Cooperative cancellation for match runs."""
from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger("match.cancellation")

StopCheck = Callable[[], Union[bool, Awaitable[bool]]]


class CancellationToken:
    """
    Set by stop requests, polled by strategies between batches and before dispatch.
    In-flight provider calls are never interrupted; they finish or time out on their own.

    An optional `poll` callback lets an external signal (e.g. a stored stop flag) trip the token.
    """

    def __init__(self, poll: Optional[StopCheck] = None):
        self._cancelled = False
        self._poll = poll

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info("Cancellation requested")
        self._cancelled = True

    async def should_stop(self) -> bool:
        if self._cancelled:
            return True
        if self._poll is not None:
            outcome = self._poll()
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if outcome:
                self.cancel()
        return self._cancelled
