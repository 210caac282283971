# jobmatch/services/match/queue.py
"""
Match queue: optional FIFO serialization of whole match runs.

Enabled (serialize_operations), work runs one at a time in arrival order; disabled,
work starts immediately. Owned by the MatchEngine and shared by all its runs.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, TypeVar

from jobmatch.services.match.errors import MatchQueueResetError
from jobmatch.services.match.types import QueueStatus

logger = logging.getLogger("match.queue")

T = TypeVar("T")


class MatchQueue:
    def __init__(self, enabled: bool = False):
        self._enabled = enabled
        self._slot_taken = False
        self._unqueued_running = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Affects work submitted from now on; already queued work keeps its place."""
        if enabled != self._enabled:
            logger.info("Match queue serialization %s", "enabled" if enabled else "disabled")
        self._enabled = enabled

    def status(self) -> QueueStatus:
        pending = (1 if self._slot_taken else 0) + self._unqueued_running
        size = sum(1 for w in self._waiters if not w.done())
        return QueueStatus(is_enabled=self._enabled, pending=pending, size=size, position=pending + size)

    async def run(
        self,
        work: Callable[[], Awaitable[T]],
        on_queue_position: Optional[Callable[[int], None]] = None,
    ) -> T:
        """
        Run `work` under the queue policy.

        Args:
            on_queue_position: called once, before waiting, with the number of runs ahead

        Raises:
            MatchQueueResetError: the queue was reset while this work was waiting.
        """
        if not self._enabled:
            if on_queue_position:
                on_queue_position(0)
            self._unqueued_running += 1
            try:
                return await work()
            finally:
                self._unqueued_running -= 1

        position = self.status().position
        if on_queue_position:
            on_queue_position(position)

        await self._acquire()
        try:
            return await work()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if not self._slot_taken and not self._waiters:
            self._slot_taken = True
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug("Match run queued (waiting=%d)", len(self._waiters))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # The slot was handed over just as we were cancelled; pass it on
                self._release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def _release(self) -> None:
        # Hand the slot straight to the next live waiter so no newcomer can jump the line
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._slot_taken = False

    def reset(self) -> int:
        """Reject every waiting run; work already started is left to finish. Returns the number dropped."""
        dropped = 0
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(MatchQueueResetError())
                dropped += 1
        if dropped:
            logger.warning("Match queue reset, dropped %d waiting run(s)", dropped)
        return dropped
