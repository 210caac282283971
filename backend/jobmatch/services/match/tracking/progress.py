# jobmatch/services/match/tracking/progress.py
"""Progress aggregation across everything a run resolves, pre-failed jobs included."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from jobmatch.services.match.types import MatchProgress

logger = logging.getLogger("match.progress")

ProgressListener = Callable[[MatchProgress], None]


class ProgressTracker:
    """
    Jobs that fail before the strategy runs (missing, no profile) are counted up front;
    strategy progress is reported on top of them so `total` always covers every requested job.
    Listener errors are logged and never interrupt matching.
    """

    def __init__(self, total: int, listener: Optional[ProgressListener] = None):
        self.total = total
        self._listener = listener
        self._pre_completed = 0
        self._pre_failed = 0
        self.last: MatchProgress = MatchProgress(phase="queued", total=total)

    def _emit(self, progress: MatchProgress) -> None:
        self.last = progress
        if self._listener is None:
            return
        try:
            self._listener(progress)
        except Exception as e:
            logger.error("Progress listener failed: %s", e)

    def queued(self, position: int) -> None:
        self._emit(MatchProgress(phase="queued", total=self.total, queue_position=position))

    def add_prefailed(self, count: int) -> None:
        self._pre_completed += count
        self._pre_failed += count
        self._emit(
            MatchProgress(
                phase="matching",
                completed=self._pre_completed,
                total=self.total,
                failed=self._pre_failed,
            )
        )

    def strategy_progress(self, completed: int, total: int, succeeded: int, failed: int) -> None:
        self._emit(
            MatchProgress(
                phase="matching",
                completed=self._pre_completed + completed,
                total=self.total,
                succeeded=succeeded,
                failed=self._pre_failed + failed,
            )
        )

    def finished(self, succeeded: int, failed: int, completed: Optional[int] = None) -> None:
        self._emit(
            MatchProgress(
                phase="completed",
                completed=self.total if completed is None else completed,
                total=self.total,
                succeeded=succeeded,
                failed=failed,
            )
        )
