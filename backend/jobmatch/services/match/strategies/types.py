# jobmatch/services/match/strategies/types.py
"""Strategy selection and the context every strategy runs with."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from jobmatch.schemas.match import CandidateProfile
from jobmatch.services.match.cancellation import CancellationToken
from jobmatch.services.match.config import MatcherConfig
from jobmatch.services.match.resilience.circuit_breaker import CircuitBreaker
from jobmatch.services.match.types import ModelCall, ProgressCallback, StrategyResultItem

logger = logging.getLogger("match.strategy")

ResultCallback = Callable[[int, StrategyResultItem], Awaitable[None]]
StrategyResultMap = Dict[int, StrategyResultItem]


class StrategyType(str, Enum):
    SINGLE = "single"
    BULK = "bulk"
    PARALLEL = "parallel"


def select_strategy(config: MatcherConfig, job_count: int) -> StrategyType:
    if job_count == 1:
        return StrategyType.SINGLE
    if config.bulk_enabled:
        return StrategyType.BULK
    return StrategyType.PARALLEL


@dataclass
class StrategyContext:
    config: MatcherConfig
    model_call: ModelCall
    circuit_breaker: CircuitBreaker
    candidate_profile: CandidateProfile
    provider_options: Optional[Dict[str, Any]] = None
    on_progress: Optional[ProgressCallback] = None
    on_result: Optional[ResultCallback] = None
    cancel_token: Optional[CancellationToken] = None

    async def should_stop(self) -> bool:
        return self.cancel_token is not None and await self.cancel_token.should_stop()

    def report_progress(self, completed: int, total: int, succeeded: int, failed: int) -> None:
        if self.on_progress:
            self.on_progress(completed, total, succeeded, failed)

    async def report_result(self, job_id: int, item: StrategyResultItem) -> None:
        """Deliver one outcome to the result hook; a failing hook never aborts the run."""
        if self.on_result is None:
            return
        try:
            await self.on_result(job_id, item)
        except Exception as e:
            logger.error("Result hook failed for job %s: %s", job_id, e)
