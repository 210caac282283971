# jobmatch/services/match/execution.py
"""
Match executor: prepares jobs, picks a strategy, persists results as they arrive and
reduces everything to one outcome per requested job.

Session bookkeeping is not done here; callers observe outcomes through `on_outcome`.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from jobmatch.schemas.match import MatchResult
from jobmatch.services.match.cancellation import CancellationToken
from jobmatch.services.match.config import MatcherConfig
from jobmatch.services.match.errors import JobNotFoundError, MatchCancelledError, NoProfileError
from jobmatch.services.match.resilience.circuit_breaker import CircuitBreaker
from jobmatch.services.match.strategies.bulk import run_bulk
from jobmatch.services.match.strategies.parallel import run_parallel
from jobmatch.services.match.strategies.single import run_single
from jobmatch.services.match.strategies.types import (
    StrategyContext,
    StrategyResultMap,
    StrategyType,
    select_strategy,
)
from jobmatch.services.match.tracking.progress import ProgressTracker
from jobmatch.services.match.types import MatchJob, MatchStore, ModelCall, StrategyResultItem
from jobmatch.services.match.utils import extract_requirements, html_to_text

logger = logging.getLogger("match.execution")

OutcomeCallback = Callable[[int, StrategyResultItem], Awaitable[None]]
MatchOutcome = Union[MatchResult, Exception]

STRATEGIES = {
    StrategyType.SINGLE: run_single,
    StrategyType.BULK: run_bulk,
    StrategyType.PARALLEL: run_parallel,
}


async def run_strategy(strategy: StrategyType, ctx: StrategyContext, jobs: List[MatchJob]) -> StrategyResultMap:
    return await STRATEGIES[strategy](ctx, jobs)


def prepare_job(job_id: int, title: str, description: Optional[str]) -> MatchJob:
    text = html_to_text(description)
    return MatchJob(id=job_id, title=title, description=text, requirements=extract_requirements(text))


def unique_job_ids(job_ids: Sequence[int]) -> List[int]:
    seen: Set[int] = set()
    ordered: List[int] = []
    for job_id in job_ids:
        if job_id not in seen:
            seen.add(job_id)
            ordered.append(job_id)
    return ordered


async def _deliver(on_outcome: Optional[OutcomeCallback], job_id: int, item: StrategyResultItem) -> None:
    if on_outcome is None:
        return
    try:
        await on_outcome(job_id, item)
    except Exception as e:
        logger.error("Outcome hook failed for job %s: %s", job_id, e)


async def execute_match(
    *,
    config: MatcherConfig,
    job_ids: Sequence[int],
    store: MatchStore,
    model_call: ModelCall,
    breaker: CircuitBreaker,
    progress: Optional[ProgressTracker] = None,
    on_outcome: Optional[OutcomeCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> Dict[int, MatchOutcome]:
    """
    Match `job_ids` against the stored candidate profile.

    Returns:
        job_id -> MatchResult on success, or the Exception that failed the job.
        Jobs never attempted because of a stop request map to MatchCancelledError.

    Raises:
        Only if persisting a successful result fails twice; per-job failures never raise.
    """
    ids = unique_job_ids(job_ids)
    if not ids:
        return {}
    tracker = progress or ProgressTracker(len(ids))
    items: Dict[int, StrategyResultItem] = {}

    async def fail_up_front(job_id: int, error: Exception) -> None:
        item = StrategyResultItem(error=error, duration_ms=0, attempt_count=0)
        items[job_id] = item
        await _deliver(on_outcome, job_id, item)

    profile = await store.get_candidate_profile()
    if profile is None:
        logger.error("No candidate profile found; failing %d job(s) without model calls", len(ids))
        for job_id in ids:
            await fail_up_front(job_id, NoProfileError())
        tracker.add_prefailed(len(ids))
        tracker.finished(succeeded=0, failed=len(ids))
        return {job_id: items[job_id].error for job_id in ids}

    lookup = await store.fetch_jobs(ids)
    for job_id in lookup.missing_ids:
        logger.warning("Job %s not found", job_id)
        await fail_up_front(job_id, JobNotFoundError(job_id))
    if lookup.missing_ids:
        tracker.add_prefailed(len(lookup.missing_ids))

    match_jobs = [prepare_job(job.id, job.title, job.description) for job in lookup.jobs]
    persisted: Set[int] = set()

    async def on_result(job_id: int, item: StrategyResultItem) -> None:
        # Realtime persistence: a failed write is retried once after the strategy
        if item.result is not None:
            try:
                await store.update_job_result(job_id, item.result)
                persisted.add(job_id)
            except Exception as e:
                logger.error("Failed to persist result for job %s: %s", job_id, e)
        await _deliver(on_outcome, job_id, item)

    if match_jobs:
        strategy = select_strategy(config, len(match_jobs))
        logger.info("Matching %d job(s) with %s strategy (model=%s)", len(match_jobs), strategy.value, config.model)
        ctx = StrategyContext(
            config=config,
            model_call=model_call,
            circuit_breaker=breaker,
            candidate_profile=profile,
            provider_options=config.provider_options,
            on_progress=tracker.strategy_progress,
            on_result=on_result,
            cancel_token=cancel_token,
        )
        items.update(await run_strategy(strategy, ctx, match_jobs))

    for job_id, item in items.items():
        if item.result is not None and job_id not in persisted:
            logger.info("Retrying result persistence for job %s", job_id)
            await store.update_job_result(job_id, item.result)

    for job in match_jobs:
        if job.id not in items:
            item = StrategyResultItem(error=MatchCancelledError(), duration_ms=0, attempt_count=0)
            items[job.id] = item
            await _deliver(on_outcome, job.id, item)

    outcomes: Dict[int, MatchOutcome] = {}
    succeeded = failed = 0
    for job_id in ids:
        item = items[job_id]
        if item.result is not None:
            outcomes[job_id] = item.result
            succeeded += 1
        else:
            outcomes[job_id] = item.error
            if not isinstance(item.error, MatchCancelledError):
                failed += 1
    tracker.finished(succeeded=succeeded, failed=failed, completed=len(ids))
    return outcomes
