# jobmatch/services/match/strategies/single.py
"""Single strategy: one model call for one job, behind the breaker, timeout and retry."""
from __future__ import annotations

import logging
import time
from typing import List, Optional

from jobmatch.schemas.match import MatchResult
from jobmatch.services.match.errors import categorize_error, is_rate_limit_error, is_server_error
from jobmatch.services.match.generation import generate_structured
from jobmatch.services.match.prompts import build_single_match_prompt, single_match_system_prompt
from jobmatch.services.match.resilience.retry import retry_with_backoff, widen_delay, with_timeout
from jobmatch.services.match.strategies.types import StrategyContext, StrategyResultMap
from jobmatch.services.match.types import MatchJob, StrategyResultItem

logger = logging.getLogger("match.strategy.single")


async def match_one(ctx: StrategyContext, job: MatchJob) -> StrategyResultItem:
    """
    Score one job. Never raises: failures come back as an error item
    carrying the number of attempts made.
    """
    config = ctx.config
    prompt = build_single_match_prompt(job, ctx.candidate_profile)
    system = single_match_system_prompt()
    attempts = 0

    def on_attempt(attempt: int) -> None:
        nonlocal attempts
        attempts = attempt

    def on_retry(attempt: int, delay: float, error: BaseException) -> Optional[float]:
        if is_server_error(error) or is_rate_limit_error(error):
            logger.info("Job %s retry %d: rate limit / server error, widening delay", job.id, attempt)
            return widen_delay(delay, config.backoff_max_delay_ms)
        logger.debug("Job %s retry %d scheduled after %.0fms", job.id, attempt, delay)
        return None

    async def attempt_once() -> MatchResult:
        return await ctx.circuit_breaker.execute(
            lambda: with_timeout(
                generate_structured(
                    ctx.model_call,
                    MatchResult,
                    system=system,
                    prompt=prompt,
                    provider_options=ctx.provider_options,
                    expected="object",
                ),
                config.timeout_ms,
                f"Match job {job.id}",
            )
        )

    started = time.monotonic()
    try:
        result = await retry_with_backoff(
            attempt_once,
            max_retries=config.max_retries,
            base_delay_ms=config.backoff_base_delay_ms,
            max_delay_ms=config.backoff_max_delay_ms,
            jitter_ms=config.backoff_jitter_ms,
            on_retry=on_retry,
            on_attempt=on_attempt,
            label=f"Match job {job.id}",
        )
    except Exception as e:
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.warning("Job %s failed after %d attempt(s) (%s): %s", job.id, attempts, categorize_error(e).value, e)
        return StrategyResultItem(error=e, duration_ms=duration_ms, attempt_count=max(attempts, 1))

    duration_ms = int((time.monotonic() - started) * 1000)
    return StrategyResultItem(result=result, duration_ms=duration_ms, attempt_count=max(attempts, 1))


async def run_single(ctx: StrategyContext, jobs: List[MatchJob]) -> StrategyResultMap:
    results: StrategyResultMap = {}
    if not jobs:
        return results
    job = jobs[0]
    if await ctx.should_stop():
        logger.info("Stop requested before job %s started", job.id)
        return results

    item = await match_one(ctx, job)
    results[job.id] = item
    await ctx.report_result(job.id, item)
    ctx.report_progress(1, 1, 1 if item.ok else 0, 0 if item.ok else 1)
    return results
