# jobmatch/services/match/strategies/bulk.py
"""
Bulk strategy: several jobs per model call.

Batches run sequentially. Each returned entry is validated on its own, so a bad entry
only costs its own job; a whole-batch failure marks every member failed. The breaker
sees one outcome per batch.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from jobmatch.schemas.match import BulkMatchEnvelope, BulkMatchItem, MatchResult
from jobmatch.services.match.errors import (
    CircuitOpenError,
    MatcherValidationError,
    categorize_error,
    is_rate_limit_error,
    is_server_error,
)
from jobmatch.services.match.generation import generate_structured
from jobmatch.services.match.prompts import build_bulk_match_prompt, bulk_match_system_prompt
from jobmatch.services.match.resilience.retry import retry_with_backoff, widen_delay, with_timeout
from jobmatch.services.match.strategies.types import StrategyContext, StrategyResultMap
from jobmatch.services.match.types import MatchJob, StrategyResultItem
from jobmatch.services.match.utils import chunk_list

logger = logging.getLogger("match.strategy.bulk")

MISSING_RESULT_MESSAGE = "AI did not return match result for this job"


def _coerce_job_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def validate_batch_response(raw_items: Sequence[Any], batch_jobs: Sequence[MatchJob]) -> List[BulkMatchItem]:
    """
    Keep only entries that are well-formed and belong to this batch.
    Drops malformed ids, ids outside the batch, duplicates (first wins) and entries
    that fail schema validation.
    """
    batch_ids = {job.id for job in batch_jobs}
    seen: set[int] = set()
    validated: List[BulkMatchItem] = []

    for raw in raw_items:
        if not isinstance(raw, dict):
            logger.warning("Ignoring non-object batch entry: %r", raw)
            continue
        job_id = _coerce_job_id(raw.get("jobId", raw.get("job_id")))
        if job_id is None:
            logger.warning("AI returned invalid jobId %r, ignoring", raw.get("jobId"))
            continue
        if job_id not in batch_ids:
            logger.warning("AI returned jobId %s which was not in the batch, ignoring", job_id)
            continue
        if job_id in seen:
            logger.warning("AI returned duplicate jobId %s, using first occurrence", job_id)
            continue
        seen.add(job_id)
        try:
            item = BulkMatchItem.model_validate({**raw, "jobId": job_id})
        except ValidationError as e:
            logger.warning("Batch entry for job %s failed validation: %s", job_id, e.errors()[0]["msg"])
            continue
        validated.append(item)

    missing = sorted(batch_ids - {item.job_id for item in validated})
    if missing:
        logger.warning("AI response missing %d job id(s): %s", len(missing), ", ".join(map(str, missing)))
    return validated


async def _process_batch(ctx: StrategyContext, batch: List[MatchJob]) -> Tuple[List[Any], int]:
    """Run one batch call with retry. Returns (raw result entries, attempts made)."""
    config = ctx.config
    prompt = build_bulk_match_prompt(batch, ctx.candidate_profile)
    system = bulk_match_system_prompt()
    attempts = 0

    def on_attempt(attempt: int) -> None:
        nonlocal attempts
        attempts = attempt

    def on_retry(attempt: int, delay: float, error: BaseException) -> Optional[float]:
        if is_server_error(error) or is_rate_limit_error(error):
            logger.info("Batch retry %d: rate limit / server error, widening delay", attempt)
            return widen_delay(delay, config.backoff_max_delay_ms)
        logger.debug("Batch retry %d scheduled after %.0fms", attempt, delay)
        return None

    async def attempt_once() -> BulkMatchEnvelope:
        return await with_timeout(
            generate_structured(
                ctx.model_call,
                BulkMatchEnvelope,
                system=system,
                prompt=prompt,
                provider_options=ctx.provider_options,
                expected="any",
            ),
            config.timeout_ms * 2,
            f"Match batch of {len(batch)} jobs",
        )

    try:
        envelope = await retry_with_backoff(
            attempt_once,
            max_retries=config.max_retries,
            base_delay_ms=config.backoff_base_delay_ms,
            max_delay_ms=config.backoff_max_delay_ms,
            jitter_ms=config.backoff_jitter_ms,
            on_retry=on_retry,
            on_attempt=on_attempt,
            label=f"Match batch of {len(batch)} jobs",
        )
    except Exception as e:
        e.attempt_count = max(attempts, 1)
        raise
    return envelope.results, max(attempts, 1)


async def run_bulk(ctx: StrategyContext, jobs: List[MatchJob]) -> StrategyResultMap:
    results: StrategyResultMap = {}
    if not jobs:
        return results

    config = ctx.config
    total = len(jobs)
    completed = succeeded = failed = 0

    async def resolve(job_id: int, item: StrategyResultItem) -> None:
        nonlocal completed, succeeded, failed
        results[job_id] = item
        await ctx.report_result(job_id, item)
        completed += 1
        if item.ok:
            succeeded += 1
        else:
            failed += 1
        ctx.report_progress(completed, total, succeeded, failed)

    batches = chunk_list(jobs, config.batch_size)
    for index, batch in enumerate(batches):
        if await ctx.should_stop():
            logger.info("Stop requested, skipping %d remaining batch(es)", len(batches) - index)
            break

        if not ctx.circuit_breaker.can_execute():
            remaining = ctx.circuit_breaker.remaining_ms()
            logger.warning("Circuit breaker open, marking %d job(s) as failed", len(batch))
            for job in batch:
                error = CircuitOpenError("Circuit breaker open - too many failures", remaining_ms=remaining)
                await resolve(job.id, StrategyResultItem(error=error, duration_ms=0, attempt_count=0))
            continue

        started = time.monotonic()
        try:
            raw_items, attempt_count = await _process_batch(ctx, batch)
        except Exception as e:
            ctx.circuit_breaker.record_failure(e)
            attempt_count = getattr(e, "attempt_count", None) or 1
            logger.error("Batch failed (%s): %s", categorize_error(e).value, e)
            for job in batch:
                await resolve(job.id, StrategyResultItem(error=e, duration_ms=0, attempt_count=attempt_count))
        else:
            validated = validate_batch_response(raw_items, batch)
            per_job_ms = int((time.monotonic() - started) * 1000 / len(batch))
            returned = set()
            for entry in validated:
                result = MatchResult.model_validate(entry.model_dump(exclude={"job_id"}))
                returned.add(entry.job_id)
                await resolve(
                    entry.job_id,
                    StrategyResultItem(result=result, duration_ms=per_job_ms, attempt_count=attempt_count),
                )
            for job in batch:
                if job.id not in returned:
                    await resolve(
                        job.id,
                        StrategyResultItem(
                            error=MatcherValidationError(MISSING_RESULT_MESSAGE),
                            duration_ms=0,
                            attempt_count=attempt_count,
                        ),
                    )
            ctx.circuit_breaker.record_success()
            logger.info("Batch completed: %d/%d jobs", len(validated), len(batch))

        if completed < total and config.inter_request_delay_ms > 0:
            await asyncio.sleep(config.inter_request_delay_ms / 1000.0)

    return results
