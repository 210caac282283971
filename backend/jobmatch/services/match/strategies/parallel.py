# jobmatch/services/match/strategies/parallel.py
"""Parallel strategy: the single-job algorithm fanned out over a bounded worker pool."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import List

from jobmatch.services.match.strategies.single import match_one
from jobmatch.services.match.strategies.types import StrategyContext, StrategyResultMap
from jobmatch.services.match.types import MatchJob, StrategyResultItem

logger = logging.getLogger("match.strategy.parallel")


async def run_parallel(ctx: StrategyContext, jobs: List[MatchJob]) -> StrategyResultMap:
    """
    `concurrency_limit` workers pull jobs in order. Dispatch starts are spaced by
    `inter_request_delay_ms`; the cancel token is checked before every dispatch.
    Results land in completion order.
    """
    results: StrategyResultMap = {}
    if not jobs:
        return results

    config = ctx.config
    total = len(jobs)
    counts = {"completed": 0, "succeeded": 0, "failed": 0}

    pending: asyncio.Queue = asyncio.Queue()
    for job in jobs:
        pending.put_nowait(job)

    dispatch_lock = asyncio.Lock()
    last_dispatch = [0.0]
    stopped = [False]

    async def next_job():
        # Serialized so that spacing and stop checks apply to the pool as a whole
        async with dispatch_lock:
            if stopped[0] or pending.empty():
                return None
            if await ctx.should_stop():
                stopped[0] = True
                logger.info("Stop requested, %d job(s) left undispatched", pending.qsize())
                return None
            delay_s = config.inter_request_delay_ms / 1000.0
            if delay_s > 0 and last_dispatch[0]:
                wait = last_dispatch[0] + delay_s - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            last_dispatch[0] = time.monotonic()
            return pending.get_nowait()

    async def record(job_id: int, item: StrategyResultItem) -> None:
        results[job_id] = item
        await ctx.report_result(job_id, item)
        counts["completed"] += 1
        counts["succeeded" if item.ok else "failed"] += 1
        ctx.report_progress(counts["completed"], total, counts["succeeded"], counts["failed"])

    async def worker() -> None:
        while True:
            job = await next_job()
            if job is None:
                return
            item = await match_one(ctx, job)
            await record(job.id, item)

    workers = min(config.concurrency_limit, total)
    logger.info("Matching %d job(s) with %d worker(s)", total, workers)
    await asyncio.gather(*(worker() for _ in range(workers)))
    return results
