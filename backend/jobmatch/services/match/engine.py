# jobmatch/services/match/engine.py
"""
Match Engine - orchestrates matching runs.

Pipeline per tracked run:
1. Create (or adopt) a MatchSession row
2. Wait for the match queue when serialization is on
3. Execute the chosen strategy; each resolved job updates counters and writes one log entry
4. Finalize the session: completed unless every job failed

The engine owns the circuit breaker and the queue; every run of the same engine shares them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from jobmatch.schemas.match import MatchResult, TriggerSource
from jobmatch.services.match.cancellation import CancellationToken
from jobmatch.services.match.config import MatcherConfig
from jobmatch.services.match.errors import MatchCancelledError
from jobmatch.services.match.execution import MatchOutcome, execute_match, unique_job_ids
from jobmatch.services.match.queue import MatchQueue
from jobmatch.services.match.resilience.circuit_breaker import CircuitBreaker
from jobmatch.services.match.tracking.progress import ProgressListener, ProgressTracker
from jobmatch.services.match.tracking.session import (
    SessionCounters,
    create_session,
    failure_log,
    finalize_session,
    success_log,
)
from jobmatch.services.match.types import (
    MatchLogEntry,
    MatchSessionResult,
    MatchStore,
    ModelCall,
    QueueStatus,
    SessionPage,
    SessionRecord,
    StrategyResultItem,
)

logger = logging.getLogger("match.engine")


@dataclass
class MatchOptions:
    trigger_source: TriggerSource = "manual"
    company_id: Optional[int] = None
    on_progress: Optional[ProgressListener] = None
    cancel_token: Optional[CancellationToken] = None
    # Adopt a session created earlier with open_session()
    session_id: Optional[str] = None


class MatchEngine:
    def __init__(
        self,
        *,
        config: MatcherConfig,
        store: MatchStore,
        model_call: ModelCall,
        circuit_breaker: Optional[CircuitBreaker] = None,
        queue: Optional[MatchQueue] = None,
    ):
        self.config = config
        self.store = store
        self.model_call = model_call
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=config.circuit_breaker_threshold,
            reset_timeout_ms=config.circuit_breaker_reset_timeout_ms,
            half_open_max_calls=config.half_open_max_calls,
        )
        self.queue = queue or MatchQueue(enabled=config.serialize_operations)
        self._tokens: Dict[str, CancellationToken] = {}

    # ----- untracked -----

    async def match_single(self, job_id: int) -> MatchResult:
        """
        Match one job right away (no queue, no session).

        Raises:
            NoProfileError, JobNotFoundError, or the error that failed the job.
        """
        outcomes = await execute_match(
            config=self.config,
            job_ids=[job_id],
            store=self.store,
            model_call=self.model_call,
            breaker=self.circuit_breaker,
        )
        outcome = outcomes[job_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def match_bulk(
        self, job_ids: Sequence[int], on_progress: Optional[ProgressListener] = None
    ) -> Dict[int, MatchOutcome]:
        """Match many jobs behind the queue without a session. Results are still persisted per job."""
        ids = unique_job_ids(job_ids)
        tracker = ProgressTracker(len(ids), on_progress)

        async def work() -> Dict[int, MatchOutcome]:
            return await execute_match(
                config=self.config,
                job_ids=ids,
                store=self.store,
                model_call=self.model_call,
                breaker=self.circuit_breaker,
                progress=tracker,
            )

        return await self.queue.run(work, on_queue_position=tracker.queued)

    # ----- tracked -----

    async def open_session(
        self, job_ids: Sequence[int], trigger_source: TriggerSource = "manual", company_id: Optional[int] = None
    ) -> str:
        """Create the session row up front; pass its id in MatchOptions.session_id to run it."""
        session_id = await create_session(self.store, len(unique_job_ids(job_ids)), trigger_source, company_id)
        self._tokens[session_id] = CancellationToken()
        return session_id

    async def match_with_tracking(
        self, job_ids: Sequence[int], options: Optional[MatchOptions] = None
    ) -> MatchSessionResult:
        options = options or MatchOptions()
        ids = unique_job_ids(job_ids)
        model = self.config.model

        if options.session_id:
            session_id = options.session_id
        else:
            session_id = await create_session(self.store, len(ids), options.trigger_source, options.company_id)

        token = options.cancel_token or self._tokens.get(session_id) or CancellationToken()
        self._tokens[session_id] = token
        counters = SessionCounters(len(ids))
        tracker = ProgressTracker(len(ids), options.on_progress)

        async def on_outcome(job_id: int, item: StrategyResultItem) -> None:
            if item.result is not None:
                status = "success"
                entry = success_log(
                    session_id, job_id, item.result,
                    attempt_count=item.attempt_count, duration_ms=item.duration_ms, model=model,
                )
            else:
                status = "cancelled" if isinstance(item.error, MatchCancelledError) else "failed"
                entry = failure_log(
                    session_id, job_id, item.error,
                    attempt_count=item.attempt_count, duration_ms=item.duration_ms, model=model, status=status,
                )
            async with counters.lock:
                snap = counters.record_locked(job_id, status)
                if snap is None:
                    return
                await self._write_twice("match log", session_id, job_id, lambda: self.store.insert_log(entry))
                await self._write_twice(
                    "session counters",
                    session_id,
                    job_id,
                    lambda: self.store.update_session(
                        session_id,
                        jobs_completed=snap.completed,
                        jobs_succeeded=snap.succeeded,
                        jobs_failed=snap.failed,
                        error_count=snap.error_count,
                    ),
                )

        async def work() -> Dict[int, MatchOutcome]:
            return await execute_match(
                config=self.config,
                job_ids=ids,
                store=self.store,
                model_call=self.model_call,
                breaker=self.circuit_breaker,
                progress=tracker,
                on_outcome=on_outcome,
                cancel_token=token,
            )

        try:
            await self.queue.run(work, on_queue_position=tracker.queued)
        except Exception as e:
            logger.exception("Match session %s aborted: %s", session_id, e)
            await self._abort_session(session_id, ids, counters, e)
            raise
        finally:
            self._tokens.pop(session_id, None)

        return await finalize_session(self.store, session_id, counters)

    async def _write_twice(
        self, what: str, session_id: str, job_id: int, write: Callable[[], Awaitable[None]]
    ) -> None:
        """Per-job bookkeeping write: one retry, then the loss is logged and the run goes on."""
        try:
            await write()
            return
        except Exception as e:
            logger.warning("Writing %s for job %s in session %s failed, retrying: %s", what, job_id, session_id, e)
        try:
            await write()
        except Exception as e:
            logger.error("Could not write %s for job %s in session %s: %s", what, job_id, session_id, e)

    async def _abort_session(
        self, session_id: str, job_ids: List[int], counters: SessionCounters, error: Exception
    ) -> None:
        model = self.config.model
        for job_id in job_ids:
            async with counters.lock:
                if counters.record_locked(job_id, "failed") is None:
                    continue
            try:
                await self.store.insert_log(
                    failure_log(session_id, job_id, error, attempt_count=0, duration_ms=0, model=model)
                )
            except Exception as log_error:
                logger.error("Could not write failure log for job %s: %s", job_id, log_error)
        total = len(job_ids)
        try:
            await self.store.finalize_session(
                session_id,
                "failed",
                jobs_completed=total,
                jobs_succeeded=0,
                jobs_failed=total,
                error_count=total,
            )
        except Exception as finalize_error:
            logger.error("Could not finalize aborted session %s: %s", session_id, finalize_error)

    async def match_unmatched_jobs(self, on_progress: Optional[ProgressListener] = None) -> MatchSessionResult:
        job_ids = await self.store.get_unmatched_job_ids()
        if not job_ids:
            logger.info("No unmatched jobs")
            return MatchSessionResult(session_id="", total=0, succeeded=0, failed=0)
        return await self.match_with_tracking(job_ids, MatchOptions(trigger_source="manual", on_progress=on_progress))

    async def match_company_jobs(
        self, company_id: int, on_progress: Optional[ProgressListener] = None
    ) -> MatchSessionResult:
        """Re-match every job of one company (trigger "company_refresh")."""
        job_ids = await self.store.get_company_job_ids(company_id)
        if not job_ids:
            logger.info("No jobs to match for company %s", company_id)
            return MatchSessionResult(session_id="", total=0, succeeded=0, failed=0)
        options = MatchOptions(trigger_source="company_refresh", company_id=company_id, on_progress=on_progress)
        return await self.match_with_tracking(job_ids, options)

    async def match_scraped_jobs(
        self, job_ids: Sequence[int], company_id: Optional[int] = None
    ) -> Optional[MatchSessionResult]:
        """
        Hook for freshly scraped jobs. Runs a tracked "auto_scrape" session when
        auto_match_after_scrape is on; returns None when it is off or nothing was added.
        """
        if not self.config.auto_match_after_scrape:
            logger.debug("Auto-match after scrape is disabled, skipping %d job(s)", len(job_ids))
            return None
        if not job_ids:
            return None
        return await self.match_with_tracking(
            job_ids, MatchOptions(trigger_source="auto_scrape", company_id=company_id)
        )

    def stop_session(self, session_id: str) -> bool:
        """Request a cooperative stop. Returns False when the session is not running here."""
        token = self._tokens.get(session_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Stop requested for match session %s", session_id)
        return True

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return await self.store.get_session(session_id)

    async def list_sessions(self, limit: int = 50, offset: int = 0) -> SessionPage:
        """Session history, newest first."""
        return await self.store.list_sessions(limit, offset)

    async def get_session_logs(self, session_id: str) -> Optional[List[MatchLogEntry]]:
        """All log entries of a session in write order; None when the session does not exist."""
        if await self.store.get_session(session_id) is None:
            return None
        return await self.store.list_logs(session_id)

    # ----- queue / config -----

    def get_queue_status(self) -> QueueStatus:
        return self.queue.status()

    def apply_config(self, config: MatcherConfig) -> None:
        """Swap configuration: breaker thresholds are reapplied (and reset), waiting runs are dropped."""
        self.config = config
        self.circuit_breaker.reconfigure(
            failure_threshold=config.circuit_breaker_threshold,
            reset_timeout_ms=config.circuit_breaker_reset_timeout_ms,
            half_open_max_calls=config.half_open_max_calls,
        )
        self.queue.reset()
        self.queue.set_enabled(config.serialize_operations)
        logger.info("Matcher configuration applied (model=%s)", config.model)
