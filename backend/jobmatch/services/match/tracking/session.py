# jobmatch/services/match/tracking/session.py
"""
Session bookkeeping: in-memory counters for a tracked run, log-entry builders and
the final-status rule. Persistence goes through the MatchSink.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Set

from jobmatch.schemas.match import MatchResult, TriggerSource
from jobmatch.services.match.errors import categorize_error, sanitize_error_message
from jobmatch.services.match.types import LogStatus, MatchLogEntry, MatchSessionResult, MatchSink, SessionStatus

logger = logging.getLogger("match.session")


@dataclass(frozen=True)
class CounterSnapshot:
    completed: int
    succeeded: int
    failed: int
    cancelled: int
    error_count: int


class SessionCounters:
    """
    Per-run counters. Every update happens under one asyncio.Lock, so concurrent
    job completions never lose an increment and each job is counted once.
    """

    def __init__(self, total: int):
        self.total = total
        self.completed = 0
        self.succeeded = 0
        self.failed = 0
        self.cancelled = 0
        self.error_count = 0
        self._recorded: Set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def is_recorded(self, job_id: int) -> bool:
        return job_id in self._recorded

    def record_locked(self, job_id: int, status: LogStatus) -> Optional[CounterSnapshot]:
        """Count one outcome; caller holds `lock`. Returns None if the job was already counted."""
        if job_id in self._recorded:
            return None
        self._recorded.add(job_id)
        self.completed += 1
        if status == "success":
            self.succeeded += 1
        elif status == "failed":
            self.failed += 1
            self.error_count += 1
        else:
            self.cancelled += 1
        return self.snapshot()

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(
            completed=self.completed,
            succeeded=self.succeeded,
            failed=self.failed,
            cancelled=self.cancelled,
            error_count=self.error_count,
        )


def new_session_id() -> str:
    return str(uuid.uuid4())


def final_status(succeeded: int, failed: int, total: int) -> SessionStatus:
    # Cancelled jobs are not failures; an empty run completes
    if total > 0 and failed == total:
        return "failed"
    return "completed"


def success_log(
    session_id: str, job_id: int, result: MatchResult, *, attempt_count: int, duration_ms: int, model: str
) -> MatchLogEntry:
    return MatchLogEntry(
        session_id=session_id,
        job_id=job_id,
        status="success",
        score=result.score,
        attempt_count=attempt_count,
        duration_ms=duration_ms,
        model_used=model,
        completed_at=datetime.now(timezone.utc),
    )


def failure_log(
    session_id: str,
    job_id: int,
    error: BaseException,
    *,
    attempt_count: int,
    duration_ms: int,
    model: str,
    status: LogStatus = "failed",
) -> MatchLogEntry:
    return MatchLogEntry(
        session_id=session_id,
        job_id=job_id,
        status=status,
        attempt_count=attempt_count,
        error_type=categorize_error(error).value,
        error_message=sanitize_error_message(str(error) or type(error).__name__),
        duration_ms=duration_ms,
        model_used=model,
        completed_at=datetime.now(timezone.utc),
    )


async def create_session(
    sink: MatchSink,
    jobs_total: int,
    trigger_source: TriggerSource,
    company_id: Optional[int] = None,
    session_id: Optional[str] = None,
) -> str:
    session_id = session_id or new_session_id()
    await sink.create_session(session_id, trigger_source, jobs_total, company_id)
    logger.info("Match session %s created (%s, %d jobs)", session_id, trigger_source, jobs_total)
    return session_id


async def finalize_session(sink: MatchSink, session_id: str, counters: SessionCounters) -> MatchSessionResult:
    """
    Write the terminal status once. If the session already left in_progress,
    the stored totals are returned instead and nothing is rewritten.
    """
    snap = counters.snapshot()
    status = final_status(snap.succeeded, snap.failed, counters.total)
    applied = await sink.finalize_session(
        session_id,
        status,
        jobs_completed=snap.completed,
        jobs_succeeded=snap.succeeded,
        jobs_failed=snap.failed,
        error_count=snap.error_count,
    )
    if applied:
        logger.info(
            "Match session %s %s: %d succeeded, %d failed, %d cancelled of %d",
            session_id, status, snap.succeeded, snap.failed, snap.cancelled, counters.total,
        )
        return MatchSessionResult(
            session_id=session_id,
            total=counters.total,
            succeeded=snap.succeeded,
            failed=snap.failed,
            cancelled=snap.cancelled,
        )

    stored = await sink.get_session(session_id)
    logger.warning("Match session %s was already terminal (%s); keeping stored totals",
                   session_id, stored.status if stored else "missing")
    if stored is None:
        return MatchSessionResult(session_id=session_id, total=counters.total, succeeded=snap.succeeded,
                                  failed=snap.failed, cancelled=snap.cancelled)
    return MatchSessionResult(
        session_id=session_id,
        total=stored.jobs_total,
        succeeded=stored.jobs_succeeded,
        failed=stored.jobs_failed,
        cancelled=max(stored.jobs_completed - stored.jobs_succeeded - stored.jobs_failed, 0),
    )
