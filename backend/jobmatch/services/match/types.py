# jobmatch/services/match/types.py
"""Shared value types and collaborator protocols for the match engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol, Sequence, Union

from jobmatch.schemas.match import CandidateProfile, MatchResult, TriggerSource

SessionStatus = Literal["in_progress", "completed", "failed"]
LogStatus = Literal["success", "failed", "cancelled"]
ProgressPhase = Literal["queued", "matching", "completed"]

# (system, prompt, provider_options) -> raw model output
ModelOutput = Union[str, Dict[str, Any], List[Any], None]
ModelCall = Callable[[str, str, Optional[Dict[str, Any]]], Awaitable[ModelOutput]]

ProgressCallback = Callable[[int, int, int, int], None]


@dataclass
class JobData:
    """A job as read from the store."""
    id: int
    title: str
    description: Optional[str] = None
    company_id: Optional[int] = None


@dataclass
class JobLookup:
    jobs: List[JobData]
    missing_ids: List[int] = field(default_factory=list)


@dataclass
class MatchJob:
    """A job prepared for the prompt."""
    id: int
    title: str
    description: str
    requirements: List[str] = field(default_factory=list)


@dataclass
class StrategyResultItem:
    """Outcome of one job: exactly one of result / error is set."""
    result: Optional[MatchResult] = None
    error: Optional[BaseException] = None
    duration_ms: int = 0
    attempt_count: int = 1

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class MatchLogEntry:
    session_id: str
    job_id: int
    status: LogStatus
    score: Optional[float] = None
    attempt_count: int = 1
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    model_used: Optional[str] = None
    completed_at: Optional[datetime] = None


@dataclass
class MatchSessionResult:
    session_id: str
    total: int
    succeeded: int
    failed: int
    cancelled: int = 0


@dataclass
class QueueStatus:
    is_enabled: bool
    pending: int
    size: int
    position: int


@dataclass
class MatchProgress:
    phase: ProgressPhase
    completed: int = 0
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    queue_position: Optional[int] = None


@dataclass
class SessionRecord:
    """Stored state of a match session, as returned by the sink."""
    id: str
    trigger_source: str
    status: SessionStatus
    jobs_total: int
    jobs_completed: int = 0
    jobs_succeeded: int = 0
    jobs_failed: int = 0
    error_count: int = 0
    company_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class SessionPage:
    """One page of session history, newest first; `total` counts every session."""
    sessions: List[SessionRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.sessions) < self.total


class JobSource(Protocol):
    async def fetch_jobs(self, job_ids: Sequence[int]) -> JobLookup: ...

    async def get_unmatched_job_ids(self) -> List[int]: ...

    async def get_company_job_ids(self, company_id: int) -> List[int]: ...


class ProfileSource(Protocol):
    async def get_candidate_profile(self) -> Optional[CandidateProfile]: ...


class MatchSink(Protocol):
    async def update_job_result(self, job_id: int, result: MatchResult) -> None: ...

    async def create_session(
        self, session_id: str, trigger_source: TriggerSource, jobs_total: int, company_id: Optional[int] = None
    ) -> None: ...

    async def update_session(
        self, session_id: str, *, jobs_completed: int, jobs_succeeded: int, jobs_failed: int, error_count: int
    ) -> None: ...

    async def finalize_session(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        jobs_completed: int,
        jobs_succeeded: int,
        jobs_failed: int,
        error_count: int,
    ) -> bool: ...

    async def get_session(self, session_id: str) -> Optional[SessionRecord]: ...

    async def insert_log(self, entry: MatchLogEntry) -> None: ...


class MatchHistorySource(Protocol):
    async def list_sessions(self, limit: int, offset: int) -> SessionPage: ...

    async def list_logs(self, session_id: str) -> List[MatchLogEntry]: ...


class MatchStore(JobSource, ProfileSource, MatchSink, MatchHistorySource, Protocol):
    """Everything the engine reads and writes."""
