"""
Pytest configuration and shared fixtures.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from jobmatch.schemas.match import CandidateProfile, ExperienceItem, MatchResult, SkillItem
from jobmatch.services.match.config import MatcherConfig
from jobmatch.services.match.types import JobData, JobLookup, MatchLogEntry, SessionPage, SessionRecord

_JOB_ID_RE = re.compile(r"Job ID:\**\s*(\d+)")


def job_ids_in(prompt: str) -> List[int]:
    """Job ids mentioned in a single or batch prompt, in order."""
    return [int(m) for m in _JOB_ID_RE.findall(prompt)]


def result_payload(score: int = 75, job_id: Optional[int] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "score": score,
        "reasons": ["Relevant experience"],
        "matchedSkills": ["Python"],
        "missingSkills": ["Go"],
        "recommendations": ["Highlight API work"],
    }
    if job_id is not None:
        payload["jobId"] = job_id
    return payload


class ScriptedModel:
    """
    Async stand-in for the model-call surface.
    `handler(system, prompt, call_number)` returns the raw output or an Exception to raise.
    """

    def __init__(self, handler: Callable[[str, str, int], Any]):
        self._handler = handler
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, system: str, prompt: str, provider_options: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append({"system": system, "prompt": prompt, "provider_options": provider_options})
        outcome = self._handler(system, prompt, len(self.calls))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def call_count(self) -> int:
        return len(self.calls)


def score_handler(scores: Dict[int, Any]) -> Callable[[str, str, int], Any]:
    """
    Answer each prompt from a job_id -> score map. A job mapped to an Exception fails;
    batch prompts get a {"results": [...]} envelope of the jobs that have scores.
    """

    def handler(system: str, prompt: str, call_number: int = 1) -> Any:
        ids = job_ids_in(prompt)
        if len(ids) == 1 and "results" not in system:
            value = scores[ids[0]]
            if isinstance(value, BaseException):
                return value
            return json.dumps(result_payload(value))
        entries = [result_payload(scores[i], job_id=i) for i in ids if not isinstance(scores[i], BaseException)]
        return json.dumps({"results": entries})

    return handler


def scores_by_job(scores: Dict[int, Any]) -> ScriptedModel:
    return ScriptedModel(score_handler(scores))


class InMemoryMatchStore:
    """Job source, profile source and match sink kept in dictionaries."""

    def __init__(self, jobs: Sequence[JobData] = (), profile: Optional[CandidateProfile] = None):
        self.jobs: Dict[int, JobData] = {job.id: job for job in jobs}
        self.profile = profile
        self.results: Dict[int, MatchResult] = {}
        self.sessions: Dict[str, SessionRecord] = {}
        self.logs: List[MatchLogEntry] = []
        self.session_updates: List[Dict[str, int]] = []
        self.fail_result_writes = 0
        self.fail_log_writes = 0

    async def fetch_jobs(self, job_ids: Sequence[int]) -> JobLookup:
        found = [self.jobs[i] for i in job_ids if i in self.jobs]
        return JobLookup(jobs=found, missing_ids=[i for i in job_ids if i not in self.jobs])

    async def get_unmatched_job_ids(self) -> List[int]:
        return [job_id for job_id in self.jobs if job_id not in self.results]

    async def get_company_job_ids(self, company_id: int) -> List[int]:
        return [job.id for job in self.jobs.values() if job.company_id == company_id]

    async def get_candidate_profile(self) -> Optional[CandidateProfile]:
        return self.profile

    async def update_job_result(self, job_id: int, result: MatchResult) -> None:
        if self.fail_result_writes > 0:
            self.fail_result_writes -= 1
            raise RuntimeError("database unavailable")
        self.results[job_id] = result

    async def create_session(self, session_id, trigger_source, jobs_total, company_id=None) -> None:
        self.sessions[session_id] = SessionRecord(
            id=session_id,
            trigger_source=trigger_source,
            status="in_progress",
            jobs_total=jobs_total,
            company_id=company_id,
        )

    async def update_session(self, session_id, *, jobs_completed, jobs_succeeded, jobs_failed, error_count) -> None:
        self.session_updates.append(
            {"completed": jobs_completed, "succeeded": jobs_succeeded, "failed": jobs_failed}
        )
        record = self.sessions[session_id]
        if record.status != "in_progress":
            return
        record.jobs_completed = jobs_completed
        record.jobs_succeeded = jobs_succeeded
        record.jobs_failed = jobs_failed
        record.error_count = error_count

    async def finalize_session(
        self, session_id, status, *, jobs_completed, jobs_succeeded, jobs_failed, error_count
    ) -> bool:
        record = self.sessions[session_id]
        if record.status != "in_progress":
            return False
        record.status = status
        record.jobs_completed = jobs_completed
        record.jobs_succeeded = jobs_succeeded
        record.jobs_failed = jobs_failed
        record.error_count = error_count
        return True

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self.sessions.get(session_id)

    async def insert_log(self, entry: MatchLogEntry) -> None:
        if self.fail_log_writes > 0:
            self.fail_log_writes -= 1
            raise RuntimeError("log table locked")
        self.logs.append(entry)

    async def list_sessions(self, limit: int, offset: int) -> SessionPage:
        newest_first = list(reversed(list(self.sessions.values())))
        return SessionPage(
            sessions=newest_first[offset : offset + limit], total=len(newest_first), limit=limit, offset=offset
        )

    async def list_logs(self, session_id: str) -> List[MatchLogEntry]:
        return self.logs_for(session_id)

    def logs_for(self, session_id: str) -> List[MatchLogEntry]:
        return [entry for entry in self.logs if entry.session_id == session_id]


@pytest.fixture
def fast_config() -> MatcherConfig:
    """No sleeping anywhere: zero backoff, jitter and spacing."""
    return MatcherConfig(
        model="test-model",
        batch_size=2,
        max_retries=1,
        concurrency_limit=3,
        inter_request_delay_ms=0,
        timeout_ms=5000,
        backoff_base_delay_ms=0,
        backoff_max_delay_ms=0,
        backoff_jitter_ms=0,
        circuit_breaker_threshold=10,
    )


@pytest.fixture
def candidate_profile() -> CandidateProfile:
    return CandidateProfile(
        summary="Backend engineer with 5 years of Python",
        skills=[
            SkillItem(name="Python", proficiency=5, category="Languages"),
            SkillItem(name="PostgreSQL", proficiency=3),
        ],
        experience=[ExperienceItem(title="Backend Engineer", company="Acme", description="APIs and data pipelines")],
    )


@pytest.fixture
def make_jobs() -> Callable[[int], List[JobData]]:
    def _make(count: int) -> List[JobData]:
        return [
            JobData(
                id=i,
                title=f"Engineer {i}",
                description="<p>We need:</p><ul><li>Python</li><li>SQL</li></ul>",
                company_id=10 if i <= 3 else 20,
            )
            for i in range(1, count + 1)
        ]

    return _make


@pytest.fixture
def store(make_jobs, candidate_profile) -> InMemoryMatchStore:
    return InMemoryMatchStore(jobs=make_jobs(5), profile=candidate_profile)
