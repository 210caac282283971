# jobmatch/services/match/store.py
"""
SqlMatchStore - the engine's job/profile source and result sink on SQLAlchemy.

Each operation opens its own AsyncSession from the factory, so jobs resolving
concurrently never share a session.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobmatch.models.match_session import MatchLog
from jobmatch.repositories import job_repo, match_session_repo, profile_repo
from jobmatch.schemas.match import CandidateProfile, ExperienceItem, MatchResult, SkillItem, TriggerSource
from jobmatch.services.match.types import (
    JobData,
    JobLookup,
    MatchLogEntry,
    SessionPage,
    SessionRecord,
    SessionStatus,
)

logger = logging.getLogger("match.store")


def _to_record(row) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        trigger_source=row.trigger_source,
        status=row.status,
        jobs_total=row.jobs_total,
        jobs_completed=row.jobs_completed,
        jobs_succeeded=row.jobs_succeeded,
        jobs_failed=row.jobs_failed,
        error_count=row.error_count,
        company_id=row.company_id,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class SqlMatchStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ----- JobSource -----

    async def fetch_jobs(self, job_ids: Sequence[int]) -> JobLookup:
        async with self._session_factory() as db:
            rows = await job_repo.get_many(db, job_ids)
        by_id = {row.id: row for row in rows}
        jobs = [
            JobData(id=row.id, title=row.title, description=row.description, company_id=row.company_id)
            for job_id in job_ids
            if (row := by_id.get(job_id)) is not None
        ]
        missing = [job_id for job_id in job_ids if job_id not in by_id]
        return JobLookup(jobs=jobs, missing_ids=missing)

    async def get_unmatched_job_ids(self) -> List[int]:
        async with self._session_factory() as db:
            return await job_repo.list_unmatched_ids(db)

    async def get_company_job_ids(self, company_id: int) -> List[int]:
        async with self._session_factory() as db:
            return await job_repo.list_ids_by_company(db, company_id)

    # ----- ProfileSource -----

    async def get_candidate_profile(self) -> Optional[CandidateProfile]:
        async with self._session_factory() as db:
            profile = await profile_repo.get_first(db)
            if profile is None:
                return None
            return CandidateProfile(
                summary=profile.summary,
                skills=[
                    SkillItem(name=s.name, proficiency=s.proficiency or 3, category=s.category)
                    for s in profile.skills
                ],
                experience=[
                    ExperienceItem(title=e.title, company=e.company, description=e.description)
                    for e in profile.experience
                ],
            )

    # ----- MatchSink -----

    async def update_job_result(self, job_id: int, result: MatchResult) -> None:
        async with self._session_factory() as db:
            await job_repo.save_match_result(
                db,
                job_id,
                score=result.score,
                reasons=result.reasons,
                matched_skills=result.matched_skills,
                missing_skills=result.missing_skills,
                recommendations=result.recommendations,
            )

    async def create_session(
        self, session_id: str, trigger_source: TriggerSource, jobs_total: int, company_id: Optional[int] = None
    ) -> None:
        async with self._session_factory() as db:
            await match_session_repo.create(
                db, session_id=session_id, trigger_source=trigger_source, jobs_total=jobs_total, company_id=company_id
            )

    async def update_session(
        self, session_id: str, *, jobs_completed: int, jobs_succeeded: int, jobs_failed: int, error_count: int
    ) -> None:
        async with self._session_factory() as db:
            await match_session_repo.update_counters(
                db,
                session_id,
                jobs_completed=jobs_completed,
                jobs_succeeded=jobs_succeeded,
                jobs_failed=jobs_failed,
                error_count=error_count,
            )

    async def finalize_session(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        jobs_completed: int,
        jobs_succeeded: int,
        jobs_failed: int,
        error_count: int,
    ) -> bool:
        async with self._session_factory() as db:
            return await match_session_repo.finalize(
                db,
                session_id,
                status=status,
                jobs_completed=jobs_completed,
                jobs_succeeded=jobs_succeeded,
                jobs_failed=jobs_failed,
                error_count=error_count,
            )

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        async with self._session_factory() as db:
            row = await match_session_repo.get(db, session_id)
            return _to_record(row) if row is not None else None

    async def insert_log(self, entry: MatchLogEntry) -> None:
        async with self._session_factory() as db:
            await match_session_repo.add_log(
                db,
                MatchLog(
                    session_id=entry.session_id,
                    job_id=entry.job_id,
                    status=entry.status,
                    score=entry.score,
                    attempt_count=entry.attempt_count,
                    error_type=entry.error_type,
                    error_message=entry.error_message,
                    duration_ms=entry.duration_ms,
                    model_used=entry.model_used,
                    completed_at=entry.completed_at or datetime.now(timezone.utc),
                ),
            )

    # ----- MatchHistorySource -----

    async def list_sessions(self, limit: int, offset: int) -> SessionPage:
        async with self._session_factory() as db:
            rows = await match_session_repo.list_sessions(db, limit=limit, offset=offset)
            total = await match_session_repo.count_sessions(db)
            return SessionPage(sessions=[_to_record(row) for row in rows], total=total, limit=limit, offset=offset)

    async def list_logs(self, session_id: str) -> List[MatchLogEntry]:
        async with self._session_factory() as db:
            rows = await match_session_repo.list_logs(db, session_id)
            return [
                MatchLogEntry(
                    session_id=row.session_id,
                    job_id=row.job_id,
                    status=row.status,
                    score=row.score,
                    attempt_count=row.attempt_count,
                    error_type=row.error_type,
                    error_message=row.error_message,
                    duration_ms=row.duration_ms,
                    model_used=row.model_used,
                    completed_at=row.completed_at,
                )
                for row in rows
            ]
