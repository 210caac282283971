# path: backend/jobmatch/repositories/job_repo.py
# Purpose: Data-access only for Job. No business rules here.
from typing import Iterable, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func
from jobmatch.models.job import Job


async def create(db: AsyncSession, *, title: str, description: Optional[str], company_id: Optional[int] = None) -> Job:
    job = Job(title=title, description=description, company_id=company_id)
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


async def get(db: AsyncSession, job_id: int) -> Optional[Job]:
    return await db.get(Job, job_id)


async def get_many(db: AsyncSession, job_ids: Iterable[int]) -> List[Job]:
    ids = list(job_ids)
    if not ids:
        return []
    rows = (await db.execute(select(Job).where(Job.id.in_(ids)))).scalars().all()
    return list(rows)


async def list_unmatched_ids(db: AsyncSession) -> List[int]:
    rows = (await db.execute(select(Job.id).where(Job.match_score.is_(None)).order_by(Job.id))).scalars().all()
    return list(rows)


async def list_ids_by_company(db: AsyncSession, company_id: int) -> List[int]:
    rows = (await db.execute(select(Job.id).where(Job.company_id == company_id).order_by(Job.id))).scalars().all()
    return list(rows)


async def save_match_result(
    db: AsyncSession,
    job_id: int,
    *,
    score: int,
    reasons: List[str],
    matched_skills: List[str],
    missing_skills: List[str],
    recommendations: List[str],
) -> None:
    await db.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(
            match_score=score,
            match_reasons=reasons,
            matched_skills=matched_skills,
            missing_skills=missing_skills,
            recommendations=recommendations,
            updated_at=func.now(),
        )
    )
    await db.commit()
