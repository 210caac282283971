# path: backend/jobmatch/repositories/match_session_repo.py
# Purpose: Data-access only for MatchSession / MatchLog. Status rules live in the match service.
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from jobmatch.models.match_session import MatchLog, MatchSession


async def create(
    db: AsyncSession, *, session_id: str, trigger_source: str, jobs_total: int, company_id: Optional[int] = None
) -> MatchSession:
    row = MatchSession(
        id=session_id,
        trigger_source=trigger_source,
        company_id=company_id,
        status="in_progress",
        jobs_total=jobs_total,
        jobs_completed=0,
        jobs_succeeded=0,
        jobs_failed=0,
        error_count=0,
    )
    db.add(row)
    await db.commit()
    return row


async def get(db: AsyncSession, session_id: str) -> Optional[MatchSession]:
    return await db.get(MatchSession, session_id)


async def update_counters(
    db: AsyncSession, session_id: str, *, jobs_completed: int, jobs_succeeded: int, jobs_failed: int, error_count: int
) -> None:
    # Terminal sessions are never rewritten
    await db.execute(
        update(MatchSession)
        .where(MatchSession.id == session_id, MatchSession.status == "in_progress")
        .values(
            jobs_completed=jobs_completed,
            jobs_succeeded=jobs_succeeded,
            jobs_failed=jobs_failed,
            error_count=error_count,
        )
    )
    await db.commit()


async def finalize(
    db: AsyncSession,
    session_id: str,
    *,
    status: str,
    jobs_completed: int,
    jobs_succeeded: int,
    jobs_failed: int,
    error_count: int,
) -> bool:
    """Move an in_progress session to a terminal status. Returns False if it was already terminal."""
    result = await db.execute(
        update(MatchSession)
        .where(MatchSession.id == session_id, MatchSession.status == "in_progress")
        .values(
            status=status,
            jobs_completed=jobs_completed,
            jobs_succeeded=jobs_succeeded,
            jobs_failed=jobs_failed,
            error_count=error_count,
            completed_at=datetime.now(timezone.utc),
        )
    )
    await db.commit()
    return result.rowcount == 1


async def add_log(db: AsyncSession, log: MatchLog) -> MatchLog:
    db.add(log)
    await db.commit()
    return log


async def list_logs(db: AsyncSession, session_id: str) -> List[MatchLog]:
    stmt = select(MatchLog).where(MatchLog.session_id == session_id).order_by(MatchLog.id)
    return list((await db.execute(stmt)).scalars().all())


async def list_sessions(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> List[MatchSession]:
    stmt = (
        select(MatchSession)
        .order_by(MatchSession.started_at.desc(), MatchSession.id)
        .limit(limit)
        .offset(offset)
    )
    return list((await db.execute(stmt)).scalars().all())


async def count_sessions(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(MatchSession))).scalar_one()
