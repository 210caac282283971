# path: backend/jobmatch/repositories/profile_repo.py
# Purpose: Data-access only for the candidate Profile and its skills / experience.
from typing import Iterable, Mapping, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from jobmatch.models.profile import Experience, Profile, Skill


async def get_first(db: AsyncSession) -> Optional[Profile]:
    stmt = (
        select(Profile)
        .options(selectinload(Profile.skills), selectinload(Profile.experience))
        .order_by(Profile.id)
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def create(
    db: AsyncSession,
    *,
    summary: Optional[str],
    skills: Iterable[Mapping] = (),
    experience: Iterable[Mapping] = (),
) -> Profile:
    profile = Profile(summary=summary)
    profile.skills = [Skill(**s) for s in skills]
    profile.experience = [Experience(**e) for e in experience]
    db.add(profile)
    await db.commit()
    await db.refresh(profile)
    return profile
