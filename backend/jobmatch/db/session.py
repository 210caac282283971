# backend/jobmatch/db/session.py
from __future__ import annotations
from functools import lru_cache
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from jobmatch.core.config import settings
from jobmatch.db.base import Base


@lru_cache(maxsize=1)
def get_async_engine() -> AsyncEngine:
    # Created lazily so importing the package never needs a live driver
    return create_async_engine(settings.database_url_async_effective, pool_pre_ping=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return make_session_factory(get_async_engine())


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def init_models(engine: AsyncEngine | None = None) -> None:
    """Create all tables known to the metadata (idempotent)."""
    import jobmatch.models  # noqa: F401  (register tables)

    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
