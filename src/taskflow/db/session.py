"""Database session management utilities."""

from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.config import get_settings
from ..core.instrumentation import instrument_engine
from .base import metadata

settings = get_settings()

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_pre_ping=True,
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Job workers start a fresh event loop per job, so their connections must not be pooled.
job_engine: AsyncEngine = create_async_engine(settings.database_url, echo=settings.db_echo, poolclass=NullPool)
job_session_maker = async_sessionmaker(job_engine, class_=AsyncSession, expire_on_commit=False)

instrument_engine(engine, settings)
instrument_engine(job_engine, settings)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield an ``AsyncSession`` for request-scoped work."""
    async with async_session_maker() as session:
        yield session


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all database tables (local development and tests only)."""
    target = bind or engine
    async with target.begin() as connection:
        await connection.run_sync(metadata.create_all)
