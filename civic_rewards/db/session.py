"""
Database Session Management - Async SQLAlchemy engines and sessions.

Writes (and every locked read) go to the primary. Unlocked reads may go to a
replica when DATABASE_READ_URL is set; otherwise both point at the primary.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from civic_rewards.config import settings


class _Database:
    """Lazily created engine and session factory for one connection URL."""

    def __init__(self, role: str) -> None:
        self.role = role
        self.engine: AsyncEngine | None = None
        self.factory: async_sessionmaker[AsyncSession] | None = None

    def _url(self) -> str:
        return settings.database_url if self.role == "primary" else settings.read_database_url

    def get_engine(self) -> AsyncEngine:
        if self.engine is None:
            self.engine = create_async_engine(
                self._url(),
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_recycle=settings.database_pool_recycle,
                pool_pre_ping=True,
                echo=settings.log_level.upper() == "DEBUG",
            )
        return self.engine

    def get_factory(self) -> async_sessionmaker[AsyncSession]:
        # expire_on_commit=False keeps ORM rows readable after the unit of work commits
        if self.factory is None:
            self.factory = async_sessionmaker(self.get_engine(), expire_on_commit=False)
        return self.factory

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self.factory = None


_primary = _Database("primary")
_replica = _Database("replica")


def get_write_engine() -> AsyncEngine:
    """Primary engine (used for tracing instrumentation)."""
    return _primary.get_engine()


@asynccontextmanager
async def get_write_session() -> AsyncIterator[AsyncSession]:
    """
    Session on the primary for work that runs outside a request.

    Used by startup seeding and background AI enrichment:

        async with get_write_session() as session:
            ...
    """
    async with _primary.get_factory()() as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: session on the primary."""
    async with _primary.get_factory()() as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: session for unlocked reads (replica when configured)."""
    async with _replica.get_factory()() as session:
        yield session


async def close_engines() -> None:
    """Dispose both engines (graceful shutdown)."""
    await _primary.dispose()
    await _replica.dispose()
