"""
Database Session Management - Async SQLAlchemy session factory.

Writes go to the primary; balance and history reads may use a replica.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vidgro.config import settings

_engines: dict[str, AsyncEngine] = {}
_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def _build_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.log_level.upper() == "DEBUG",
    )


def get_engine(role: str = "write") -> AsyncEngine:
    """Get or create the engine for `role` ("write" = primary, "read" = replica)."""
    if role not in _engines:
        url = settings.database_url if role == "write" else settings.read_database_url
        _engines[role] = _build_engine(url)
    return _engines[role]


def get_session_factory(role: str = "write") -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory for `role`."""
    if role not in _factories:
        # expire_on_commit=False so services can read ORM rows after commit
        _factories[role] = async_sessionmaker(
            get_engine(role), class_=AsyncSession, expire_on_commit=False
        )
    return _factories[role]


@asynccontextmanager
async def get_write_session() -> AsyncIterator[AsyncSession]:
    """
    Session for work outside a request (background sweeps).

    Usage:
        async with get_write_session() as session:
            await PromotionService(session).release_expired_holds()
    """
    async with get_session_factory("write")() as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for write database session."""
    async with get_session_factory("write")() as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for read database session (replica when configured)."""
    async with get_session_factory("read")() as session:
        yield session


async def ping_database(session: AsyncSession) -> bool:
    """Return True when the database answers a trivial query."""
    result = await session.execute(text("SELECT 1"))
    return result.scalar() == 1


async def close_engines() -> None:
    """Close all database engines (for graceful shutdown)."""
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()
    _factories.clear()
