"""Async engine and session factory for call storage."""
from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import settings


def _build_engine() -> AsyncEngine:
    connect_args: dict[str, object] = {}
    if settings.database_ssl_required:
        connect_args["ssl"] = True
    return create_async_engine(
        settings.database_async_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        connect_args=connect_args,
    )


engine = _build_engine()
# Commits must not expire rows: the lifecycle serializes them after commit.
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session; work is committed by the lifecycle."""

    async with SessionLocal() as session:
        yield session


async def create_schema() -> None:
    """Create the calls, transcripts, numbers and agents tables if missing."""

    from .. import models  # noqa: F401 - register mappers
    from ..models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()
