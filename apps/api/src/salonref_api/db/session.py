"""Async engine and session factory shared by the API process."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from salonref_api.core.settings import settings


def build_engine(database_url: str | None = None) -> AsyncEngine:
    url = database_url or settings.database_url
    options: dict[str, object] = {"future": True}
    if url.startswith("postgresql"):
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    return create_async_engine(url, **options)


engine = build_engine()
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""

    async with async_session() as session:
        yield session
