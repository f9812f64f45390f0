"""Async SQLAlchemy engine, session factory and the request-scoped session.

Services own their commits: report intake commits once per report, moderation
and the auto-promotion sweep commit once per request row. The session handed
out here is never committed on the caller's behalf.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from stumpwatch.config import settings


def build_engine(url: str | None = None, **overrides: Any) -> AsyncEngine:
    """Engine for `url` (default `DATABASE_URL`) with pool sizing from settings.

    SQLite gets no pool sizing; the test suite runs it on a `StaticPool`.
    """
    url = url or settings.DATABASE_URL
    options: dict[str, Any] = {"echo": settings.DB_ECHO}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE_S,
            pool_pre_ping=True,
        )
    options.update(overrides)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows are read back after commit (ids, stamps) and after per-item rollbacks.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """Declarative base used by all ORM models."""


async def get_session() -> AsyncSession:  # type: ignore[misc]
    """FastAPI dependency: one session per request."""
    async with async_session_factory() as session:
        yield session
