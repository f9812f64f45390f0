from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import stumpwatch.models  # noqa: F401
from stumpwatch.db import Base, build_engine, build_session_factory
from stumpwatch.models.event import Event, EventStatus

SHIBUYA = (35.6595, 139.7005)


def make_sqlite_engine():
    return build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


async def _with_database(scenario: Callable[[async_sessionmaker], Awaitable[Any]]) -> Any:
    engine = make_sqlite_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = build_session_factory(engine)
    try:
        return await scenario(factory)
    finally:
        await engine.dispose()


@pytest.fixture
def run_db():
    """Run `async def scenario(session_factory)` against a fresh in-memory database."""

    def _runner(scenario):
        return asyncio.run(_with_database(scenario))

    return _runner


async def _seed_event(session: AsyncSession, **overrides) -> Event:
    values = {
        "candidate_id": 7,
        "status": EventStatus.PLANNED.value,
        "location_text": "Hachiko exit",
        "lat": SHIBUYA[0],
        "lng": SHIBUYA[1],
    }
    values.update(overrides)
    event = Event(**values)
    session.add(event)
    await session.commit()
    return event


@pytest.fixture
def seed_event():
    return _seed_event
