"""
Shared pytest fixtures for CityCup tests.

Sets required environment variables BEFORE any citycup module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import os
from typing import AsyncGenerator, List, Sequence, Tuple

# ── Set env vars before any citycup import ────────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("ADMIN_IDS", "1001")
os.environ.setdefault("SUPERADMIN_IDS", "9001")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── CityCup imports (safe after env vars are set) ─────────────────────────────
from citycup.models.base import Base
from citycup.models.models import City, Competition, Participation, ParticipationSource
from citycup.services.competition_service import (
    add_city_to_competition,
    create_city,
    create_competition,
    register_participation,
    set_registration_open,
    upsert_user,
)

ADMIN_ID      = 1001
SUPERADMIN_ID = 9001


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a fresh AsyncSession backed by an isolated in-memory SQLite database.
    Schema is created fresh for every test function; engine is always disposed
    on teardown, even if the test raises an exception.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


# ── Data builders ─────────────────────────────────────────────────────────────

async def make_competition(
    session: AsyncSession,
    name: str = "City Cup",
    cities: Sequence[str] = ("Almaty",),
) -> Tuple[Competition, List[City]]:
    """Competition with registration open and one track per city name."""
    competition = await create_competition(session, name)
    await set_registration_open(session, competition.id, True)
    created = []
    for city_name in cities:
        city = await create_city(session, city_name)
        await add_city_to_competition(session, competition.id, city.id)
        created.append(city)
    return competition, created


async def register_many(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    count: int,
    prefix: str = "p",
) -> List[Participation]:
    """`count` users registered in one city; emails are <prefix><i>@example.com, MI ids MI-<prefix><i>."""
    participations = []
    for i in range(1, count + 1):
        user = await upsert_user(
            session,
            email=f"{prefix}{i}@example.com",
            full_name=f"Participant {prefix.upper()}{i:02d}",
            mi_id=f"MI-{prefix}{i}",
        )
        participations.append(await register_participation(
            session, user.id, competition_id, city_id, ParticipationSource.ADMIN_ADDED
        ))
    return participations


def score_rows(pairs: Sequence[Tuple[str, float]]) -> List[dict]:
    """Upload records keyed by MI id."""
    return [{"mi_id": mi_id, "score": score} for mi_id, score in pairs]
