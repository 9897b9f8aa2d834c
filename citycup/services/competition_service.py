"""
Competition service — users, competitions, cities and participations.

All functions receive an AsyncSession parameter and are plain async
functions (no class coupling). They flush but never commit: the caller
(the DB middleware, or a test) owns the transaction.
"""
from __future__ import annotations

from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from citycup.errors import InvalidInputError, StateConflictError
from citycup.models.models import (
    City,
    Competition,
    CompetitionCity,
    CompetitionStatus,
    Participation,
    ParticipationSource,
    User,
)
from citycup.services import audit_service
from citycup.services.lookups import find_competition_city, require


# ── User ──────────────────────────────────────────────────────────────────────

async def upsert_user(
    session: AsyncSession,
    email: str,
    full_name: str,
    mi_id: Optional[str] = None,
    telegram_id: Optional[int] = None,
) -> User:
    """Create or update a participant identity, keyed by email."""
    email = email.strip().lower()
    if not email or "@" not in email:
        raise InvalidInputError("A valid email is required")
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if mi_id is not None:
        taken = await session.execute(select(User.id).where(User.mi_id == mi_id))
        owner = taken.scalar_one_or_none()
        if owner is not None and (user is None or owner != user.id):
            raise StateConflictError(f"MI ID {mi_id} belongs to another participant")
    if telegram_id is not None:
        taken = await session.execute(select(User.id).where(User.telegram_id == telegram_id))
        owner = taken.scalar_one_or_none()
        if owner is not None and (user is None or owner != user.id):
            raise StateConflictError("This Telegram account is linked to another email")

    if user is None:
        user = User(email=email, full_name=full_name, mi_id=mi_id, telegram_id=telegram_id)
        session.add(user)
    else:
        user.full_name = full_name
        if mi_id is not None:
            user.mi_id = mi_id
        if telegram_id is not None:
            user.telegram_id = telegram_id
    await session.flush()
    return user


async def get_user_by_telegram(session: AsyncSession, telegram_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.telegram_id == telegram_id))
    return result.scalar_one_or_none()


# ── Competition ───────────────────────────────────────────────────────────────

async def create_competition(
    session: AsyncSession,
    name: str,
    description: Optional[str] = None,
) -> Competition:
    """New competitions start in DRAFT with registration closed."""
    c = Competition(
        name=name,
        description=description,
        status=CompetitionStatus.DRAFT,
        registration_open=False,
    )
    session.add(c)
    await session.flush()
    return c


async def get_competition(
    session: AsyncSession,
    competition_id: int,
    load_relations: bool = True,
) -> Optional[Competition]:
    q = select(Competition).where(Competition.id == competition_id)
    if load_relations:
        q = q.options(selectinload(Competition.cities).selectinload(CompetitionCity.city))
    result = await session.execute(q)
    return result.scalar_one_or_none()


async def list_competitions(
    session: AsyncSession,
    status: Optional[str] = None,
) -> List[Competition]:
    q = select(Competition).order_by(Competition.created_at.desc(), Competition.id.desc())
    if status:
        q = q.where(Competition.status == status)
    result = await session.execute(q)
    return list(result.scalars().all())


async def list_open_competitions(session: AsyncSession) -> List[Competition]:
    """Competitions visible to participants (registration open)."""
    result = await session.execute(
        select(Competition)
        .where(
            Competition.registration_open.is_(True),
            Competition.status.in_([CompetitionStatus.DRAFT, CompetitionStatus.ACTIVE]),
        )
        .order_by(Competition.created_at.desc())
    )
    return list(result.scalars().all())


async def set_competition_status(
    session: AsyncSession,
    competition_id: int,
    status: str,
    admin_id: Optional[int] = None,
) -> Competition:
    """Move a competition along DRAFT → ACTIVE → COMPLETED → ARCHIVED (or CANCELLED)."""
    c = await require(session, Competition, competition_id, for_update=True)
    allowed = CompetitionStatus.TRANSITIONS.get(c.status, [])
    if status not in allowed:
        raise StateConflictError(f"Cannot transition from {c.status} to {status}")
    c.status = status
    # A manual status change supersedes any pending auto-completion revert
    c.pre_completion_status = None
    await session.flush()
    audit_service.record(admin_id, "competition.status", "competition", c.id, status=status)
    return c


async def set_registration_open(
    session: AsyncSession,
    competition_id: int,
    is_open: bool,
    admin_id: Optional[int] = None,
) -> Competition:
    c = await require(session, Competition, competition_id, for_update=True)
    if is_open and c.status in (
        CompetitionStatus.CANCELLED, CompetitionStatus.ARCHIVED, CompetitionStatus.COMPLETED
    ):
        raise StateConflictError(f"Cannot open registration for a {c.status} competition")
    c.registration_open = is_open
    await session.flush()
    audit_service.record(admin_id, "competition.registration", "competition", c.id, open=is_open)
    return c


# ── Cities ────────────────────────────────────────────────────────────────────

async def create_city(session: AsyncSession, name: str) -> City:
    name = name.strip()
    if not name:
        raise InvalidInputError("City name is required")
    existing = await session.execute(select(City).where(City.name == name))
    if existing.scalar_one_or_none():
        raise StateConflictError(f"City already exists: {name}")
    city = City(name=name)
    session.add(city)
    await session.flush()
    return city


async def list_cities(session: AsyncSession) -> List[City]:
    result = await session.execute(select(City).order_by(City.name))
    return list(result.scalars().all())


async def add_city_to_competition(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    event_date: Optional[date] = None,
) -> CompetitionCity:
    await require(session, Competition, competition_id)
    await require(session, City, city_id)
    if await find_competition_city(session, competition_id, city_id):
        raise StateConflictError("City is already part of this competition")
    cc = CompetitionCity(competition_id=competition_id, city_id=city_id, event_date=event_date)
    session.add(cc)
    await session.flush()
    return cc


async def list_competition_cities(
    session: AsyncSession,
    competition_id: int,
) -> List[CompetitionCity]:
    result = await session.execute(
        select(CompetitionCity)
        .join(City, City.id == CompetitionCity.city_id)
        .where(CompetitionCity.competition_id == competition_id)
        .options(selectinload(CompetitionCity.city))
        .order_by(CompetitionCity.event_date.asc().nullslast(), City.name)
    )
    return list(result.scalars().all())


# ── Participations ────────────────────────────────────────────────────────────

async def register_participation(
    session: AsyncSession,
    user_id: int,
    competition_id: int,
    city_id: int,
    source: str = ParticipationSource.USER_SELF,
) -> Participation:
    """
    Register a user for a competition in a city.
    Self-registration requires both the competition and the city to be open;
    admin additions bypass the registration window.
    """
    await require(session, User, user_id)
    competition = await require(session, Competition, competition_id)
    cc = await find_competition_city(session, competition_id, city_id)
    if cc is None:
        raise InvalidInputError("Invalid city for this competition")

    if source == ParticipationSource.USER_SELF:
        if not competition.registration_open or not cc.registration_open:
            raise StateConflictError("Registration is closed for this city")

    existing = await session.execute(
        select(Participation).where(
            Participation.user_id == user_id,
            Participation.competition_id == competition_id,
            Participation.city_id == city_id,
        )
    )
    if existing.scalar_one_or_none():
        raise StateConflictError("Already registered for this competition in this city")

    p = Participation(
        user_id=user_id,
        competition_id=competition_id,
        city_id=city_id,
        source=source,
    )
    session.add(p)
    await session.flush()
    return p


async def list_participations(
    session: AsyncSession,
    competition_id: int,
    city_id: Optional[int] = None,
) -> List[Participation]:
    q = (
        select(Participation)
        .where(Participation.competition_id == competition_id)
        .options(selectinload(Participation.user), selectinload(Participation.city))
        .order_by(Participation.id)
    )
    if city_id is not None:
        q = q.where(Participation.city_id == city_id)
    result = await session.execute(q)
    return list(result.scalars().all())


async def get_user_participations(
    session: AsyncSession,
    user_id: int,
) -> List[Participation]:
    result = await session.execute(
        select(Participation)
        .where(Participation.user_id == user_id)
        .options(selectinload(Participation.competition), selectinload(Participation.city))
        .order_by(Participation.registered_at.desc())
    )
    return list(result.scalars().all())
