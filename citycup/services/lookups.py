"""
Shared "fetch or raise" helpers used across services.
"""
from __future__ import annotations

from typing import Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import NotFoundError, StateConflictError
from citycup.models.models import (
    Base,
    Certificate,
    CertificateTemplate,
    City,
    Competition,
    CompetitionCity,
    Participation,
    Round,
    RoundParticipation,
    User,
)

M = TypeVar("M", bound=Base)

_LABELS = {
    Competition:         "Competition",
    City:                "City",
    Round:               "Round",
    Participation:       "Participation",
    RoundParticipation:  "Round participation",
    CertificateTemplate: "Template",
    Certificate:         "Certificate",
    User:                "User",
}


async def require(
    session: AsyncSession,
    model: Type[M],
    entity_id: int,
    for_update: bool = False,
) -> M:
    q = select(model).where(model.id == entity_id)
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    obj = result.scalar_one_or_none()
    if obj is None:
        raise NotFoundError(_LABELS.get(model, model.__name__), entity_id)
    return obj


async def find_competition_city(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    for_update: bool = False,
) -> Optional[CompetitionCity]:
    q = select(CompetitionCity).where(
        CompetitionCity.competition_id == competition_id,
        CompetitionCity.city_id == city_id,
    )
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    return result.scalar_one_or_none()


async def require_competition_city(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    for_update: bool = False,
) -> CompetitionCity:
    cc = await find_competition_city(session, competition_id, city_id, for_update)
    if cc is None:
        raise NotFoundError("City track", f"{competition_id}/{city_id}")
    return cc


async def ensure_city_open(session: AsyncSession, r: Round) -> None:
    """Rounds of a finished city are frozen until the city is reopened."""
    cc = await find_competition_city(session, r.competition_id, r.city_id)
    if cc is not None and cc.is_finished:
        raise StateConflictError("City is already finished. Reopen it first.")
