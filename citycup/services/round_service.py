"""
Round service — round lifecycle, membership and leaderboards.

Rounds form a strictly ordered sequence per (competition, city). The next
round number is always computed here (max + 1), never taken from the caller.
Creating round 1 auto-enrols every participation registered for the city.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import InvalidInputError, NotFoundError, StateConflictError
from citycup.models.models import (
    City,
    Competition,
    Participation,
    QualifiedBy,
    Round,
    RoundParticipation,
    RoundScore,
    RoundStatus,
    User,
)
from citycup.services import audit_service
from citycup.services.lookups import ensure_city_open, require, require_competition_city
from citycup.services.ranking_service import recalculate_round_ranks
from citycup.validators import RoundData, validation_message

logger = logging.getLogger(__name__)


@dataclass
class ParticipantRow:
    """One participant of a round with its score state (leaderboard / detail row)."""
    round_participation_id: int
    participation_id:       int
    user_id:                int
    full_name:              str
    email:                  str
    mi_id:                  Optional[str]
    city_name:              str
    qualified_by:           str
    score:                  Optional[float]
    rank_in_round:          Optional[int]
    is_winner:              bool
    winner_position:        Optional[int]
    notes:                  Optional[str]


@dataclass
class RoundSummary:
    round:             Round
    participant_count: int
    scored_count:      int
    winner_count:      int


@dataclass
class RoundDetail:
    round:            Round
    city_name:        str
    competition_name: str
    participants:     List[ParticipantRow]

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def scored_count(self) -> int:
        return sum(1 for p in self.participants if p.score is not None)


@dataclass
class EligibleParticipant:
    participation_id: int
    full_name:        str
    email:            str
    mi_id:            Optional[str]
    city_name:        str
    is_past_winner:   bool


# ── Creation ──────────────────────────────────────────────────────────────────

async def next_round_number(session: AsyncSession, competition_id: int, city_id: int) -> int:
    result = await session.execute(
        select(func.max(Round.round_number)).where(
            Round.competition_id == competition_id,
            Round.city_id == city_id,
        )
    )
    current = result.scalar_one_or_none()
    return (current or 0) + 1


async def _existing_finale(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    exclude_round_id: Optional[int] = None,
) -> Optional[Round]:
    q = select(Round).where(
        Round.competition_id == competition_id,
        Round.city_id == city_id,
        Round.is_finale.is_(True),
    )
    if exclude_round_id is not None:
        q = q.where(Round.id != exclude_round_id)
    result = await session.execute(q)
    return result.scalars().first()


async def create_round(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    name: str,
    is_finale: bool = False,
    round_date: Optional[date] = None,
    admin_id: Optional[int] = None,
) -> Round:
    try:
        data = RoundData(name=name, is_finale=is_finale, round_date=round_date)
    except ValidationError as e:
        raise InvalidInputError(validation_message(e)) from e

    await require(session, Competition, competition_id)
    # Lock the track so concurrent creations cannot pick the same number
    cc = await require_competition_city(session, competition_id, city_id, for_update=True)

    if data.is_finale:
        finale = await _existing_finale(session, competition_id, city_id)
        if finale:
            raise StateConflictError(
                f'A finale already exists for this city: "{finale.name}". '
                f"Only one finale per city is allowed."
            )

    number = await next_round_number(session, competition_id, city_id)
    r = Round(
        competition_id=competition_id,
        city_id=city_id,
        round_number=number,
        name=data.name,
        round_date=data.round_date or cc.event_date,
        is_finale=data.is_finale,
        status=RoundStatus.PENDING,
    )
    session.add(r)
    await session.flush()

    enrolled = 0
    if number == 1:
        result = await session.execute(
            select(Participation.id).where(
                Participation.competition_id == competition_id,
                Participation.city_id == city_id,
            )
        )
        for pid in result.scalars().all():
            session.add(RoundParticipation(
                round_id=r.id,
                participation_id=pid,
                qualified_by=QualifiedBy.AUTOMATIC,
                added_by=admin_id,
            ))
            enrolled += 1
        await session.flush()

    logger.info("Round %d created (R%d, finale=%s, enrolled=%d)", r.id, number, r.is_finale, enrolled)
    audit_service.record(
        admin_id, "round.create", "round", r.id,
        competition_id=competition_id, city_id=city_id, round_number=number, enrolled=enrolled,
    )
    return r


# ── Queries ───────────────────────────────────────────────────────────────────

async def get_round(session: AsyncSession, round_id: int) -> Optional[Round]:
    result = await session.execute(select(Round).where(Round.id == round_id))
    return result.scalar_one_or_none()


def _participant_rows_query(round_id: int):
    return (
        select(
            RoundParticipation.id,
            RoundParticipation.participation_id,
            User.id,
            User.full_name,
            User.email,
            User.mi_id,
            City.name,
            RoundParticipation.qualified_by,
            RoundScore.score,
            RoundScore.rank_in_round,
            RoundScore.is_winner,
            RoundScore.winner_position,
            RoundScore.notes,
        )
        .join(Participation, Participation.id == RoundParticipation.participation_id)
        .join(User, User.id == Participation.user_id)
        .join(City, City.id == Participation.city_id)
        .outerjoin(RoundScore, RoundScore.round_participation_id == RoundParticipation.id)
        .where(RoundParticipation.round_id == round_id)
        .order_by(RoundScore.score.desc().nullslast(), User.full_name, RoundParticipation.id)
    )


async def _participant_rows(session: AsyncSession, round_id: int) -> List[ParticipantRow]:
    result = await session.execute(_participant_rows_query(round_id))
    return [
        ParticipantRow(
            round_participation_id=row[0],
            participation_id=row[1],
            user_id=row[2],
            full_name=row[3],
            email=row[4],
            mi_id=row[5],
            city_name=row[6],
            qualified_by=row[7],
            score=row[8],
            rank_in_round=row[9],
            is_winner=bool(row[10]),
            winner_position=row[11],
            notes=row[12],
        )
        for row in result.all()
    ]


async def get_round_details(session: AsyncSession, round_id: int) -> RoundDetail:
    r = await require(session, Round, round_id)
    names = await session.execute(
        select(City.name, Competition.name)
        .where(City.id == r.city_id, Competition.id == r.competition_id)
    )
    city_name, competition_name = names.one()
    return RoundDetail(
        round=r,
        city_name=city_name,
        competition_name=competition_name,
        participants=await _participant_rows(session, round_id),
    )


async def get_round_leaderboard(session: AsyncSession, round_id: int) -> List[ParticipantRow]:
    await require(session, Round, round_id)
    return await _participant_rows(session, round_id)


async def list_rounds(
    session: AsyncSession,
    competition_id: int,
    city_id: Optional[int] = None,
) -> List[RoundSummary]:
    """Rounds of a competition (optionally one city) with membership counts."""
    participants = (
        select(func.count(RoundParticipation.id))
        .where(RoundParticipation.round_id == Round.id)
        .scalar_subquery()
    )
    scored = (
        select(func.count(RoundScore.id))
        .join(RoundParticipation, RoundParticipation.id == RoundScore.round_participation_id)
        .where(RoundParticipation.round_id == Round.id, RoundScore.score.is_not(None))
        .scalar_subquery()
    )
    winners = (
        select(func.count(RoundScore.id))
        .join(RoundParticipation, RoundParticipation.id == RoundScore.round_participation_id)
        .where(RoundParticipation.round_id == Round.id, RoundScore.is_winner.is_(True))
        .scalar_subquery()
    )
    q = (
        select(Round, participants, scored, winners)
        .join(City, City.id == Round.city_id)
        .where(Round.competition_id == competition_id)
        .order_by(City.name, Round.round_number)
    )
    if city_id is not None:
        q = q.where(Round.city_id == city_id)
    result = await session.execute(q)
    return [
        RoundSummary(round=r, participant_count=p or 0, scored_count=s or 0, winner_count=w or 0)
        for r, p, s, w in result.all()
    ]


# ── Update / delete / archive ─────────────────────────────────────────────────

async def update_round(
    session: AsyncSession,
    round_id: int,
    name: Optional[str] = None,
    round_date: Optional[date] = None,
    status: Optional[str] = None,
    is_finale: Optional[bool] = None,
    admin_id: Optional[int] = None,
) -> Round:
    r = await require(session, Round, round_id, for_update=True)
    if name is None and round_date is None and status is None and is_finale is None:
        raise InvalidInputError("No fields to update")
    if is_finale is not None:
        await ensure_city_open(session, r)

    if name is not None:
        try:
            r.name = RoundData(name=name).name
        except ValidationError as e:
            raise InvalidInputError(validation_message(e)) from e
    if round_date is not None:
        r.round_date = round_date
    if status is not None:
        if status not in RoundStatus.EMOJI:
            raise InvalidInputError(f"Unknown round status: {status}")
        r.status = status
    if is_finale is not None:
        if is_finale:
            finale = await _existing_finale(session, r.competition_id, r.city_id, exclude_round_id=r.id)
            if finale:
                raise StateConflictError(
                    f'A finale already exists for this city: "{finale.name}". '
                    f"Only one finale per city is allowed."
                )
        r.is_finale = is_finale

    await session.flush()
    audit_service.record(admin_id, "round.update", "round", r.id, status=r.status, is_finale=r.is_finale)
    return r


async def delete_round(session: AsyncSession, round_id: int, admin_id: Optional[int] = None) -> None:
    """Delete a round with its memberships and scores. Later rounds must be deleted first."""
    r = await require(session, Round, round_id, for_update=True)
    await ensure_city_open(session, r)
    later = await session.execute(
        select(func.count(Round.id)).where(
            Round.competition_id == r.competition_id,
            Round.city_id == r.city_id,
            Round.round_number > r.round_number,
        )
    )
    if later.scalar_one() > 0:
        raise StateConflictError("Cannot delete round with subsequent rounds. Delete later rounds first.")

    rp_ids = select(RoundParticipation.id).where(RoundParticipation.round_id == round_id)
    await session.execute(delete(RoundScore).where(RoundScore.round_participation_id.in_(rp_ids)))
    await session.execute(delete(RoundParticipation).where(RoundParticipation.round_id == round_id))
    await session.execute(delete(Round).where(Round.id == round_id))
    audit_service.record(admin_id, "round.delete", "round", round_id)


async def archive_round(session: AsyncSession, round_id: int, admin_id: Optional[int] = None) -> Round:
    r = await require(session, Round, round_id, for_update=True)
    r.status = RoundStatus.ARCHIVED
    await session.flush()
    audit_service.record(admin_id, "round.archive", "round", r.id)
    return r


async def unarchive_round(session: AsyncSession, round_id: int, admin_id: Optional[int] = None) -> Round:
    r = await require(session, Round, round_id, for_update=True)
    if r.status != RoundStatus.ARCHIVED:
        raise StateConflictError("Round is not archived")
    r.status = RoundStatus.PENDING
    await session.flush()
    audit_service.record(admin_id, "round.unarchive", "round", r.id)
    return r


# ── Membership ────────────────────────────────────────────────────────────────

async def find_round_participation(
    session: AsyncSession,
    round_id: int,
    participation_id: int,
) -> Optional[RoundParticipation]:
    result = await session.execute(
        select(RoundParticipation).where(
            RoundParticipation.round_id == round_id,
            RoundParticipation.participation_id == participation_id,
        )
    )
    return result.scalar_one_or_none()


async def add_participant(
    session: AsyncSession,
    round_id: int,
    participation_id: int,
    admin_id: Optional[int] = None,
) -> RoundParticipation:
    """Manually add a participation to a round (qualified_by = MANUAL)."""
    r = await require(session, Round, round_id, for_update=True)
    p = await require(session, Participation, participation_id)
    if p.competition_id != r.competition_id:
        raise InvalidInputError("Participation belongs to a different competition")
    if r.status == RoundStatus.ARCHIVED:
        raise StateConflictError("Round is archived")
    await ensure_city_open(session, r)
    if await find_round_participation(session, round_id, participation_id):
        raise StateConflictError("Participant is already in this round")

    rp = RoundParticipation(
        round_id=round_id,
        participation_id=participation_id,
        qualified_by=QualifiedBy.MANUAL,
        added_by=admin_id,
    )
    session.add(rp)
    await session.flush()
    audit_service.record(admin_id, "round.add_participant", "round", round_id, participation_id=participation_id)
    return rp


async def remove_participant(
    session: AsyncSession,
    round_id: int,
    participation_id: int,
    admin_id: Optional[int] = None,
) -> None:
    """Remove a participation from one round; its score in that round goes with it."""
    r = await require(session, Round, round_id, for_update=True)
    await ensure_city_open(session, r)
    rp = await find_round_participation(session, round_id, participation_id)
    if rp is None:
        raise NotFoundError("Participant in this round", participation_id)

    had_score = await session.execute(
        delete(RoundScore).where(RoundScore.round_participation_id == rp.id)
    )
    await session.execute(delete(RoundParticipation).where(RoundParticipation.id == rp.id))
    if had_score.rowcount:
        await recalculate_round_ranks(session, round_id)
    audit_service.record(admin_id, "round.remove_participant", "round", round_id, participation_id=participation_id)


async def get_eligible_participants(
    session: AsyncSession,
    round_id: int,
) -> List[EligibleParticipant]:
    """
    Participations that could be added to the round manually.
    Round 1: the city's registrations not yet in the round.
    Later rounds: any participation of the competition not in the round,
    past winners (of any round) listed first.
    """
    r = await require(session, Round, round_id)

    in_round = exists().where(
        RoundParticipation.round_id == round_id,
        RoundParticipation.participation_id == Participation.id,
    )
    win_rp = RoundParticipation.__table__.alias("win_rp")
    win_rs = RoundScore.__table__.alias("win_rs")
    past_winner = (
        exists()
        .where(
            win_rp.c.participation_id == Participation.id,
            win_rs.c.round_participation_id == win_rp.c.id,
            win_rs.c.is_winner.is_(True),
        )
    )

    q = (
        select(
            Participation.id, User.full_name, User.email, User.mi_id, City.name,
            past_winner.label("is_past_winner"),
        )
        .join(User, User.id == Participation.user_id)
        .join(City, City.id == Participation.city_id)
        .where(Participation.competition_id == r.competition_id, ~in_round)
    )
    if r.round_number == 1:
        q = q.where(Participation.city_id == r.city_id).order_by(User.full_name)
    else:
        q = q.order_by(past_winner.desc(), User.full_name)

    result = await session.execute(q)
    return [
        EligibleParticipant(
            participation_id=row[0],
            full_name=row[1],
            email=row[2],
            mi_id=row[3],
            city_name=row[4],
            is_past_winner=bool(row[5]),
        )
        for row in result.all()
    ]
