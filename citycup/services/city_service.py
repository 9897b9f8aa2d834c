"""
City completion state machine.

    Open ──mark_city_finished──▶ Finished ──reopen_city──▶ Open

Finishing materialises locked Results for every participation of the city
track and closes the city's registration. When the last city of a
competition finishes, the competition itself becomes COMPLETED and the
status it had before is remembered so reopening can revert it exactly.

Both transitions are idempotent: finishing a finished city or reopening an
open one changes nothing and just returns the current status.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import StateConflictError
from citycup.models.models import (
    CompetitionCity,
    CompetitionStatus,
    Competition,
    Participation,
    Result,
    ResultStatus,
    Round,
    RoundParticipation,
    RoundScore,
    RoundStatus,
)
from citycup.services import audit_service
from citycup.services.lookups import require, require_competition_city

logger = logging.getLogger(__name__)


@dataclass
class RoundProgress:
    round_id:     int
    round_number: int
    name:         str
    status:       str
    is_finale:    bool
    participants: int
    scored:       int
    winners:      int


@dataclass
class CityStatus:
    competition_id:   int
    city_id:          int
    has_finale:       bool
    finale_completed: bool
    is_finished:      bool
    finished_at:      Optional[datetime]
    winner_count:     int
    rounds:           List[RoundProgress] = field(default_factory=list)
    competition_completed: bool = False

    @property
    def can_mark_finished(self) -> bool:
        return self.has_finale and self.winner_count > 0 and not self.is_finished


# ── Status ────────────────────────────────────────────────────────────────────

async def _round_progress(session: AsyncSession, competition_id: int, city_id: int) -> List[RoundProgress]:
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
    result = await session.execute(
        select(
            Round.id, Round.round_number, Round.name, Round.status, Round.is_finale,
            participants, scored, winners,
        )
        .where(Round.competition_id == competition_id, Round.city_id == city_id)
        .order_by(Round.round_number)
    )
    return [
        RoundProgress(
            round_id=row[0],
            round_number=row[1],
            name=row[2],
            status=row[3],
            is_finale=bool(row[4]),
            participants=row[5] or 0,
            scored=row[6] or 0,
            winners=row[7] or 0,
        )
        for row in result.all()
    ]


async def get_city_status(session: AsyncSession, competition_id: int, city_id: int) -> CityStatus:
    competition = await require(session, Competition, competition_id)
    cc = await require_competition_city(session, competition_id, city_id)
    rounds = await _round_progress(session, competition_id, city_id)
    finale = next((r for r in rounds if r.is_finale), None)
    return CityStatus(
        competition_id=competition_id,
        city_id=city_id,
        has_finale=finale is not None,
        finale_completed=finale is not None and finale.status == RoundStatus.COMPLETED,
        is_finished=cc.is_finished,
        finished_at=cc.finished_at,
        winner_count=finale.winners if finale else 0,
        rounds=rounds,
        competition_completed=competition.status == CompetitionStatus.COMPLETED,
    )


# ── Transitions ───────────────────────────────────────────────────────────────

async def _build_results(session: AsyncSession, finale: Round) -> Dict[int, Result]:
    """
    Outcome per participation of the track:
    finale winners → WINNER (with position), rest of the finale → FINALIST,
    everybody else who entered a round or registered for the city → PARTICIPATED.
    """
    results: Dict[int, Result] = {}

    def put(participation_id: int, status: str, position: Optional[int] = None) -> None:
        current = results.get(participation_id)
        if current and ResultStatus.WEIGHT[current.result_status] >= ResultStatus.WEIGHT[status]:
            return
        results[participation_id] = Result(
            participation_id=participation_id,
            competition_id=finale.competition_id,
            city_id=finale.city_id,
            result_status=status,
            position=position,
            locked=True,
        )

    finale_rows = await session.execute(
        select(RoundParticipation.participation_id, RoundScore.is_winner, RoundScore.winner_position)
        .outerjoin(RoundScore, RoundScore.round_participation_id == RoundParticipation.id)
        .where(RoundParticipation.round_id == finale.id)
    )
    for pid, is_winner, position in finale_rows.all():
        if is_winner:
            put(pid, ResultStatus.WINNER, position)
        else:
            put(pid, ResultStatus.FINALIST)

    track_rows = await session.execute(
        select(RoundParticipation.participation_id)
        .join(Round, Round.id == RoundParticipation.round_id)
        .where(Round.competition_id == finale.competition_id, Round.city_id == finale.city_id)
        .distinct()
    )
    for pid in track_rows.scalars().all():
        put(pid, ResultStatus.PARTICIPATED)

    registered = await session.execute(
        select(Participation.id).where(
            Participation.competition_id == finale.competition_id,
            Participation.city_id == finale.city_id,
        )
    )
    for pid in registered.scalars().all():
        put(pid, ResultStatus.PARTICIPATED)

    return results


async def mark_city_finished(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    admin_id: Optional[int] = None,
) -> CityStatus:
    competition = await require(session, Competition, competition_id, for_update=True)
    cc = await require_competition_city(session, competition_id, city_id, for_update=True)
    if cc.is_finished:
        return await get_city_status(session, competition_id, city_id)

    result = await session.execute(
        select(Round).where(
            Round.competition_id == competition_id,
            Round.city_id == city_id,
            Round.is_finale.is_(True),
        )
    )
    finale = result.scalar_one_or_none()
    if finale is None:
        raise StateConflictError("This city has no finale round yet")

    winners = await session.execute(
        select(func.count(RoundScore.id))
        .join(RoundParticipation, RoundParticipation.id == RoundScore.round_participation_id)
        .where(RoundParticipation.round_id == finale.id, RoundScore.is_winner.is_(True))
    )
    if winners.scalar_one() == 0:
        raise StateConflictError("Select the finale winners before finishing the city")

    # Results of this track are owned by the finish; clear leftovers first
    await session.execute(
        delete(Result).where(Result.competition_id == competition_id, Result.city_id == city_id)
    )
    results = await _build_results(session, finale)
    session.add_all(results.values())

    cc.is_finished       = True
    cc.finished_at       = datetime.utcnow()
    cc.registration_open = False
    await session.flush()

    unfinished = await session.execute(
        select(func.count(CompetitionCity.id)).where(
            CompetitionCity.competition_id == competition_id,
            CompetitionCity.is_finished.is_(False),
        )
    )
    if unfinished.scalar_one() == 0 and competition.status != CompetitionStatus.COMPLETED:
        competition.pre_completion_status = competition.status
        competition.status = CompetitionStatus.COMPLETED
        logger.info("Competition %d completed: every city finished", competition_id)
    await session.flush()

    logger.info("City %d of competition %d finished with %d results", city_id, competition_id, len(results))
    audit_service.record(
        admin_id, "city.finish", "competition_city", cc.id,
        competition_id=competition_id, city_id=city_id, results=len(results),
    )
    return await get_city_status(session, competition_id, city_id)


async def reopen_city(
    session: AsyncSession,
    competition_id: int,
    city_id: int,
    admin_id: Optional[int] = None,
) -> CityStatus:
    competition = await require(session, Competition, competition_id, for_update=True)
    cc = await require_competition_city(session, competition_id, city_id, for_update=True)
    if not cc.is_finished:
        return await get_city_status(session, competition_id, city_id)

    deleted = await session.execute(
        delete(Result).where(Result.competition_id == competition_id, Result.city_id == city_id)
    )
    cc.is_finished       = False
    cc.finished_at       = None
    cc.registration_open = True

    if competition.status == CompetitionStatus.COMPLETED and competition.pre_completion_status:
        competition.status = competition.pre_completion_status
        competition.pre_completion_status = None
        logger.info("Competition %d reverted to %s", competition_id, competition.status)
    await session.flush()

    audit_service.record(
        admin_id, "city.reopen", "competition_city", cc.id,
        competition_id=competition_id, city_id=city_id, results_removed=deleted.rowcount,
    )
    return await get_city_status(session, competition_id, city_id)


async def get_results(
    session: AsyncSession,
    competition_id: int,
    city_id: Optional[int] = None,
) -> List[Result]:
    q = (
        select(Result)
        .where(Result.competition_id == competition_id)
        .order_by(Result.city_id, Result.position.asc().nullslast(), Result.participation_id)
    )
    if city_id is not None:
        q = q.where(Result.city_id == city_id)
    result = await session.execute(q)
    return list(result.scalars().all())
