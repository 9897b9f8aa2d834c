"""
Winner selection and cross-city winner import.

Selection
  Winners are tagged by hand in a finale round with a (possibly repeated)
  position. A new selection replaces the previous one and completes the
  finale. Once the city is finished the selection is frozen until reopen.

Import
  A unifying round (e.g. a grand finale held in its own "branch" city) pulls
  winners from every other finale of the competition. The operator chooses
  how many to take per source city; candidates are ordered by score
  descending, then winner position, then participation id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import InvalidInputError, StateConflictError
from citycup.models.models import (
    City,
    Participation,
    QualifiedBy,
    Round,
    RoundParticipation,
    RoundScore,
    RoundStatus,
    User,
)
from citycup.services import audit_service
from citycup.services.lookups import ensure_city_open, require
from citycup.validators import CitySelection, WinnerPick, validation_message

logger = logging.getLogger(__name__)


@dataclass
class WinnerCandidate:
    participation_id:       int
    round_participation_id: int
    full_name:              str
    email:                  str
    score:                  Optional[float]
    winner_position:        Optional[int]


@dataclass
class CityWinners:
    city_id:         int
    city_name:       str
    finale_round_id: int
    winners:         List[WinnerCandidate] = field(default_factory=list)

    @property
    def available(self) -> int:
        return len(self.winners)


@dataclass
class ImportResult:
    target_round_id: int
    imported:        int
    per_city:        Dict[int, int] = field(default_factory=dict)


# ── Selection ─────────────────────────────────────────────────────────────────

def _parse_picks(picks: Iterable) -> List[WinnerPick]:
    parsed = []
    for raw in picks:
        try:
            parsed.append(raw if isinstance(raw, WinnerPick) else WinnerPick.model_validate(raw))
        except ValidationError as e:
            raise InvalidInputError(validation_message(e)) from e
    ids = [p.round_participation_id for p in parsed]
    if len(ids) != len(set(ids)):
        raise InvalidInputError("The same participant is selected twice")
    return parsed


async def select_winners(
    session: AsyncSession,
    round_id: int,
    picks: Iterable,
    admin_id: Optional[int] = None,
) -> int:
    """
    Replace the winner selection of a finale round.
    `picks` are WinnerPick models or dicts with round_participation_id / position.
    Returns the number of winners now flagged.
    """
    r = await require(session, Round, round_id, for_update=True)
    if not r.is_finale:
        raise StateConflictError("Winners can only be selected in a finale round")
    await ensure_city_open(session, r)

    parsed = _parse_picks(picks)

    result = await session.execute(
        select(RoundParticipation.id).where(RoundParticipation.round_id == round_id)
    )
    members = set(result.scalars().all())
    foreign = [p.round_participation_id for p in parsed if p.round_participation_id not in members]
    if foreign:
        raise InvalidInputError(
            "Not participants of this round: " + ", ".join(str(x) for x in foreign)
        )

    rp_ids = select(RoundParticipation.id).where(RoundParticipation.round_id == round_id)
    await session.execute(
        update(RoundScore)
        .where(RoundScore.round_participation_id.in_(rp_ids))
        .values(is_winner=False, winner_position=None)
        .execution_options(synchronize_session="fetch")
    )

    for pick in parsed:
        existing = await session.execute(
            select(RoundScore).where(RoundScore.round_participation_id == pick.round_participation_id)
        )
        rs = existing.scalar_one_or_none()
        if rs is None:
            rs = RoundScore(round_participation_id=pick.round_participation_id)
            session.add(rs)
        rs.is_winner       = True
        rs.winner_position = pick.position
        rs.scored_by       = admin_id

    if parsed:
        r.status = RoundStatus.COMPLETED
    await session.flush()

    logger.info("Round %d: %d winners selected", round_id, len(parsed))
    audit_service.record(
        admin_id, "round.select_winners", "round", round_id,
        winners=[(p.round_participation_id, p.position) for p in parsed],
    )
    return len(parsed)


async def get_round_winners(session: AsyncSession, round_id: int) -> List[WinnerCandidate]:
    await require(session, Round, round_id)
    result = await session.execute(
        select(
            RoundParticipation.participation_id,
            RoundParticipation.id,
            User.full_name,
            User.email,
            RoundScore.score,
            RoundScore.winner_position,
        )
        .join(RoundScore, RoundScore.round_participation_id == RoundParticipation.id)
        .join(Participation, Participation.id == RoundParticipation.participation_id)
        .join(User, User.id == Participation.user_id)
        .where(RoundParticipation.round_id == round_id, RoundScore.is_winner.is_(True))
        .order_by(RoundScore.winner_position.asc().nullslast(), RoundParticipation.participation_id)
    )
    return [WinnerCandidate(*row) for row in result.all()]


# ── Import ────────────────────────────────────────────────────────────────────

async def get_available_winners(
    session: AsyncSession,
    target_round_id: int,
) -> List[CityWinners]:
    """Per source city: finale winners not yet in the target round."""
    target = await require(session, Round, target_round_id)

    finales = await session.execute(
        select(Round, City.name)
        .join(City, City.id == Round.city_id)
        .where(
            Round.competition_id == target.competition_id,
            Round.is_finale.is_(True),
            Round.id != target.id,
        )
        .order_by(City.name)
    )

    already_in_target = exists().where(
        RoundParticipation.round_id == target.id,
        RoundParticipation.participation_id == Participation.id,
    )
    cities: List[CityWinners] = []
    for finale, city_name in finales.all():
        src_rp = RoundParticipation.__table__.alias("src_rp")
        rows = await session.execute(
            select(
                Participation.id,
                src_rp.c.id,
                User.full_name,
                User.email,
                RoundScore.score,
                RoundScore.winner_position,
            )
            .select_from(src_rp)
            .join(RoundScore, RoundScore.round_participation_id == src_rp.c.id)
            .join(Participation, Participation.id == src_rp.c.participation_id)
            .join(User, User.id == Participation.user_id)
            .where(
                src_rp.c.round_id == finale.id,
                RoundScore.is_winner.is_(True),
                ~already_in_target,
            )
            .order_by(
                RoundScore.score.desc().nullslast(),
                RoundScore.winner_position.asc().nullslast(),
                Participation.id,
            )
        )
        cities.append(CityWinners(
            city_id=finale.city_id,
            city_name=city_name,
            finale_round_id=finale.id,
            winners=[WinnerCandidate(*row) for row in rows.all()],
        ))
    return cities


async def import_selected_winners(
    session: AsyncSession,
    target_round_id: int,
    selections: Iterable,
    admin_id: Optional[int] = None,
) -> ImportResult:
    """
    Import the top `count` available winners of each selected city into the
    target round (qualified_by = AUTOMATIC). Every selection is checked
    before anything is inserted.
    """
    target = await require(session, Round, target_round_id, for_update=True)
    if target.status == RoundStatus.ARCHIVED:
        raise StateConflictError("Target round is archived")
    await ensure_city_open(session, target)

    parsed: List[CitySelection] = []
    for raw in selections:
        try:
            parsed.append(raw if isinstance(raw, CitySelection) else CitySelection.model_validate(raw))
        except ValidationError as e:
            raise InvalidInputError(validation_message(e)) from e
    city_ids = [s.city_id for s in parsed]
    if len(city_ids) != len(set(city_ids)):
        raise InvalidInputError("A city is selected more than once")
    if not any(s.count for s in parsed):
        raise InvalidInputError("Select at least one winner to import")

    available = {c.city_id: c for c in await get_available_winners(session, target.id)}
    for s in parsed:
        if s.count == 0:
            continue
        source = available.get(s.city_id)
        if source is None:
            raise InvalidInputError(f"City {s.city_id} has no finale winners to import")
        if s.count > source.available:
            raise InvalidInputError(
                f"{source.city_name}: only {source.available} winner(s) available, {s.count} requested"
            )

    result = ImportResult(target_round_id=target.id, imported=0)
    for s in parsed:
        if s.count == 0:
            continue
        for candidate in available[s.city_id].winners[:s.count]:
            session.add(RoundParticipation(
                round_id=target.id,
                participation_id=candidate.participation_id,
                qualified_by=QualifiedBy.AUTOMATIC,
                added_by=admin_id,
            ))
            result.imported += 1
        result.per_city[s.city_id] = s.count
    await session.flush()

    logger.info("Round %d: imported %d winners from %d cities", target.id, result.imported, len(result.per_city))
    audit_service.record(
        admin_id, "round.import_winners", "round", target.id,
        imported=result.imported, per_city=result.per_city,
    )
    return result
