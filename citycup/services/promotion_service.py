"""
Promotion — move the best-ranked participants of a round into the next one.

The target is always the round with round_number + 1 in the same competition
and city, and it must already exist. Participants are taken in rank order
(ties at the cutoff broken by participation id) and inserted with
qualified_by = AUTOMATIC; anyone already in the target is left alone, so
repeated or overlapping promotions never duplicate rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import InvalidInputError, NotFoundError, StateConflictError
from citycup.models.models import QualifiedBy, Round, RoundParticipation, RoundStatus
from citycup.services import audit_service
from citycup.services.lookups import ensure_city_open, require
from citycup.services.ranking_service import ranked_entries

logger = logging.getLogger(__name__)


@dataclass
class PromotionResult:
    source_round_id:  int
    target_round_id:  int
    requested:        int
    promoted:         int
    already_present:  int
    participation_ids: List[int] = field(default_factory=list)


async def get_next_round(session: AsyncSession, r: Round, for_update: bool = False) -> Optional[Round]:
    q = select(Round).where(
        Round.competition_id == r.competition_id,
        Round.city_id == r.city_id,
        Round.round_number == r.round_number + 1,
    )
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    return result.scalar_one_or_none()


async def _require_target(session: AsyncSession, source: Round) -> Round:
    target = await get_next_round(session, source, for_update=True)
    if target is None:
        raise StateConflictError(
            f"Next round (R{source.round_number + 1}) does not exist. Create it before promoting."
        )
    if target.status == RoundStatus.ARCHIVED:
        raise StateConflictError("Next round is archived")
    await ensure_city_open(session, target)
    return target


async def _present_in(session: AsyncSession, round_id: int) -> set[int]:
    result = await session.execute(
        select(RoundParticipation.participation_id)
        .where(RoundParticipation.round_id == round_id)
        .with_for_update()
    )
    return set(result.scalars().all())


async def promote_top(
    session: AsyncSession,
    round_id: int,
    count: int,
    admin_id: Optional[int] = None,
) -> PromotionResult:
    """Promote the top `count` ranked participants of a round into the next round."""
    source = await require(session, Round, round_id, for_update=True)
    target = await _require_target(session, source)

    entries = await ranked_entries(session, round_id)
    if not entries:
        raise StateConflictError("No scored participants in this round")
    if count < 1 or count > len(entries):
        raise InvalidInputError(f"Count must be between 1 and {len(entries)}")

    present = await _present_in(session, target.id)
    result = PromotionResult(
        source_round_id=source.id,
        target_round_id=target.id,
        requested=count,
        promoted=0,
        already_present=0,
    )
    for entry in entries[:count]:
        if entry.participation_id in present:
            result.already_present += 1
            continue
        session.add(RoundParticipation(
            round_id=target.id,
            participation_id=entry.participation_id,
            qualified_by=QualifiedBy.AUTOMATIC,
            added_by=admin_id,
        ))
        present.add(entry.participation_id)
        result.promoted += 1
        result.participation_ids.append(entry.participation_id)

    source.status = RoundStatus.COMPLETED
    await session.flush()

    logger.info(
        "Round %d → %d: promoted %d of top %d (%d already present)",
        source.id, target.id, result.promoted, count, result.already_present,
    )
    audit_service.record(
        admin_id, "round.promote", "round", source.id,
        target_round_id=target.id, count=count, promoted=result.promoted,
    )
    return result


async def promote_participant(
    session: AsyncSession,
    round_id: int,
    participation_id: int,
    admin_id: Optional[int] = None,
) -> RoundParticipation:
    """Promote one participant regardless of rank. Already promoted → StateConflictError."""
    source = await require(session, Round, round_id, for_update=True)
    target = await _require_target(session, source)

    in_source = await session.execute(
        select(RoundParticipation.id).where(
            RoundParticipation.round_id == source.id,
            RoundParticipation.participation_id == participation_id,
        )
    )
    if in_source.scalar_one_or_none() is None:
        raise NotFoundError("Participant in this round", participation_id)
    if participation_id in await _present_in(session, target.id):
        raise StateConflictError("Participant is already in the next round")

    rp = RoundParticipation(
        round_id=target.id,
        participation_id=participation_id,
        qualified_by=QualifiedBy.AUTOMATIC,
        added_by=admin_id,
    )
    session.add(rp)
    await session.flush()
    audit_service.record(
        admin_id, "round.promote_one", "round", source.id,
        target_round_id=target.id, participation_id=participation_id,
    )
    return rp
