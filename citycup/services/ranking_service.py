"""
Ranking engine — standard competition ranking ("1224").

Algorithm (per round)
---------------------
1. Take every RoundScore of the round with a non-null score.
2. rank(x) = 1 + number of rows whose score is strictly greater than x.
   Equal scores share a rank; the next distinct score skips by the size of
   the tie above it: {90, 80, 80, 70} → {1, 2, 2, 4}.
3. Rows with a null score get rank None.

Ranks are always recomputed for the whole round, never incrementally, so the
result does not depend on the order in which scores were edited.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.models.models import RoundParticipation, RoundScore

logger = logging.getLogger(__name__)


@dataclass
class RankedEntry:
    """A single ranked row (the participation's position in the ordering)."""
    round_participation_id: int
    participation_id:       int
    score:                  float
    rank:                   int


# ─────────────────────────── Pure functions ───────────────────────────────────

def competition_ranks(scores: Sequence[Optional[float]]) -> List[Optional[int]]:
    """
    Standard competition ranks for `scores`, aligned with the input order.
    None scores are left unranked.
    """
    valued = sorted((s for s in scores if s is not None), reverse=True)
    first_index: Dict[float, int] = {}
    for i, s in enumerate(valued):
        first_index.setdefault(s, i)
    return [None if s is None else first_index[s] + 1 for s in scores]


def order_for_promotion(entries: List[RankedEntry]) -> List[RankedEntry]:
    """
    Promotion order: rank ascending, ties broken by participation id ascending
    so the cutoff is deterministic.
    """
    return sorted(entries, key=lambda e: (e.rank, e.participation_id))


# ─────────────────────────── Database entry points ────────────────────────────

async def recalculate_round_ranks(session: AsyncSession, round_id: int) -> int:
    """
    Recompute rank_in_round for every score of the round.
    Returns the number of ranked (non-null) scores.
    """
    result = await session.execute(
        select(RoundScore)
        .join(RoundParticipation, RoundParticipation.id == RoundScore.round_participation_id)
        .where(RoundParticipation.round_id == round_id)
        .with_for_update()
    )
    rows = list(result.scalars().all())
    ranks = competition_ranks([r.score for r in rows])
    for row, rank in zip(rows, ranks):
        row.rank_in_round = rank
    await session.flush()

    ranked = sum(1 for r in ranks if r is not None)
    logger.debug("Round %d re-ranked: %d scored of %d rows", round_id, ranked, len(rows))
    return ranked


async def ranked_entries(session: AsyncSession, round_id: int) -> List[RankedEntry]:
    """Scored participations of a round in promotion order."""
    result = await session.execute(
        select(RoundParticipation, RoundScore)
        .join(RoundScore, RoundScore.round_participation_id == RoundParticipation.id)
        .where(
            RoundParticipation.round_id == round_id,
            RoundScore.score.is_not(None),
        )
    )
    rows = result.all()
    ranks = competition_ranks([score.score for _, score in rows])
    entries = [
        RankedEntry(
            round_participation_id=rp.id,
            participation_id=rp.participation_id,
            score=score.score,
            rank=rank,
        )
        for (rp, score), rank in zip(rows, ranks)
    ]
    return order_for_promotion(entries)
