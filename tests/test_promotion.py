"""
Integration tests — Promotion between rounds (promotion_service.py).

Coverage:
  - Top-N promotion into the next round, source marked completed
  - Ties at the cutoff broken by participation id
  - Overlapping promotions never duplicate memberships
  - Missing / archived target, empty source, out-of-range count
  - Single-participant promotion
"""
from __future__ import annotations

import pytest

from citycup.errors import InvalidInputError, NotFoundError, StateConflictError
from citycup.models.models import QualifiedBy, RoundStatus
from citycup.services.promotion_service import get_next_round, promote_participant, promote_top
from citycup.services.round_service import (
    add_participant,
    archive_round,
    create_round,
    get_round,
    get_round_details,
)
from citycup.services.scoring_service import upload_scores
from tests.conftest import ADMIN_ID, make_competition, register_many, score_rows


async def _two_rounds(session, count: int = 10):
    """Round 1 with `count` scored participants (p1 best) and an empty round 2."""
    competition, (city,) = await make_competition(session)
    participations = await register_many(session, competition.id, city.id, count)
    r1 = await create_round(session, competition.id, city.id, "Qualifier")
    r2 = await create_round(session, competition.id, city.id, "Final", is_finale=True)
    await upload_scores(session, r1.id, score_rows([(f"MI-p{i}", 100 - i) for i in range(1, count + 1)]))
    return r1, r2, participations


# ─────────────────────────── Top-N ────────────────────────────────────────────

class TestPromoteTop:
    async def test_promotes_best_three(self, async_session) -> None:
        r1, r2, participations = await _two_rounds(async_session)

        result = await promote_top(async_session, r1.id, 3, admin_id=ADMIN_ID)
        assert (result.requested, result.promoted, result.already_present) == (3, 3, 0)
        assert result.participation_ids == [p.id for p in participations[:3]]

        detail = await get_round_details(async_session, r2.id)
        assert {p.mi_id for p in detail.participants} == {"MI-p1", "MI-p2", "MI-p3"}
        assert {p.qualified_by for p in detail.participants} == {QualifiedBy.AUTOMATIC}
        assert detail.scored_count == 0
        assert (await get_round(async_session, r1.id)).status == RoundStatus.COMPLETED

    async def test_tie_at_cutoff_uses_participation_id(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        participations = await register_many(async_session, competition.id, city.id, 4)
        r1 = await create_round(async_session, competition.id, city.id, "Qualifier")
        await create_round(async_session, competition.id, city.id, "Final")
        # p3 and p2 tie for second place; p2 registered first
        await upload_scores(
            async_session, r1.id,
            score_rows([("MI-p1", 90), ("MI-p3", 80), ("MI-p2", 80), ("MI-p4", 70)]),
        )

        result = await promote_top(async_session, r1.id, 2)
        assert result.participation_ids == [participations[0].id, participations[1].id]

    async def test_overlapping_promotions_do_not_duplicate(self, async_session) -> None:
        r1, r2, _ = await _two_rounds(async_session)
        await promote_top(async_session, r1.id, 3)

        result = await promote_top(async_session, r1.id, 5)
        assert (result.promoted, result.already_present) == (2, 3)
        assert (await get_round_details(async_session, r2.id)).participant_count == 5

    async def test_manual_member_counted_as_present(self, async_session) -> None:
        r1, r2, participations = await _two_rounds(async_session)
        await add_participant(async_session, r2.id, participations[0].id)

        result = await promote_top(async_session, r1.id, 2)
        assert (result.promoted, result.already_present) == (1, 1)

        detail = await get_round_details(async_session, r2.id)
        kinds = {p.mi_id: p.qualified_by for p in detail.participants}
        assert kinds == {"MI-p1": QualifiedBy.MANUAL, "MI-p2": QualifiedBy.AUTOMATIC}

    async def test_unscored_participants_are_not_promoted(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 3)
        r1 = await create_round(async_session, competition.id, city.id, "Qualifier")
        await create_round(async_session, competition.id, city.id, "Final")
        await upload_scores(async_session, r1.id, score_rows([("MI-p1", 5), ("MI-p2", 4)]))

        with pytest.raises(InvalidInputError, match="between 1 and 2"):
            await promote_top(async_session, r1.id, 3)

    @pytest.mark.parametrize("count", [0, -1, 11])
    async def test_count_out_of_range(self, async_session, count: int) -> None:
        r1, _, _ = await _two_rounds(async_session)
        with pytest.raises(InvalidInputError):
            await promote_top(async_session, r1.id, count)

    async def test_no_scores(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 2)
        r1 = await create_round(async_session, competition.id, city.id, "Qualifier")
        await create_round(async_session, competition.id, city.id, "Final")
        with pytest.raises(StateConflictError, match="No scored participants"):
            await promote_top(async_session, r1.id, 1)

    async def test_missing_next_round(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 2)
        r1 = await create_round(async_session, competition.id, city.id, "Qualifier")
        await upload_scores(async_session, r1.id, score_rows([("MI-p1", 5)]))

        assert await get_next_round(async_session, r1) is None
        with pytest.raises(StateConflictError, match="does not exist"):
            await promote_top(async_session, r1.id, 1)
        assert (await get_round(async_session, r1.id)).status == RoundStatus.IN_PROGRESS

    async def test_archived_next_round(self, async_session) -> None:
        r1, r2, _ = await _two_rounds(async_session)
        await archive_round(async_session, r2.id)
        with pytest.raises(StateConflictError, match="archived"):
            await promote_top(async_session, r1.id, 1)

    async def test_missing_round(self, async_session) -> None:
        with pytest.raises(NotFoundError):
            await promote_top(async_session, 404, 1)


# ─────────────────────────── Single participant ───────────────────────────────

class TestPromoteParticipant:
    async def test_promotes_regardless_of_rank(self, async_session) -> None:
        r1, r2, participations = await _two_rounds(async_session)
        last = participations[-1]

        rp = await promote_participant(async_session, r1.id, last.id, admin_id=ADMIN_ID)
        assert rp.round_id == r2.id
        assert rp.qualified_by == QualifiedBy.AUTOMATIC

        with pytest.raises(StateConflictError, match="already in the next round"):
            await promote_participant(async_session, r1.id, last.id)

    async def test_not_in_source_round(self, async_session) -> None:
        r1, r2, participations = await _two_rounds(async_session)
        await promote_top(async_session, r1.id, 1)
        r3 = await create_round(async_session, r1.competition_id, r1.city_id, "Super final")
        assert r3.round_number == 3

        # p2 never reached round 2
        with pytest.raises(NotFoundError):
            await promote_participant(async_session, r2.id, participations[1].id)
