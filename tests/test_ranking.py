"""
Unit tests — Ranking engine (ranking_service.py).

The pure functions need no database; the last class checks that ranks stored
in round_scores follow score edits.
"""
from __future__ import annotations

from citycup.services.ranking_service import (
    RankedEntry,
    competition_ranks,
    order_for_promotion,
    ranked_entries,
)
from citycup.services.round_service import create_round, get_round_leaderboard
from citycup.services.scoring_service import update_score, upload_scores
from tests.conftest import ADMIN_ID, make_competition, register_many, score_rows


# ─────────────────────────── Standard competition ranking ────────────────────

class TestCompetitionRanks:
    def test_ties_share_rank_and_next_rank_skips(self) -> None:
        assert competition_ranks([90, 80, 80, 70]) == [1, 2, 2, 4]

    def test_result_aligned_with_input_order(self) -> None:
        assert competition_ranks([70, 90, 80, 80]) == [4, 1, 2, 2]

    def test_none_scores_are_unranked(self) -> None:
        assert competition_ranks([None, 50.0, None, 60.0]) == [None, 2, None, 1]

    def test_all_equal(self) -> None:
        assert competition_ranks([5.5, 5.5, 5.5]) == [1, 1, 1]

    def test_empty(self) -> None:
        assert competition_ranks([]) == []

    def test_triple_tie_skips_two(self) -> None:
        assert competition_ranks([10, 9, 9, 9, 8]) == [1, 2, 2, 2, 5]

    def test_negative_and_fractional_scores(self) -> None:
        assert competition_ranks([-1.5, 0.0, 2.25]) == [3, 2, 1]


class TestPromotionOrder:
    def test_ties_broken_by_participation_id(self) -> None:
        entries = [
            RankedEntry(round_participation_id=1, participation_id=30, score=80, rank=2),
            RankedEntry(round_participation_id=2, participation_id=10, score=90, rank=1),
            RankedEntry(round_participation_id=3, participation_id=20, score=80, rank=2),
        ]
        ordered = order_for_promotion(entries)
        assert [e.participation_id for e in ordered] == [10, 20, 30]


# ─────────────────────────── Stored ranks ────────────────────────────────────

class TestStoredRanks:
    async def test_ranks_follow_upload_and_edit(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 4)
        r = await create_round(async_session, competition.id, city.id, "Qualifier")

        await upload_scores(
            async_session, r.id,
            score_rows([("MI-p1", 90), ("MI-p2", 80), ("MI-p3", 80), ("MI-p4", 70)]),
            admin_id=ADMIN_ID,
        )
        board = await get_round_leaderboard(async_session, r.id)
        assert {p.mi_id: p.rank_in_round for p in board} == {
            "MI-p1": 1, "MI-p2": 2, "MI-p3": 2, "MI-p4": 4,
        }

        # p4 overtakes everyone: the whole round is re-ranked
        p4 = next(p for p in board if p.mi_id == "MI-p4")
        await update_score(async_session, p4.round_participation_id, 95, admin_id=ADMIN_ID)
        board = await get_round_leaderboard(async_session, r.id)
        assert {p.mi_id: p.rank_in_round for p in board} == {
            "MI-p4": 1, "MI-p1": 2, "MI-p2": 3, "MI-p3": 3,
        }

    async def test_cleared_score_loses_rank(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 2)
        r = await create_round(async_session, competition.id, city.id, "Qualifier")
        await upload_scores(async_session, r.id, score_rows([("MI-p1", 10), ("MI-p2", 20)]))

        board = await get_round_leaderboard(async_session, r.id)
        p2 = next(p for p in board if p.mi_id == "MI-p2")
        await update_score(async_session, p2.round_participation_id, None)

        board = {p.mi_id: p for p in await get_round_leaderboard(async_session, r.id)}
        assert board["MI-p2"].rank_in_round is None
        assert board["MI-p1"].rank_in_round == 1

    async def test_ranked_entries_skip_unscored(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        participations = await register_many(async_session, competition.id, city.id, 3)
        r = await create_round(async_session, competition.id, city.id, "Qualifier")
        await upload_scores(async_session, r.id, score_rows([("MI-p2", 5), ("MI-p3", 5)]))

        entries = await ranked_entries(async_session, r.id)
        assert [e.participation_id for e in entries] == [participations[1].id, participations[2].id]
        assert [e.rank for e in entries] == [1, 1]
