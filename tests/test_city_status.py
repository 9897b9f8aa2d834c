"""
Integration tests — City completion state machine (city_service.py).

Coverage:
  - Finishing materialises results (WINNER / FINALIST / PARTICIPATED)
  - Preconditions: a finale with at least one winner
  - Idempotent finish and reopen
  - Rounds of a finished city are frozen until reopen
  - Competition auto-completion and exact revert on reopen
"""
from __future__ import annotations

import pytest

from citycup.errors import StateConflictError
from citycup.models.models import CompetitionStatus, ResultStatus
from citycup.services.city_service import get_city_status, get_results, mark_city_finished, reopen_city
from citycup.services.competition_service import get_competition, set_competition_status
from citycup.services.lookups import find_competition_city
from citycup.services.promotion_service import promote_participant, promote_top
from citycup.services.round_service import (
    add_participant,
    create_round,
    delete_round,
    get_round_leaderboard,
    remove_participant,
    update_round,
)
from citycup.services.scoring_service import clear_scores, update_score, upload_scores
from citycup.services.winner_service import select_winners
from tests.conftest import ADMIN_ID, SUPERADMIN_ID, make_competition, register_many, score_rows


async def _finale_with_winner(session, competition_id: int, city_id: int, prefix: str = "p"):
    """
    Four registrations: all reach round 1, the best two reach the finale and
    the best one wins. Returns the participations in registration order.
    """
    participations = await register_many(session, competition_id, city_id, 4, prefix=prefix)
    r1 = await create_round(session, competition_id, city_id, "Qualifier")
    finale = await create_round(session, competition_id, city_id, "Final", is_finale=True)
    await upload_scores(
        session, r1.id,
        score_rows([(f"MI-{prefix}{i}", 100 - i) for i in range(1, 5)]),
    )
    await promote_top(session, r1.id, 2)
    board = {p.mi_id: p for p in await get_round_leaderboard(session, finale.id)}
    await select_winners(
        session, finale.id,
        [{"round_participation_id": board[f"MI-{prefix}1"].round_participation_id, "position": 1}],
    )
    return participations


# ─────────────────────────── Finish ───────────────────────────────────────────

class TestMarkCityFinished:
    async def test_results_per_outcome(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        participations = await _finale_with_winner(async_session, competition.id, city.id)
        # registered after round 1, never entered a round
        late = (await register_many(async_session, competition.id, city.id, 1, prefix="late"))[0]

        status = await mark_city_finished(async_session, competition.id, city.id, admin_id=ADMIN_ID)
        assert status.is_finished
        assert status.finished_at is not None
        assert status.winner_count == 1

        results = {r.participation_id: r for r in await get_results(async_session, competition.id, city.id)}
        assert len(results) == 5
        assert results[participations[0].id].result_status == ResultStatus.WINNER
        assert results[participations[0].id].position == 1
        assert results[participations[1].id].result_status == ResultStatus.FINALIST
        assert results[participations[2].id].result_status == ResultStatus.PARTICIPATED
        assert results[participations[3].id].result_status == ResultStatus.PARTICIPATED
        assert results[late.id].result_status == ResultStatus.PARTICIPATED
        assert all(r.locked for r in results.values())

    async def test_closes_city_registration(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await _finale_with_winner(async_session, competition.id, city.id)
        await mark_city_finished(async_session, competition.id, city.id)

        cc = await find_competition_city(async_session, competition.id, city.id)
        assert cc.registration_open is False

    async def test_idempotent(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await _finale_with_winner(async_session, competition.id, city.id)

        first = await mark_city_finished(async_session, competition.id, city.id)
        second = await mark_city_finished(async_session, competition.id, city.id)
        assert second.finished_at == first.finished_at
        assert len(await get_results(async_session, competition.id, city.id)) == 4

    async def test_requires_finale(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 2)
        await create_round(async_session, competition.id, city.id, "Qualifier")

        status = await get_city_status(async_session, competition.id, city.id)
        assert not status.can_mark_finished
        with pytest.raises(StateConflictError, match="no finale"):
            await mark_city_finished(async_session, competition.id, city.id)

    async def test_requires_winners(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 2)
        finale = await create_round(async_session, competition.id, city.id, "Final", is_finale=True)
        await upload_scores(async_session, finale.id, score_rows([("MI-p1", 5)]))

        with pytest.raises(StateConflictError, match="winners"):
            await mark_city_finished(async_session, competition.id, city.id)
        assert await get_results(async_session, competition.id) == []


# ─────────────────────────── Reopen ───────────────────────────────────────────

class TestReopenCity:
    async def test_round_trip(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        participations = await _finale_with_winner(async_session, competition.id, city.id)
        await mark_city_finished(async_session, competition.id, city.id)

        status = await reopen_city(async_session, competition.id, city.id, admin_id=ADMIN_ID)
        assert not status.is_finished
        assert status.finished_at is None
        assert await get_results(async_session, competition.id, city.id) == []
        assert (await find_competition_city(async_session, competition.id, city.id)).registration_open

        # winners can change again, and a second finish rebuilds the results
        finale_id = next(r.round_id for r in status.rounds if r.is_finale)
        board = {p.mi_id: p for p in await get_round_leaderboard(async_session, finale_id)}
        await select_winners(
            async_session, finale_id,
            [{"round_participation_id": board["MI-p2"].round_participation_id, "position": 1}],
        )
        await mark_city_finished(async_session, competition.id, city.id)
        results = {r.participation_id: r.result_status for r in await get_results(async_session, competition.id, city.id)}
        assert results[participations[1].id] == ResultStatus.WINNER
        assert results[participations[0].id] == ResultStatus.FINALIST

    async def test_reopen_open_city_is_noop(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        status = await reopen_city(async_session, competition.id, city.id)
        assert not status.is_finished
        assert not status.has_finale


# ─────────────────────────── Frozen after finish ──────────────────────────────

async def _finished_city(session):
    """A finished city; returns (competition, city, participations, qualifier id, finale id)."""
    competition, (city,) = await make_competition(session)
    participations = await _finale_with_winner(session, competition.id, city.id)
    status = await mark_city_finished(session, competition.id, city.id)
    qualifier_id = next(r.round_id for r in status.rounds if not r.is_finale)
    finale_id = next(r.round_id for r in status.rounds if r.is_finale)
    return competition, city, participations, qualifier_id, finale_id


class TestFrozenAfterFinish:
    async def test_finale_membership(self, async_session) -> None:
        competition, city, participations, qualifier_id, finale_id = await _finished_city(async_session)

        with pytest.raises(StateConflictError, match="Reopen"):
            await remove_participant(async_session, finale_id, participations[0].id)
        with pytest.raises(StateConflictError, match="Reopen"):
            await add_participant(async_session, finale_id, participations[2].id)
        with pytest.raises(StateConflictError, match="Reopen"):
            await promote_participant(async_session, qualifier_id, participations[2].id)

        board = {p.participation_id: p for p in await get_round_leaderboard(async_session, finale_id)}
        assert set(board) == {participations[0].id, participations[1].id}
        assert board[participations[0].id].is_winner
        results = {r.participation_id: r.result_status for r in await get_results(async_session, competition.id, city.id)}
        assert results[participations[0].id] == ResultStatus.WINNER

    async def test_finale_flag_and_delete(self, async_session) -> None:
        competition, city, _, _, finale_id = await _finished_city(async_session)

        with pytest.raises(StateConflictError, match="Reopen"):
            await update_round(async_session, finale_id, is_finale=False)
        with pytest.raises(StateConflictError, match="Reopen"):
            await delete_round(async_session, finale_id)
        # cosmetic edits stay allowed
        r = await update_round(async_session, finale_id, name="Grand Final")
        assert r.is_finale

        status = await get_city_status(async_session, competition.id, city.id)
        assert status.is_finished
        assert status.has_finale

    async def test_scores(self, async_session) -> None:
        competition, city, _, _, finale_id = await _finished_city(async_session)
        board = {p.mi_id: p for p in await get_round_leaderboard(async_session, finale_id)}

        with pytest.raises(StateConflictError, match="Reopen"):
            await clear_scores(async_session, finale_id, admin_id=SUPERADMIN_ID)
        with pytest.raises(StateConflictError, match="Reopen"):
            await update_score(async_session, board["MI-p2"].round_participation_id, 500)
        with pytest.raises(StateConflictError, match="Reopen"):
            await upload_scores(async_session, finale_id, score_rows([("MI-p2", 500)]))

        status = await get_city_status(async_session, competition.id, city.id)
        assert status.winner_count == 1

    async def test_reopen_unfreezes(self, async_session) -> None:
        competition, city, participations, _, finale_id = await _finished_city(async_session)
        await reopen_city(async_session, competition.id, city.id)

        await remove_participant(async_session, finale_id, participations[1].id)
        assert len(await get_round_leaderboard(async_session, finale_id)) == 1


# ─────────────────────────── Competition completion ───────────────────────────

class TestCompetitionCompletion:
    async def test_last_city_completes_and_reopen_reverts(self, async_session) -> None:
        competition, (almaty, astana) = await make_competition(async_session, cities=("Almaty", "Astana"))
        await set_competition_status(async_session, competition.id, CompetitionStatus.ACTIVE)
        await _finale_with_winner(async_session, competition.id, almaty.id, prefix="a")
        await _finale_with_winner(async_session, competition.id, astana.id, prefix="b")

        status = await mark_city_finished(async_session, competition.id, almaty.id)
        assert not status.competition_completed

        status = await mark_city_finished(async_session, competition.id, astana.id)
        assert status.competition_completed
        c = await get_competition(async_session, competition.id, load_relations=False)
        assert c.status == CompetitionStatus.COMPLETED
        assert c.pre_completion_status == CompetitionStatus.ACTIVE

        await reopen_city(async_session, competition.id, astana.id)
        c = await get_competition(async_session, competition.id, load_relations=False)
        assert c.status == CompetitionStatus.ACTIVE
        assert c.pre_completion_status is None
        # the other city's results are untouched
        assert len(await get_results(async_session, competition.id, almaty.id)) == 4
        assert await get_results(async_session, competition.id, astana.id) == []

    async def test_manual_status_change_disables_revert(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await _finale_with_winner(async_session, competition.id, city.id)
        await mark_city_finished(async_session, competition.id, city.id)

        await set_competition_status(async_session, competition.id, CompetitionStatus.ARCHIVED)
        await reopen_city(async_session, competition.id, city.id)
        c = await get_competition(async_session, competition.id, load_relations=False)
        assert c.status == CompetitionStatus.ARCHIVED
