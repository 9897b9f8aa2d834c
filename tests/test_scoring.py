"""
Integration tests — Score ingestion (scoring_service.py).

Coverage:
  - CSV parsing: header rules, BOM, case-insensitive columns, blank lines
  - Bulk upload: resolution by MI ID / email, per-row errors, idempotent re-upload
  - Batch-level rejection: empty, over the limit, archived or missing round
  - Clearing scores (superadmin only)
"""
from __future__ import annotations

import pytest

from citycup.config import settings
from citycup.errors import InvalidInputError, NotFoundError, PermissionDeniedError, StateConflictError
from citycup.models.models import RoundStatus
from citycup.services.round_service import archive_round, create_round, get_round, get_round_leaderboard
from citycup.services.scoring_service import clear_scores, count_scored, parse_score_csv, upload_scores
from tests.conftest import ADMIN_ID, SUPERADMIN_ID, make_competition, register_many, score_rows


async def _round_with(session, count: int = 3):
    competition, (city,) = await make_competition(session)
    await register_many(session, competition.id, city.id, count)
    return await create_round(session, competition.id, city.id, "Qualifier")


# ─────────────────────────── CSV parsing ──────────────────────────────────────

class TestParseScoreCsv:
    def test_basic(self) -> None:
        rows = parse_score_csv("mi_id,email,score,notes\nMI-1,,9.5,good\n,b@x.io,7,\n")
        assert rows == [
            {"mi_id": "MI-1", "email": "", "score": "9.5", "notes": "good"},
            {"mi_id": "", "email": "b@x.io", "score": "7", "notes": ""},
        ]

    def test_bom_and_header_case(self) -> None:
        rows = parse_score_csv("\ufeffEmail,Score\nA@X.IO,3\n")
        assert rows == [{"mi_id": "", "email": "A@X.IO", "score": "3", "notes": ""}]

    def test_blank_lines_dropped(self) -> None:
        rows = parse_score_csv("mi_id,score\nMI-1,1\n,\n\nMI-2,2\n")
        assert [r["mi_id"] for r in rows] == ["MI-1", "MI-2"]

    def test_missing_score_column(self) -> None:
        with pytest.raises(InvalidInputError, match="score"):
            parse_score_csv("mi_id,email\nMI-1,a@b.io\n")

    def test_missing_identifier_columns(self) -> None:
        with pytest.raises(InvalidInputError, match="mi_id"):
            parse_score_csv("name,score\nJane,1\n")

    def test_empty_file(self) -> None:
        with pytest.raises(InvalidInputError):
            parse_score_csv("")


# ─────────────────────────── Upload ───────────────────────────────────────────

class TestUploadScores:
    async def test_resolves_by_mi_id_and_email(self, async_session) -> None:
        r = await _round_with(async_session)
        report = await upload_scores(
            async_session, r.id,
            [
                {"mi_id": "MI-p1", "score": "90"},
                {"email": "P2@example.com", "score": "80"},
                {"mi_id": "unknown", "email": "p3@example.com", "score": "70"},
            ],
            admin_id=ADMIN_ID,
        )
        assert (report.success, report.skipped, report.failed) == (3, 0, 0)
        assert await count_scored(async_session, r.id) == 3

        board = await get_round_leaderboard(async_session, r.id)
        assert [(p.mi_id, p.score, p.rank_in_round) for p in board] == [
            ("MI-p1", 90.0, 1), ("MI-p2", 80.0, 2), ("MI-p3", 70.0, 3),
        ]

    async def test_first_upload_starts_round(self, async_session) -> None:
        r = await _round_with(async_session)
        assert r.status == RoundStatus.PENDING
        await upload_scores(async_session, r.id, score_rows([("MI-p1", 1)]))
        assert (await get_round(async_session, r.id)).status == RoundStatus.IN_PROGRESS

    async def test_reupload_is_idempotent(self, async_session) -> None:
        r = await _round_with(async_session)
        rows = score_rows([("MI-p1", 90), ("MI-p2", 80), ("MI-p3", 70)])
        await upload_scores(async_session, r.id, rows)

        changed = score_rows([("MI-p1", 1), ("MI-p2", 2), ("MI-p3", 3)])
        report = await upload_scores(async_session, r.id, changed)
        assert (report.success, report.skipped, report.failed) == (0, 3, 0)

        board = await get_round_leaderboard(async_session, r.id)
        assert [p.score for p in board] == [90.0, 80.0, 70.0]

    async def test_partial_reupload_fills_only_missing(self, async_session) -> None:
        r = await _round_with(async_session)
        await upload_scores(async_session, r.id, score_rows([("MI-p1", 50)]))
        report = await upload_scores(async_session, r.id, score_rows([("MI-p1", 99), ("MI-p2", 60)]))
        assert (report.success, report.skipped) == (1, 1)

        scores = {p.mi_id: p.score for p in await get_round_leaderboard(async_session, r.id)}
        assert scores == {"MI-p1": 50.0, "MI-p2": 60.0, "MI-p3": None}

    async def test_row_errors_do_not_abort_batch(self, async_session) -> None:
        r = await _round_with(async_session)
        report = await upload_scores(
            async_session, r.id,
            [
                {"mi_id": "MI-p1", "score": "abc"},      # bad score
                {"mi_id": "MI-nobody", "score": "5"},    # not in round
                {"mi_id": "", "email": "", "score": "5"},  # no identifier
                {"mi_id": "MI-p2", "score": "5"},
                {"email": "p2@example.com", "score": "6"},  # same participant again
            ],
        )
        assert (report.success, report.skipped, report.failed) == (1, 0, 4)
        assert report.total == 5
        assert report.errors[1] == "Row 2: participant not found in this round: MI-nobody"
        assert report.errors[3].startswith("Row 5: duplicate participant in batch")

        scores = {p.mi_id: p.score for p in await get_round_leaderboard(async_session, r.id)}
        assert scores["MI-p2"] == 5.0

    async def test_participant_of_other_round_not_found(self, async_session) -> None:
        competition, (city,) = await make_competition(async_session)
        await register_many(async_session, competition.id, city.id, 2)
        r1 = await create_round(async_session, competition.id, city.id, "Qualifier")
        r2 = await create_round(async_session, competition.id, city.id, "Final")
        assert r1.round_number == 1

        report = await upload_scores(async_session, r2.id, score_rows([("MI-p1", 5)]))
        assert report.failed == 1
        assert report.success == 0

    async def test_empty_batch_rejected(self, async_session) -> None:
        r = await _round_with(async_session)
        with pytest.raises(InvalidInputError):
            await upload_scores(async_session, r.id, [])

    async def test_batch_limit(self, async_session, monkeypatch) -> None:
        r = await _round_with(async_session)
        monkeypatch.setattr(settings, "SCORE_BATCH_LIMIT", 2)
        with pytest.raises(InvalidInputError, match="limit 2"):
            await upload_scores(async_session, r.id, score_rows([("MI-p1", 1), ("MI-p2", 2), ("MI-p3", 3)]))
        assert await count_scored(async_session, r.id) == 0

    async def test_archived_round_rejected(self, async_session) -> None:
        r = await _round_with(async_session)
        await archive_round(async_session, r.id)
        with pytest.raises(StateConflictError):
            await upload_scores(async_session, r.id, score_rows([("MI-p1", 1)]))

    async def test_missing_round(self, async_session) -> None:
        with pytest.raises(NotFoundError):
            await upload_scores(async_session, 999, score_rows([("MI-p1", 1)]))


# ─────────────────────────── Clear ────────────────────────────────────────────

class TestClearScores:
    async def test_admin_is_refused(self, async_session) -> None:
        r = await _round_with(async_session)
        await upload_scores(async_session, r.id, score_rows([("MI-p1", 1)]))
        with pytest.raises(PermissionDeniedError):
            await clear_scores(async_session, r.id, admin_id=ADMIN_ID)
        assert await count_scored(async_session, r.id) == 1

    async def test_superadmin_clears_and_reupload_applies(self, async_session) -> None:
        r = await _round_with(async_session)
        await upload_scores(async_session, r.id, score_rows([("MI-p1", 1), ("MI-p2", 2)]))

        removed = await clear_scores(async_session, r.id, admin_id=SUPERADMIN_ID)
        assert removed == 2
        assert await count_scored(async_session, r.id) == 0

        report = await upload_scores(async_session, r.id, score_rows([("MI-p1", 10)]))
        assert report.success == 1
