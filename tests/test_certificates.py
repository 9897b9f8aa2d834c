"""
Integration tests — Certificate lifecycle (certificate_service.py).

Coverage:
  - Generation: one row per (participation, template), regeneration in place
  - Single transitions: release / revoke / re-release with reasons
  - Bulk transitions by round, winners, competition and id list
  - Preview writes nothing; participants see released certificates only
  - Per-round counts, rendering and release notifications
"""
from __future__ import annotations

from typing import List

import pytest

from citycup.config import settings
from citycup.errors import InvalidInputError, NotFoundError, StateConflictError
from citycup.models.models import CertificateStatus, ResultStatus
from citycup.services.certificate_service import (
    archive_template,
    certificate_data,
    certificate_number,
    create_template,
    delete_certificate,
    generate_certificates,
    generate_for_competition,
    generate_for_round,
    generate_for_winners,
    get_certificate,
    get_certificate_counts,
    get_user_certificates,
    list_certificates,
    list_templates,
    preview_certificate,
    recipients,
    release_certificate,
    release_certificates,
    release_for_competition,
    release_for_round,
    release_for_winners,
    render_certificate,
    revoke_certificate,
    revoke_for_competition,
    revoke_for_round,
    revoke_for_winners,
)
from citycup.services.city_service import get_results, mark_city_finished
from citycup.services.competition_service import upsert_user
from citycup.services.notification_service import notify_certificates_released
from citycup.services.qr_service import validate_certificate_number, verify_url
from citycup.services.round_service import create_round, get_round_leaderboard
from citycup.services.winner_service import import_selected_winners, select_winners
from tests.conftest import ADMIN_ID, make_competition, register_many

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


async def _finale(session, count: int = 5):
    """A round-1 finale with `count` members; p1 is the only winner."""
    competition, (city,) = await make_competition(session)
    participations = await register_many(session, competition.id, city.id, count)
    finale = await create_round(session, competition.id, city.id, "Final", is_finale=True)
    board = {p.mi_id: p for p in await get_round_leaderboard(session, finale.id)}
    await select_winners(session, finale.id, [{"round_participation_id": board["MI-p1"].round_participation_id, "position": 1}])
    template = await create_template(session, "Diploma", ["full_name", "city_name", "position"], competition.id)
    return competition, finale, participations, template


class FakeBot:
    """Collects send_message calls instead of talking to Telegram."""

    def __init__(self) -> None:
        self.sent: List[dict] = []

    async def send_message(self, **kwargs) -> None:
        self.sent.append(kwargs)


# ─────────────────────────── Templates ────────────────────────────────────────

class TestTemplates:
    async def test_competition_and_global_templates_listed(self, async_session) -> None:
        first, _ = await make_competition(async_session, "First")
        second, _ = await make_competition(async_session, "Second", cities=())
        await create_template(async_session, "Global")
        await create_template(async_session, "Own", competition_id=first.id)
        await create_template(async_session, "Other", competition_id=second.id)
        archived = await create_template(async_session, "Old", competition_id=first.id)
        await archive_template(async_session, archived.id)

        names = [t.name for t in await list_templates(async_session, competition_id=first.id)]
        assert names == ["Global", "Own"]

    async def test_blank_name_rejected(self, async_session) -> None:
        with pytest.raises(InvalidInputError):
            await create_template(async_session, "  ")

    async def test_archived_template_cannot_generate(self, async_session) -> None:
        _, finale, _, template = await _finale(async_session)
        await archive_template(async_session, template.id)
        with pytest.raises(StateConflictError):
            await generate_for_round(async_session, finale.id, template.id)

    async def test_template_of_other_competition_rejected(self, async_session) -> None:
        _, finale, _, _ = await _finale(async_session)
        other, _ = await make_competition(async_session, "Other", cities=())
        foreign = await create_template(async_session, "Foreign", competition_id=other.id)
        with pytest.raises(InvalidInputError):
            await generate_for_round(async_session, finale.id, foreign.id)


# ─────────────────────────── Generation ───────────────────────────────────────

class TestGeneration:
    async def test_round_generation_fills_gaps_and_regenerates(self, async_session) -> None:
        _, finale, participations, template = await _finale(async_session)
        first = await generate_certificates(async_session, template.id, [p.id for p in participations[:2]])
        assert (first.created, first.updated) == (2, 0)
        old = {c.id: c.certificate_number for c in await list_certificates(async_session)}

        report = await generate_for_round(async_session, finale.id, template.id, admin_id=ADMIN_ID)
        assert (report.created, report.updated, report.total) == (3, 2, 5)

        certs = await list_certificates(async_session)
        assert len(certs) == 5
        assert all(c.status == CertificateStatus.GENERATED for c in certs)
        assert all(validate_certificate_number(c.certificate_number) for c in certs)
        for cert_id, number in old.items():
            regenerated = next(c for c in certs if c.id == cert_id)
            assert regenerated.certificate_number != number

    async def test_winners_only(self, async_session) -> None:
        _, finale, participations, template = await _finale(async_session)
        report = await generate_for_winners(async_session, finale.id, template.id)
        assert report.created == 1
        (cert,) = await list_certificates(async_session)
        assert cert.participation_id == participations[0].id

    async def test_competition_scope(self, async_session) -> None:
        competition, _, _, template = await _finale(async_session)
        report = await generate_for_competition(async_session, competition.id, template.id)
        assert report.created == 5

    async def test_duplicate_ids_collapse(self, async_session) -> None:
        _, _, participations, template = await _finale(async_session)
        pid = participations[0].id
        report = await generate_certificates(async_session, template.id, [pid, pid])
        assert report.created == 1

    async def test_unknown_participation(self, async_session) -> None:
        _, _, _, template = await _finale(async_session)
        with pytest.raises(NotFoundError):
            await generate_certificates(async_session, template.id, [999])

    def test_number_shape(self) -> None:
        number = certificate_number(3, 7)
        assert number.startswith("CERT-")
        assert validate_certificate_number(number)
        assert not validate_certificate_number("CERT-2026-3-7-short")


# ─────────────────────────── Single transitions ───────────────────────────────

class TestLifecycle:
    async def test_release_revoke_rerelease_regenerate(self, async_session) -> None:
        _, finale, participations, template = await _finale(async_session)
        report = await generate_certificates(async_session, template.id, [participations[0].id])
        cert_id = report.certificate_ids[0]

        cert = await release_certificate(async_session, cert_id, admin_id=ADMIN_ID)
        assert cert.status == CertificateStatus.RELEASED
        assert cert.released_by == ADMIN_ID
        with pytest.raises(StateConflictError):
            await release_certificate(async_session, cert_id)

        with pytest.raises(InvalidInputError):
            await revoke_certificate(async_session, cert_id, "   ")
        cert = await revoke_certificate(async_session, cert_id, " wrong spelling ")
        assert cert.status == CertificateStatus.REVOKED
        assert cert.revoke_reason == "wrong spelling"
        with pytest.raises(StateConflictError, match="Only released"):
            await revoke_certificate(async_session, cert_id, "again")

        cert = await release_certificate(async_session, cert_id)
        assert cert.status == CertificateStatus.RELEASED
        assert cert.revoke_reason is None
        assert cert.revoked_at is None

        number = cert.certificate_number
        await generate_certificates(async_session, template.id, [participations[0].id])
        cert = await get_certificate(async_session, cert_id)
        assert cert.status == CertificateStatus.GENERATED
        assert cert.released_at is None
        assert cert.certificate_number != number

    async def test_generated_cannot_be_revoked(self, async_session) -> None:
        _, _, participations, template = await _finale(async_session)
        report = await generate_certificates(async_session, template.id, [participations[0].id])
        with pytest.raises(StateConflictError):
            await revoke_certificate(async_session, report.certificate_ids[0], "reason")

    async def test_delete(self, async_session) -> None:
        _, _, participations, template = await _finale(async_session)
        report = await generate_certificates(async_session, template.id, [p.id for p in participations[:2]])
        gone, kept = report.certificate_ids

        await delete_certificate(async_session, gone, admin_id=ADMIN_ID)
        assert await get_certificate(async_session, gone) is None
        assert await get_certificate(async_session, kept) is not None
        with pytest.raises(NotFoundError):
            await delete_certificate(async_session, gone)


# ─────────────────────────── Bulk transitions ─────────────────────────────────

class TestBulk:
    async def test_round_release_counts_only_eligible(self, async_session) -> None:
        _, finale, _, template = await _finale(async_session)
        report = await generate_for_round(async_session, finale.id, template.id)
        await release_certificate(async_session, report.certificate_ids[0])

        outcome = await release_for_round(async_session, finale.id, template_id=template.id)
        assert outcome.affected == 4
        assert len(outcome.certificate_ids) == 4

        again = await release_for_round(async_session, finale.id)
        assert again.affected == 0
        assert again.certificate_ids == []

    async def test_winner_scope(self, async_session) -> None:
        _, finale, participations, template = await _finale(async_session)
        await generate_for_round(async_session, finale.id, template.id)

        assert (await release_for_winners(async_session, finale.id)).affected == 1
        (released,) = await list_certificates(async_session, status=CertificateStatus.RELEASED)
        assert released.participation_id == participations[0].id

        await release_for_round(async_session, finale.id)
        outcome = await revoke_for_winners(async_session, finale.id, "recount")
        assert outcome.affected == 1
        assert len(await list_certificates(async_session, status=CertificateStatus.RELEASED)) == 4

    async def test_round_revoke_needs_reason(self, async_session) -> None:
        _, finale, _, template = await _finale(async_session)
        await generate_for_round(async_session, finale.id, template.id)
        await release_for_round(async_session, finale.id)

        with pytest.raises(InvalidInputError):
            await revoke_for_round(async_session, finale.id, "")
        outcome = await revoke_for_round(async_session, finale.id, "event cancelled", admin_id=ADMIN_ID)
        assert outcome.affected == 5
        revoked = await list_certificates(async_session, status=CertificateStatus.REVOKED)
        assert {c.revoke_reason for c in revoked} == {"event cancelled"}

    async def test_competition_release(self, async_session) -> None:
        competition, finale, _, template = await _finale(async_session)
        await generate_for_round(async_session, finale.id, template.id)
        assert (await release_for_competition(async_session, competition.id)).affected == 5

    async def test_competition_revoke_touches_released_only(self, async_session) -> None:
        competition, finale, _, template = await _finale(async_session)
        report = await generate_for_round(async_session, finale.id, template.id)
        await release_certificates(async_session, report.certificate_ids[:3])
        await revoke_certificate(async_session, report.certificate_ids[0], "typo")

        with pytest.raises(InvalidInputError):
            await revoke_for_competition(async_session, competition.id, "  ")
        outcome = await revoke_for_competition(async_session, competition.id, "season void", admin_id=ADMIN_ID)
        assert outcome.affected == 2

        revoked = await list_certificates(async_session, status=CertificateStatus.REVOKED)
        assert {c.id: c.revoke_reason for c in revoked} == {
            report.certificate_ids[0]: "typo",
            report.certificate_ids[1]: "season void",
            report.certificate_ids[2]: "season void",
        }
        assert len(await list_certificates(async_session, status=CertificateStatus.GENERATED)) == 2

    async def test_competition_revoke_unknown_competition(self, async_session) -> None:
        with pytest.raises(NotFoundError):
            await revoke_for_competition(async_session, 9999, "reason")

    async def test_release_by_ids_ignores_unknown(self, async_session) -> None:
        _, finale, _, template = await _finale(async_session)
        report = await generate_for_round(async_session, finale.id, template.id)
        outcome = await release_certificates(async_session, report.certificate_ids[:2] + [9999])
        assert outcome.affected == 2

    async def test_release_by_ids_limit(self, async_session, monkeypatch) -> None:
        monkeypatch.setattr(settings, "BULK_ID_LIMIT", 2)
        with pytest.raises(InvalidInputError, match="limit 2"):
            await release_certificates(async_session, [1, 2, 3])


# ─────────────────────────── Views ────────────────────────────────────────────

class TestViews:
    async def test_data_prefers_best_result(self, async_session) -> None:
        competition, (almaty, branch) = await make_competition(async_session, cities=("Almaty", "Zhetisu Branch"))
        (a1, _) = await register_many(async_session, competition.id, almaty.id, 2, prefix="a")
        await register_many(async_session, competition.id, branch.id, 1, prefix="b")

        home = await create_round(async_session, competition.id, almaty.id, "Final", is_finale=True)
        board = {p.mi_id: p for p in await get_round_leaderboard(async_session, home.id)}
        await select_winners(async_session, home.id, [{"round_participation_id": board["MI-a1"].round_participation_id, "position": 1}])
        await mark_city_finished(async_session, competition.id, almaty.id)

        grand = await create_round(async_session, competition.id, branch.id, "Grand final", is_finale=True)
        await import_selected_winners(async_session, grand.id, [{"city_id": almaty.id, "count": 1}])
        board = {p.mi_id: p for p in await get_round_leaderboard(async_session, grand.id)}
        await select_winners(async_session, grand.id, [{"round_participation_id": board["MI-b1"].round_participation_id, "position": 1}])
        await mark_city_finished(async_session, competition.id, branch.id)

        statuses = {r.city_id: r.result_status for r in await get_results(async_session, competition.id) if r.participation_id == a1.id}
        assert statuses == {almaty.id: ResultStatus.WINNER, branch.id: ResultStatus.FINALIST}

        data = await certificate_data(async_session, a1.id)
        assert data["result_status"] == ResultStatus.WINNER
        assert data["position"] == 1
        assert data["city_name"] == "Almaty"

    async def test_preview_writes_nothing(self, async_session) -> None:
        _, _, participations, template = await _finale(async_session)

        rendered = await preview_certificate(async_session, template.id, participations[0].id)
        assert "Participant P01" in rendered.text
        assert rendered.fields["city_name"] == "Almaty"
        assert await list_certificates(async_session) == []

        sample = await preview_certificate(async_session, template.id, sample_data={"full_name": "Test Name"})
        assert "Test Name" in sample.text
        assert sample.image.startswith(PNG_SIGNATURE)

    async def test_render_uses_certificate_number(self, async_session) -> None:
        _, _, participations, template = await _finale(async_session)
        report = await generate_certificates(async_session, template.id, [participations[0].id])
        cert = await get_certificate(async_session, report.certificate_ids[0])

        rendered = await render_certificate(async_session, cert.id)
        assert rendered.image.startswith(PNG_SIGNATURE)
        assert verify_url(cert.certificate_number).endswith("/" + cert.certificate_number)

    async def test_user_sees_released_only(self, async_session) -> None:
        _, finale, participations, template = await _finale(async_session)
        second = await create_template(async_session, "Thanks")
        await generate_certificates(async_session, template.id, [participations[0].id])
        report = await generate_certificates(async_session, second.id, [participations[0].id])
        await release_certificate(async_session, report.certificate_ids[0])

        mine = await get_user_certificates(async_session, participations[0].user_id)
        assert [c.template.name for c in mine] == ["Thanks"]
        assert await get_user_certificates(async_session, participations[1].user_id) == []

    async def test_counts_per_round_and_template(self, async_session) -> None:
        competition, finale, _, template = await _finale(async_session)
        report = await generate_for_round(async_session, finale.id, template.id)
        await release_certificates(async_session, report.certificate_ids[:3])
        await revoke_certificate(async_session, report.certificate_ids[0], "typo")

        (count,) = await get_certificate_counts(async_session, competition.id)
        assert (count.round_id, count.template_id) == (finale.id, template.id)
        assert (count.total, count.generated, count.released, count.revoked) == (5, 2, 2, 1)


# ─────────────────────────── Notifications ────────────────────────────────────

class TestNotifications:
    async def test_only_linked_users_are_notified(self, async_session) -> None:
        _, finale, participations, template = await _finale(async_session, count=2)
        await upsert_user(async_session, "p1@example.com", "Participant P01", telegram_id=555)
        await generate_for_round(async_session, finale.id, template.id)
        outcome = await release_for_round(async_session, finale.id)

        bot = FakeBot()
        delivered = await notify_certificates_released(bot, await recipients(async_session, outcome.certificate_ids))
        assert delivered == 1
        assert bot.sent[0]["chat_id"] == 555
        assert "Diploma" in bot.sent[0]["text"]
