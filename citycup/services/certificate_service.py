"""
Certificate lifecycle — generation, release, revocation.

    (none) ──generate──▶ GENERATED ──release──▶ RELEASED ──revoke──▶ REVOKED
                            ▲                      ▲                   │
                            └──── regenerate ──────┴──── re-release ◀──┘

* One certificate per (participation, template). Regenerating keeps the row
  and its id, issues a fresh number and resets it to GENERATED.
* Release accepts GENERATED and REVOKED; revoke accepts RELEASED only and
  always needs a reason.
* Scoped variants (round, competition, winners) are single UPDATE statements
  and report how many rows they touched.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from citycup.config import settings
from citycup.errors import InvalidInputError, NotFoundError, StateConflictError
from citycup.models.models import (
    Certificate,
    CertificateStatus,
    CertificateTemplate,
    City,
    Competition,
    CompetitionCity,
    Participation,
    Result,
    ResultStatus,
    Round,
    RoundParticipation,
    RoundScore,
    TemplateStatus,
    User,
)
from citycup.services import audit_service
from citycup.services.lookups import require
from citycup.services.qr_service import make_certificate_token
from citycup.services.renderer import (
    SAMPLE_DATA,
    CertificateRenderer,
    RenderedCertificate,
    default_renderer,
)
from citycup.validators import RevokeReason, validation_message

logger = logging.getLogger(__name__)

RELEASABLE = (CertificateStatus.GENERATED, CertificateStatus.REVOKED)


@dataclass
class GenerationReport:
    created: int = 0
    updated: int = 0
    certificate_ids: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated


@dataclass
class BulkOutcome:
    """Affected row count of a bulk transition, with the ids that changed."""
    affected:        int
    certificate_ids: List[int] = field(default_factory=list)


@dataclass
class CertificateCount:
    round_id:    int
    template_id: int
    total:       int
    generated:   int
    released:    int
    revoked:     int


# ── Templates ─────────────────────────────────────────────────────────────────

async def create_template(
    session: AsyncSession,
    name: str,
    fields: Optional[List[str]] = None,
    competition_id: Optional[int] = None,
) -> CertificateTemplate:
    name = name.strip()
    if not name:
        raise InvalidInputError("Template name is required")
    if competition_id is not None:
        await require(session, Competition, competition_id)
    t = CertificateTemplate(
        name=name,
        fields=list(fields or []),
        competition_id=competition_id,
        status=TemplateStatus.ACTIVE,
    )
    session.add(t)
    await session.flush()
    return t


async def list_templates(
    session: AsyncSession,
    competition_id: Optional[int] = None,
    active_only: bool = True,
) -> List[CertificateTemplate]:
    """Templates usable for a competition: its own plus global ones."""
    q = select(CertificateTemplate).order_by(CertificateTemplate.name)
    if active_only:
        q = q.where(CertificateTemplate.status == TemplateStatus.ACTIVE)
    if competition_id is not None:
        q = q.where(
            (CertificateTemplate.competition_id == competition_id)
            | CertificateTemplate.competition_id.is_(None)
        )
    result = await session.execute(q)
    return list(result.scalars().all())


async def archive_template(session: AsyncSession, template_id: int) -> CertificateTemplate:
    t = await require(session, CertificateTemplate, template_id, for_update=True)
    t.status = TemplateStatus.ARCHIVED
    await session.flush()
    return t


async def _require_active_template(session: AsyncSession, template_id: int) -> CertificateTemplate:
    t = await require(session, CertificateTemplate, template_id)
    if t.status != TemplateStatus.ACTIVE:
        raise StateConflictError("Template is not active")
    return t


# ── Generation ────────────────────────────────────────────────────────────────

def certificate_number(competition_id: int, city_id: int, now: Optional[datetime] = None) -> str:
    year = (now or datetime.utcnow()).year
    return f"CERT-{year}-{competition_id}-{city_id}-{make_certificate_token()}"


async def generate_certificates(
    session: AsyncSession,
    template_id: int,
    participation_ids: Sequence[int],
    admin_id: Optional[int] = None,
) -> GenerationReport:
    """Create or regenerate certificates of one template for the given participations."""
    template = await _require_active_template(session, template_id)
    ids = list(dict.fromkeys(participation_ids))
    report = GenerationReport()
    if not ids:
        return report

    result = await session.execute(select(Participation).where(Participation.id.in_(ids)))
    participations = {p.id: p for p in result.scalars().all()}
    missing = [pid for pid in ids if pid not in participations]
    if missing:
        raise NotFoundError("Participation", missing[0])
    if template.competition_id is not None:
        foreign = [p.id for p in participations.values() if p.competition_id != template.competition_id]
        if foreign:
            raise InvalidInputError("Template belongs to a different competition")

    existing = await session.execute(
        select(Certificate)
        .where(Certificate.template_id == template_id, Certificate.participation_id.in_(ids))
        .with_for_update()
    )
    by_participation = {c.participation_id: c for c in existing.scalars().all()}

    now = datetime.utcnow()
    new_rows: List[Certificate] = []
    for pid in ids:
        p = participations[pid]
        number = certificate_number(p.competition_id, p.city_id, now)
        cert = by_participation.get(pid)
        if cert is None:
            cert = Certificate(
                participation_id=pid,
                template_id=template_id,
                certificate_number=number,
                status=CertificateStatus.GENERATED,
                generated_at=now,
                generated_by=admin_id,
            )
            session.add(cert)
            new_rows.append(cert)
            report.created += 1
        else:
            cert.certificate_number = number
            cert.status             = CertificateStatus.GENERATED
            cert.generated_at       = now
            cert.generated_by       = admin_id
            cert.released_at        = None
            cert.released_by        = None
            cert.revoked_at         = None
            cert.revoke_reason      = None
            report.updated += 1
            report.certificate_ids.append(cert.id)
    await session.flush()
    report.certificate_ids.extend(c.id for c in new_rows)

    logger.info(
        "Template %d: %d certificates created, %d regenerated",
        template_id, report.created, report.updated,
    )
    audit_service.record(
        admin_id, "certificate.generate", "template", template_id,
        created=report.created, updated=report.updated,
    )
    return report


async def _round_participation_ids(session: AsyncSession, round_id: int, winners_only: bool = False) -> List[int]:
    q = select(RoundParticipation.participation_id).where(RoundParticipation.round_id == round_id)
    if winners_only:
        q = q.join(RoundScore, RoundScore.round_participation_id == RoundParticipation.id).where(
            RoundScore.is_winner.is_(True)
        )
    result = await session.execute(q.order_by(RoundParticipation.participation_id))
    return list(result.scalars().all())


async def generate_for_competition(
    session: AsyncSession,
    competition_id: int,
    template_id: int,
    city_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> GenerationReport:
    await require(session, Competition, competition_id)
    q = select(Participation.id).where(Participation.competition_id == competition_id)
    if city_id is not None:
        q = q.where(Participation.city_id == city_id)
    result = await session.execute(q.order_by(Participation.id))
    return await generate_certificates(session, template_id, list(result.scalars().all()), admin_id)


async def generate_for_round(
    session: AsyncSession,
    round_id: int,
    template_id: int,
    admin_id: Optional[int] = None,
) -> GenerationReport:
    await require(session, Round, round_id)
    ids = await _round_participation_ids(session, round_id)
    return await generate_certificates(session, template_id, ids, admin_id)


async def generate_for_winners(
    session: AsyncSession,
    round_id: int,
    template_id: int,
    admin_id: Optional[int] = None,
) -> GenerationReport:
    await require(session, Round, round_id)
    ids = await _round_participation_ids(session, round_id, winners_only=True)
    return await generate_certificates(session, template_id, ids, admin_id)


# ── Release ───────────────────────────────────────────────────────────────────

async def release_certificate(
    session: AsyncSession,
    certificate_id: int,
    admin_id: Optional[int] = None,
) -> Certificate:
    cert = await require(session, Certificate, certificate_id, for_update=True)
    if cert.status not in RELEASABLE:
        raise StateConflictError(
            f"Certificate must be GENERATED or REVOKED to be released (is {cert.status})"
        )
    cert.status        = CertificateStatus.RELEASED
    cert.released_at   = datetime.utcnow()
    cert.released_by   = admin_id
    cert.revoked_at    = None
    cert.revoke_reason = None
    await session.flush()
    audit_service.record(admin_id, "certificate.release", "certificate", cert.id)
    return cert


async def _transition(
    session: AsyncSession,
    conditions: list,
    from_statuses: Iterable[str],
    values: Dict[str, Any],
) -> BulkOutcome:
    """Lock the matching rows, then move them with one UPDATE."""
    result = await session.execute(
        select(Certificate.id)
        .where(Certificate.status.in_(list(from_statuses)), *conditions)
        .with_for_update()
    )
    ids = list(result.scalars().all())
    if not ids:
        return BulkOutcome(affected=0)
    updated = await session.execute(
        update(Certificate)
        .where(Certificate.id.in_(ids))
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return BulkOutcome(affected=updated.rowcount, certificate_ids=ids)


def _release_values(admin_id: Optional[int]) -> Dict[str, Any]:
    return {
        "status":        CertificateStatus.RELEASED,
        "released_at":   datetime.utcnow(),
        "released_by":   admin_id,
        "revoked_at":    None,
        "revoke_reason": None,
    }


def _scope(
    round_id: Optional[int] = None,
    competition_id: Optional[int] = None,
    template_id: Optional[int] = None,
    winners_only: bool = False,
) -> list:
    conditions = []
    if round_id is not None:
        members = select(RoundParticipation.participation_id).where(RoundParticipation.round_id == round_id)
        if winners_only:
            members = members.join(
                RoundScore, RoundScore.round_participation_id == RoundParticipation.id
            ).where(RoundScore.is_winner.is_(True))
        conditions.append(Certificate.participation_id.in_(members))
    if competition_id is not None:
        conditions.append(
            Certificate.participation_id.in_(
                select(Participation.id).where(Participation.competition_id == competition_id)
            )
        )
    if template_id is not None:
        conditions.append(Certificate.template_id == template_id)
    return conditions


def _check_bulk_ids(certificate_ids: Sequence[int]) -> List[int]:
    ids = list(dict.fromkeys(certificate_ids))
    if len(ids) > settings.BULK_ID_LIMIT:
        raise InvalidInputError(f"Too many ids: {len(ids)} (limit {settings.BULK_ID_LIMIT})")
    return ids


async def release_certificates(
    session: AsyncSession,
    certificate_ids: Sequence[int],
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    """Bulk release by id. Ineligible or unknown ids are ignored and not counted."""
    ids = _check_bulk_ids(certificate_ids)
    if not ids:
        return BulkOutcome(affected=0)
    outcome = await _transition(session, [Certificate.id.in_(ids)], RELEASABLE, _release_values(admin_id))
    audit_service.record(admin_id, "certificate.release_bulk", "certificate", None, affected=outcome.affected)
    return outcome


async def release_for_round(
    session: AsyncSession,
    round_id: int,
    template_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    await require(session, Round, round_id)
    outcome = await _transition(
        session, _scope(round_id=round_id, template_id=template_id), RELEASABLE, _release_values(admin_id)
    )
    audit_service.record(admin_id, "certificate.release_round", "round", round_id, affected=outcome.affected)
    return outcome


async def release_for_competition(
    session: AsyncSession,
    competition_id: int,
    template_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    await require(session, Competition, competition_id)
    outcome = await _transition(
        session,
        _scope(competition_id=competition_id, template_id=template_id),
        RELEASABLE,
        _release_values(admin_id),
    )
    audit_service.record(
        admin_id, "certificate.release_competition", "competition", competition_id, affected=outcome.affected
    )
    return outcome


async def release_for_winners(
    session: AsyncSession,
    round_id: int,
    template_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    await require(session, Round, round_id)
    outcome = await _transition(
        session,
        _scope(round_id=round_id, template_id=template_id, winners_only=True),
        RELEASABLE,
        _release_values(admin_id),
    )
    audit_service.record(admin_id, "certificate.release_winners", "round", round_id, affected=outcome.affected)
    return outcome


# ── Revocation ────────────────────────────────────────────────────────────────

def _reason(reason: str) -> str:
    try:
        return RevokeReason(reason=reason or "").reason
    except ValidationError as e:
        raise InvalidInputError(validation_message(e)) from e


def _revoke_values(reason: str) -> Dict[str, Any]:
    return {
        "status":        CertificateStatus.REVOKED,
        "revoked_at":    datetime.utcnow(),
        "revoke_reason": reason,
    }


async def revoke_certificate(
    session: AsyncSession,
    certificate_id: int,
    reason: str,
    admin_id: Optional[int] = None,
) -> Certificate:
    reason = _reason(reason)
    cert = await require(session, Certificate, certificate_id, for_update=True)
    if cert.status != CertificateStatus.RELEASED:
        raise StateConflictError(f"Only released certificates can be revoked (is {cert.status})")
    cert.status        = CertificateStatus.REVOKED
    cert.revoked_at    = datetime.utcnow()
    cert.revoke_reason = reason
    await session.flush()
    audit_service.record(admin_id, "certificate.revoke", "certificate", cert.id, reason=reason)
    return cert


async def revoke_for_competition(
    session: AsyncSession,
    competition_id: int,
    reason: str,
    template_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    reason = _reason(reason)
    await require(session, Competition, competition_id)
    outcome = await _transition(
        session,
        _scope(competition_id=competition_id, template_id=template_id),
        [CertificateStatus.RELEASED],
        _revoke_values(reason),
    )
    audit_service.record(
        admin_id, "certificate.revoke_competition", "competition", competition_id,
        affected=outcome.affected, reason=reason,
    )
    return outcome


async def revoke_for_round(
    session: AsyncSession,
    round_id: int,
    reason: str,
    template_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    reason = _reason(reason)
    await require(session, Round, round_id)
    outcome = await _transition(
        session,
        _scope(round_id=round_id, template_id=template_id),
        [CertificateStatus.RELEASED],
        _revoke_values(reason),
    )
    audit_service.record(
        admin_id, "certificate.revoke_round", "round", round_id, affected=outcome.affected, reason=reason
    )
    return outcome


async def revoke_for_winners(
    session: AsyncSession,
    round_id: int,
    reason: str,
    template_id: Optional[int] = None,
    admin_id: Optional[int] = None,
) -> BulkOutcome:
    reason = _reason(reason)
    await require(session, Round, round_id)
    outcome = await _transition(
        session,
        _scope(round_id=round_id, template_id=template_id, winners_only=True),
        [CertificateStatus.RELEASED],
        _revoke_values(reason),
    )
    audit_service.record(
        admin_id, "certificate.revoke_winners", "round", round_id, affected=outcome.affected, reason=reason
    )
    return outcome


# ── Delete ────────────────────────────────────────────────────────────────────

async def delete_certificate(
    session: AsyncSession,
    certificate_id: int,
    admin_id: Optional[int] = None,
) -> None:
    await require(session, Certificate, certificate_id, for_update=True)
    await session.execute(delete(Certificate).where(Certificate.id == certificate_id))
    audit_service.record(admin_id, "certificate.delete", "certificate", certificate_id)


# ── Rendering ─────────────────────────────────────────────────────────────────

async def certificate_data(session: AsyncSession, participation_id: int) -> Dict[str, Any]:
    """
    Flat field map of a participation, as seen by renderers.

    A participation can hold several Results: one for its home city and one
    more per branch city whose finale it was imported into. The fields show
    the best of them (WINNER, then FINALIST, then PARTICIPATED; the lower
    position breaks a tie). city_name is always the home city. With no
    Result at all, result_status and position are None.
    """
    row = await session.execute(
        select(
            User.full_name, User.mi_id, User.email,
            Competition.name, City.name, CompetitionCity.event_date,
            Participation.competition_id, Participation.city_id,
        )
        .select_from(Participation)
        .join(User, User.id == Participation.user_id)
        .join(Competition, Competition.id == Participation.competition_id)
        .join(City, City.id == Participation.city_id)
        .outerjoin(
            CompetitionCity,
            (CompetitionCity.competition_id == Participation.competition_id)
            & (CompetitionCity.city_id == Participation.city_id),
        )
        .where(Participation.id == participation_id)
    )
    found = row.one_or_none()
    if found is None:
        raise NotFoundError("Participation", participation_id)
    full_name, mi_id, email, competition_name, city_name, event_date, _, _ = found

    results = await session.execute(
        select(Result.result_status, Result.position).where(Result.participation_id == participation_id)
    )
    best = max(
        results.all(),
        key=lambda r: (ResultStatus.WEIGHT.get(r[0], -1), -(r[1] or 10**6)),
        default=(None, None),
    )
    return {
        "full_name":        full_name,
        "mi_id":            mi_id,
        "email":            email,
        "competition_name": competition_name,
        "city_name":        city_name,
        "event_date":       event_date,
        "result_status":    best[0],
        "position":         best[1],
    }


async def preview_certificate(
    session: AsyncSession,
    template_id: int,
    participation_id: Optional[int] = None,
    sample_data: Optional[Dict[str, Any]] = None,
    renderer: Optional[CertificateRenderer] = None,
) -> RenderedCertificate:
    """Render without touching any certificate row."""
    template = await require(session, CertificateTemplate, template_id)
    if participation_id is not None:
        data = await certificate_data(session, participation_id)
        data["certificate_number"] = "PREVIEW"
    else:
        data = {**SAMPLE_DATA, **(sample_data or {})}
    return (renderer or default_renderer).render(template, data)


async def render_certificate(
    session: AsyncSession,
    certificate_id: int,
    renderer: Optional[CertificateRenderer] = None,
) -> RenderedCertificate:
    cert = await require(session, Certificate, certificate_id)
    template = await require(session, CertificateTemplate, cert.template_id)
    data = await certificate_data(session, cert.participation_id)
    data["certificate_number"] = cert.certificate_number
    return (renderer or default_renderer).render(template, data)


# ── Queries ───────────────────────────────────────────────────────────────────

async def get_certificate_counts(session: AsyncSession, competition_id: int) -> List[CertificateCount]:
    """Per (round, template) certificate totals for a competition in one query."""
    def status_sum(status: str):
        return func.sum(case((Certificate.status == status, 1), else_=0))

    result = await session.execute(
        select(
            RoundParticipation.round_id,
            Certificate.template_id,
            func.count(Certificate.id),
            status_sum(CertificateStatus.GENERATED),
            status_sum(CertificateStatus.RELEASED),
            status_sum(CertificateStatus.REVOKED),
        )
        .join(RoundParticipation, RoundParticipation.participation_id == Certificate.participation_id)
        .join(Round, Round.id == RoundParticipation.round_id)
        .where(Round.competition_id == competition_id)
        .group_by(RoundParticipation.round_id, Certificate.template_id)
        .order_by(RoundParticipation.round_id, Certificate.template_id)
    )
    return [
        CertificateCount(
            round_id=row[0],
            template_id=row[1],
            total=row[2],
            generated=row[3] or 0,
            released=row[4] or 0,
            revoked=row[5] or 0,
        )
        for row in result.all()
    ]


async def get_certificate(session: AsyncSession, certificate_id: int) -> Optional[Certificate]:
    result = await session.execute(
        select(Certificate)
        .where(Certificate.id == certificate_id)
        .options(
            selectinload(Certificate.template),
            selectinload(Certificate.participation).selectinload(Participation.user),
        )
    )
    return result.scalar_one_or_none()


async def list_certificates(
    session: AsyncSession,
    competition_id: Optional[int] = None,
    city_id: Optional[int] = None,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    round_id: Optional[int] = None,
) -> List[Certificate]:
    q = (
        select(Certificate)
        .join(Participation, Participation.id == Certificate.participation_id)
        .options(
            selectinload(Certificate.template),
            selectinload(Certificate.participation).selectinload(Participation.user),
            selectinload(Certificate.participation).selectinload(Participation.city),
        )
        .order_by(Certificate.generated_at.desc(), Certificate.id.desc())
    )
    if competition_id is not None:
        q = q.where(Participation.competition_id == competition_id)
    if city_id is not None:
        q = q.where(Participation.city_id == city_id)
    if user_id is not None:
        q = q.where(Participation.user_id == user_id)
    if status is not None:
        q = q.where(Certificate.status == status)
    if round_id is not None:
        q = q.where(*_scope(round_id=round_id))
    result = await session.execute(q)
    return list(result.scalars().all())


async def get_user_certificates(session: AsyncSession, user_id: int) -> List[Certificate]:
    """A participant only ever sees their released certificates."""
    result = await session.execute(
        select(Certificate)
        .join(Participation, Participation.id == Certificate.participation_id)
        .where(Participation.user_id == user_id, Certificate.status == CertificateStatus.RELEASED)
        .options(
            selectinload(Certificate.template),
            selectinload(Certificate.participation).selectinload(Participation.competition),
            selectinload(Certificate.participation).selectinload(Participation.city),
        )
        .order_by(Certificate.released_at.desc())
    )
    return list(result.scalars().all())


async def recipients(session: AsyncSession, certificate_ids: Sequence[int]) -> List[Certificate]:
    """Certificates with users, competitions and templates loaded, for release notifications."""
    if not certificate_ids:
        return []
    result = await session.execute(
        select(Certificate)
        .where(Certificate.id.in_(list(certificate_ids)))
        .options(
            selectinload(Certificate.template),
            selectinload(Certificate.participation).selectinload(Participation.user),
            selectinload(Certificate.participation).selectinload(Participation.competition),
        )
    )
    return list(result.scalars().all())
