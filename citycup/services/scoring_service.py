"""
Score ingestion — bulk CSV uploads, single score edits and clearing.

Upload rules
------------
* A record resolves to a participant of the round by `mi_id`, falling back
  to `email`.
* A participant whose score in this round is already set is *skipped*, so
  re-uploading the same file is harmless.
* Malformed rows, unknown identifiers and repeated participants inside one
  batch are reported per row; the rest of the batch still goes through.
* Ranks are recomputed once, after the whole batch.
"""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from citycup.config import settings
from citycup.errors import InvalidInputError, PermissionDeniedError, StateConflictError
from citycup.models.models import (
    Participation,
    Round,
    RoundParticipation,
    RoundScore,
    RoundStatus,
)
from citycup.services import audit_service
from citycup.services.lookups import ensure_city_open, require
from citycup.services.ranking_service import recalculate_round_ranks
from citycup.validators import ScoreRow, validation_message

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("mi_id", "email", "score", "notes")


@dataclass
class UploadReport:
    success: int = 0
    skipped: int = 0
    failed:  int = 0
    errors:  List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.skipped + self.failed

    def fail(self, row_no: int, message: str) -> None:
        self.failed += 1
        self.errors.append(f"Row {row_no}: {message}")


# ── CSV ───────────────────────────────────────────────────────────────────────

def parse_score_csv(text: str) -> List[Dict[str, str]]:
    """
    Parse an uploaded CSV into raw records.
    The header must contain `score` and at least one of `mi_id` / `email`;
    `notes` is optional. Header names are case-insensitive. Blank lines are dropped.
    """
    text = text.lstrip("\ufeff")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise InvalidInputError("CSV file is empty")

    header = [(name or "").strip().lower() for name in reader.fieldnames]
    if "score" not in header:
        raise InvalidInputError("CSV header must contain a 'score' column")
    if "mi_id" not in header and "email" not in header:
        raise InvalidInputError("CSV header must contain an 'mi_id' or 'email' column")

    records: List[Dict[str, str]] = []
    for raw in reader:
        row = {
            (key or "").strip().lower(): (value or "").strip()
            for key, value in raw.items()
            if key is not None
        }
        if not any(row.values()):
            continue
        records.append({col: row.get(col, "") for col in CSV_COLUMNS})
    return records


# ── Upload ────────────────────────────────────────────────────────────────────

async def _round_participants(session: AsyncSession, round_id: int) -> List[RoundParticipation]:
    result = await session.execute(
        select(RoundParticipation)
        .where(RoundParticipation.round_id == round_id)
        .options(
            selectinload(RoundParticipation.score),
            selectinload(RoundParticipation.participation).selectinload(Participation.user),
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def upload_scores(
    session: AsyncSession,
    round_id: int,
    rows: Sequence[dict],
    admin_id: Optional[int] = None,
) -> UploadReport:
    r = await require(session, Round, round_id, for_update=True)
    if r.status == RoundStatus.ARCHIVED:
        raise StateConflictError("Cannot upload scores to an archived round")
    await ensure_city_open(session, r)
    if not rows:
        raise InvalidInputError("No score rows supplied")
    if len(rows) > settings.SCORE_BATCH_LIMIT:
        raise InvalidInputError(
            f"Batch too large: {len(rows)} rows (limit {settings.SCORE_BATCH_LIMIT})"
        )

    participants = await _round_participants(session, round_id)
    by_mi_id: Dict[str, RoundParticipation] = {}
    by_email: Dict[str, RoundParticipation] = {}
    for rp in participants:
        user = rp.participation.user
        if user.mi_id:
            by_mi_id[user.mi_id] = rp
        by_email[user.email.lower()] = rp

    report = UploadReport()
    seen: set[int] = set()

    for row_no, raw in enumerate(rows, start=1):
        try:
            record = ScoreRow.model_validate(raw)
        except ValidationError as e:
            report.fail(row_no, validation_message(e))
            continue

        rp = None
        if record.mi_id:
            rp = by_mi_id.get(record.mi_id)
        if rp is None and record.email:
            rp = by_email.get(record.email)
        if rp is None:
            report.fail(row_no, f"participant not found in this round: {record.identifier}")
            continue

        if rp.id in seen:
            report.fail(row_no, f"duplicate participant in batch: {record.identifier}")
            continue
        seen.add(rp.id)

        existing = rp.score
        if existing is not None and existing.score is not None:
            report.skipped += 1
            continue

        if existing is None:
            session.add(RoundScore(
                round_participation_id=rp.id,
                score=record.score,
                notes=record.notes,
                scored_by=admin_id,
            ))
        else:
            existing.score     = record.score
            existing.notes     = record.notes
            existing.scored_by = admin_id
        report.success += 1

    await session.flush()
    if report.success:
        await recalculate_round_ranks(session, round_id)
        if r.status == RoundStatus.PENDING:
            r.status = RoundStatus.IN_PROGRESS
            await session.flush()

    logger.info(
        "Round %d upload: %d ok, %d skipped, %d failed",
        round_id, report.success, report.skipped, report.failed,
    )
    audit_service.record(
        admin_id, "round.upload_scores", "round", round_id,
        success=report.success, skipped=report.skipped, failed=report.failed,
    )
    return report


# ── Single score ──────────────────────────────────────────────────────────────

async def update_score(
    session: AsyncSession,
    round_participation_id: int,
    score: Optional[float],
    notes: Optional[str] = None,
    admin_id: Optional[int] = None,
) -> RoundScore:
    """Set (or clear with None) one participant's score, then re-rank the round."""
    rp = await require(session, RoundParticipation, round_participation_id, for_update=True)
    r = await require(session, Round, rp.round_id)
    if r.status == RoundStatus.ARCHIVED:
        raise StateConflictError("Cannot edit scores of an archived round")
    await ensure_city_open(session, r)
    if notes is not None and len(notes) > 500:
        raise InvalidInputError("notes must be at most 500 characters")

    result = await session.execute(
        select(RoundScore).where(RoundScore.round_participation_id == rp.id)
    )
    rs = result.scalar_one_or_none()
    if rs is None:
        rs = RoundScore(round_participation_id=rp.id)
        session.add(rs)
    rs.score     = score
    rs.scored_by = admin_id
    if notes is not None:
        rs.notes = notes
    await session.flush()

    await recalculate_round_ranks(session, rp.round_id)
    audit_service.record(admin_id, "round.update_score", "round", rp.round_id, round_participation_id=rp.id, score=score)
    return rs


# ── Clear ─────────────────────────────────────────────────────────────────────

async def clear_scores(
    session: AsyncSession,
    round_id: int,
    admin_id: Optional[int] = None,
) -> int:
    """Delete every score of the round in one statement. Superadmins only."""
    if not settings.is_superadmin(admin_id):
        raise PermissionDeniedError("Only a superadmin can clear round scores")
    r = await require(session, Round, round_id, for_update=True)
    await ensure_city_open(session, r)

    rp_ids = select(RoundParticipation.id).where(RoundParticipation.round_id == round_id)
    result = await session.execute(
        delete(RoundScore)
        .where(RoundScore.round_participation_id.in_(rp_ids))
        .execution_options(synchronize_session="fetch")
    )
    deleted = result.rowcount or 0

    logger.warning("Round %d: %d scores cleared by %s", round_id, deleted, admin_id)
    audit_service.record(admin_id, "round.clear_scores", "round", round_id, deleted=deleted)
    return deleted


async def count_scored(session: AsyncSession, round_id: int) -> int:
    result = await session.execute(
        select(func.count(RoundScore.id))
        .join(RoundParticipation, RoundParticipation.id == RoundScore.round_participation_id)
        .where(RoundParticipation.round_id == round_id, RoundScore.score.is_not(None))
    )
    return result.scalar_one()
