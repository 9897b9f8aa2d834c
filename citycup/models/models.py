"""
ORM models for the CityCup competition & certificate system.

Domain overview
---------------
Competition  — a multi-city event
  └─ CompetitionCity — a city (or "branch", e.g. a grand-finale venue) hosting a track
       └─ Round — one scored stage of the track (round_number 1, 2, … ; one finale)
            └─ RoundParticipation — a Participation entered into the round
                 └─ RoundScore — score, rank and winner flags
Participation — (user, competition, city) registration
  ├─ Result — outcome written when the city track is finished
  └─ Certificate — (participation, template) issued document record
"""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from citycup.models.base import Base

# ─────────────────────────── Constants ────────────────────────────────────────

class CompetitionStatus:
    DRAFT     = "DRAFT"      # Being configured
    ACTIVE    = "ACTIVE"     # Rounds are running
    COMPLETED = "COMPLETED"  # Every city track finished
    CANCELLED = "CANCELLED"
    ARCHIVED  = "ARCHIVED"

    TRANSITIONS: dict[str, list[str]] = {
        DRAFT:     [ACTIVE, CANCELLED],
        ACTIVE:    [COMPLETED, CANCELLED],
        COMPLETED: [ARCHIVED],
        CANCELLED: [],
        ARCHIVED:  [],
    }

    EMOJI = {
        DRAFT:     "📝",
        ACTIVE:    "🔴",
        COMPLETED: "🏆",
        CANCELLED: "🚫",
        ARCHIVED:  "🗄",
    }


class ParticipationSource:
    USER_SELF   = "USER_SELF"
    ADMIN_ADDED = "ADMIN_ADDED"


class RoundStatus:
    PENDING     = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED   = "COMPLETED"
    ARCHIVED    = "ARCHIVED"

    EMOJI = {
        PENDING:     "⚪️",
        IN_PROGRESS: "🔴",
        COMPLETED:   "✅",
        ARCHIVED:    "🗄",
    }


class QualifiedBy:
    AUTOMATIC = "AUTOMATIC"   # promoted / imported
    MANUAL    = "MANUAL"      # added directly by an admin


class ResultStatus:
    PARTICIPATED = "PARTICIPATED"
    FINALIST     = "FINALIST"
    WINNER       = "WINNER"

    # Higher is better; used when a participation holds results from several tracks
    WEIGHT = {PARTICIPATED: 0, FINALIST: 1, WINNER: 2}


class TemplateStatus:
    ACTIVE   = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class CertificateStatus:
    GENERATED = "GENERATED"
    RELEASED  = "RELEASED"
    REVOKED   = "REVOKED"

    EMOJI = {
        GENERATED: "📄",
        RELEASED:  "✅",
        REVOKED:   "⛔️",
    }


# ─────────────────────────── Models ───────────────────────────────────────────

class User(Base):
    """Participant identity (owned by the identity provider, mirrored here)."""
    __tablename__ = "users"

    id:          Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, index=True, nullable=True)
    full_name:   Mapped[str]           = mapped_column(String(255))
    email:       Mapped[str]           = mapped_column(String(255), unique=True, index=True)
    mi_id:       Mapped[Optional[str]] = mapped_column(String(50), unique=True, index=True, nullable=True)
    created_at:  Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    participations: Mapped[List["Participation"]] = relationship(back_populates="user")


class Competition(Base):
    __tablename__ = "competitions"

    id:                Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:              Mapped[str]           = mapped_column(String(255))
    description:       Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    status:            Mapped[str]           = mapped_column(String(20), default=CompetitionStatus.DRAFT)
    registration_open: Mapped[bool]          = mapped_column(Boolean, default=False)
    # Status held before the last city finish auto-completed the competition
    pre_completion_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at:        Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    cities: Mapped[List["CompetitionCity"]] = relationship(
        back_populates="competition", cascade="all, delete-orphan"
    )

    @property
    def status_emoji(self) -> str:
        return CompetitionStatus.EMOJI.get(self.status, "❓")


class City(Base):
    __tablename__ = "cities"

    id:   Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)


class CompetitionCity(Base):
    """A city track of a competition. Holds the Open/Finished state."""
    __tablename__ = "competition_cities"
    __table_args__ = (UniqueConstraint("competition_id", "city_id", name="uq_competition_city"),)

    id:                Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id:    Mapped[int]                = mapped_column(ForeignKey("competitions.id", ondelete="CASCADE"))
    city_id:           Mapped[int]                = mapped_column(ForeignKey("cities.id"))
    event_date:        Mapped[Optional[date]]     = mapped_column(Date, nullable=True)
    registration_open: Mapped[bool]               = mapped_column(Boolean, default=True)
    is_finished:       Mapped[bool]               = mapped_column(Boolean, default=False)
    finished_at:       Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    competition: Mapped["Competition"] = relationship(back_populates="cities")
    city:        Mapped["City"]        = relationship()


class Participation(Base):
    __tablename__ = "participations"
    __table_args__ = (
        UniqueConstraint("user_id", "competition_id", "city_id", name="uq_participation"),
    )

    id:             Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:        Mapped[int]      = mapped_column(ForeignKey("users.id"))
    competition_id: Mapped[int]      = mapped_column(ForeignKey("competitions.id"))
    city_id:        Mapped[int]      = mapped_column(ForeignKey("cities.id"))
    source:         Mapped[str]      = mapped_column(String(20), default=ParticipationSource.USER_SELF)
    registered_at:  Mapped[datetime] = mapped_column(DateTime, default=func.now())

    user:        Mapped["User"]        = relationship(back_populates="participations")
    competition: Mapped["Competition"] = relationship()
    city:        Mapped["City"]        = relationship()


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("competition_id", "city_id", "round_number", name="uq_round_number"),
    )

    id:             Mapped[int]            = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int]            = mapped_column(ForeignKey("competitions.id"))
    city_id:        Mapped[int]            = mapped_column(ForeignKey("cities.id"))
    round_number:   Mapped[int]            = mapped_column(Integer)
    name:           Mapped[str]            = mapped_column(String(255))
    round_date:     Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status:         Mapped[str]            = mapped_column(String(20), default=RoundStatus.PENDING)
    is_finale:      Mapped[bool]           = mapped_column(Boolean, default=False)
    created_at:     Mapped[datetime]       = mapped_column(DateTime, default=func.now())

    city:         Mapped["City"]                     = relationship()
    competition:  Mapped["Competition"]              = relationship()
    participants: Mapped[List["RoundParticipation"]] = relationship(
        back_populates="round", cascade="all, delete-orphan"
    )

    @property
    def status_emoji(self) -> str:
        return RoundStatus.EMOJI.get(self.status, "❓")

    @property
    def display_name(self) -> str:
        suffix = " 🏁" if self.is_finale else ""
        return f"R{self.round_number} · {self.name}{suffix}"


class RoundParticipation(Base):
    __tablename__ = "round_participations"
    __table_args__ = (
        UniqueConstraint("round_id", "participation_id", name="uq_round_participation"),
    )

    id:               Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    round_id:         Mapped[int]           = mapped_column(ForeignKey("rounds.id", ondelete="CASCADE"))
    participation_id: Mapped[int]           = mapped_column(ForeignKey("participations.id"))
    qualified_by:     Mapped[str]           = mapped_column(String(20), default=QualifiedBy.MANUAL)
    added_by:         Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at:       Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    round:         Mapped["Round"]                = relationship(back_populates="participants")
    participation: Mapped["Participation"]        = relationship()
    score:         Mapped[Optional["RoundScore"]] = relationship(
        back_populates="round_participation", cascade="all, delete-orphan", uselist=False
    )


class RoundScore(Base):
    __tablename__ = "round_scores"

    id:                     Mapped[int]             = mapped_column(Integer, primary_key=True, autoincrement=True)
    round_participation_id: Mapped[int]             = mapped_column(
        ForeignKey("round_participations.id", ondelete="CASCADE"), unique=True
    )
    score:           Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rank_in_round:   Mapped[Optional[int]]   = mapped_column(Integer, nullable=True)
    is_winner:       Mapped[bool]            = mapped_column(Boolean, default=False)
    winner_position: Mapped[Optional[int]]   = mapped_column(Integer, nullable=True)
    notes:           Mapped[Optional[str]]   = mapped_column(String(500), nullable=True)
    scored_by:       Mapped[Optional[int]]   = mapped_column(BigInteger, nullable=True)
    updated_at:      Mapped[datetime]        = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    round_participation: Mapped["RoundParticipation"] = relationship(back_populates="score")


class Result(Base):
    """
    Outcome of a participation in one finished city track.
    Keyed by (participation, city) so a city winner who also competes in a
    grand-finale branch keeps both outcomes independently.
    """
    __tablename__ = "results"
    __table_args__ = (UniqueConstraint("participation_id", "city_id", name="uq_result_track"),)

    id:               Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    participation_id: Mapped[int]           = mapped_column(ForeignKey("participations.id"))
    competition_id:   Mapped[int]           = mapped_column(ForeignKey("competitions.id"))
    city_id:          Mapped[int]           = mapped_column(ForeignKey("cities.id"))   # finished track
    result_status:    Mapped[str]           = mapped_column(String(20))
    position:         Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    locked:           Mapped[bool]          = mapped_column(Boolean, default=True)
    created_at:       Mapped[datetime]      = mapped_column(DateTime, default=func.now())

    participation: Mapped["Participation"] = relationship()


class CertificateTemplate(Base):
    __tablename__ = "certificate_templates"

    id:             Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:           Mapped[str]           = mapped_column(String(255))
    status:         Mapped[str]           = mapped_column(String(20), default=TemplateStatus.ACTIVE)
    competition_id: Mapped[Optional[int]] = mapped_column(ForeignKey("competitions.id"), nullable=True)
    # Field types placed on the template, e.g. ["full_name", "city_name", "position"]
    fields:         Mapped[list]          = mapped_column(JSON, default=list)
    created_at:     Mapped[datetime]      = mapped_column(DateTime, default=func.now())


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint("participation_id", "template_id", name="uq_certificate_template"),
    )

    id:                 Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    participation_id:   Mapped[int]                = mapped_column(ForeignKey("participations.id"))
    template_id:        Mapped[int]                = mapped_column(ForeignKey("certificate_templates.id"))
    certificate_number: Mapped[str]                = mapped_column(String(64), unique=True)
    status:             Mapped[str]                = mapped_column(String(20), default=CertificateStatus.GENERATED)
    generated_at:       Mapped[datetime]           = mapped_column(DateTime, default=func.now())
    generated_by:       Mapped[Optional[int]]      = mapped_column(BigInteger, nullable=True)
    released_at:        Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    released_by:        Mapped[Optional[int]]      = mapped_column(BigInteger, nullable=True)
    revoked_at:         Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoke_reason:      Mapped[Optional[str]]      = mapped_column(String(500), nullable=True)

    participation: Mapped["Participation"]       = relationship()
    template:      Mapped["CertificateTemplate"] = relationship()

    @property
    def status_emoji(self) -> str:
        return CertificateStatus.EMOJI.get(self.status, "❓")
