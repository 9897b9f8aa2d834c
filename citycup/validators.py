"""
Input validation — Pydantic v2 models.

Used to validate operator-supplied payloads (CSV rows, winner picks, revoke
reasons, …) before anything touches the database. Services convert
pydantic.ValidationError into InvalidInputError via `validation_message`.
"""
from __future__ import annotations

import math
from datetime import date
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator, model_validator


def validation_message(exc: ValidationError) -> str:
    """Flatten a pydantic error into one human-readable line."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "__root__")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


class ScoreRow(BaseModel):
    """
    One record of a score upload.

    Attributes
    ----------
    mi_id : participant membership id (preferred identifier)
    email : participant email (used when mi_id is absent)
    score : numeric score, finite
    notes : optional judge notes (≤500 chars)
    """

    mi_id: Optional[str] = None
    email: Optional[str] = None
    score: float
    notes: Optional[str] = None

    @field_validator("mi_id", "email", "notes", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @field_validator("score", mode="before")
    @classmethod
    def parse_score(cls, v):
        if isinstance(v, str):
            v = v.strip().replace(",", ".")
            if not v:
                raise ValueError("score is empty")
        return v

    @field_validator("score")
    @classmethod
    def finite_score(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("score must be a finite number")
        return v

    @field_validator("notes")
    @classmethod
    def notes_length(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > 500:
            raise ValueError("notes must be at most 500 characters")
        return v

    @model_validator(mode="after")
    def require_identifier(self) -> "ScoreRow":
        if not self.mi_id and not self.email:
            raise ValueError("row missing both email and mi_id")
        return self

    @property
    def identifier(self) -> str:
        return self.mi_id or self.email or ""


class WinnerPick(BaseModel):
    round_participation_id: int
    position: int

    @field_validator("round_participation_id", "position")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v


class CitySelection(BaseModel):
    """How many winners to import from one source city."""

    city_id: int
    count: int

    @field_validator("count")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("count must not be negative")
        return v


class RevokeReason(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("a revoke reason is required")
        if len(v) > 500:
            raise ValueError("reason must be at most 500 characters")
        return v


class RoundData(BaseModel):
    """Round creation / update payload."""

    name: str
    is_finale: bool = False
    round_date: Optional[date] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > 255:
            raise ValueError("round name must contain 1 to 255 characters")
        return v
