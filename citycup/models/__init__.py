from citycup.models.base import Base, engine, AsyncSessionFactory
from citycup.models.models import (
    User,
    Competition,
    City,
    CompetitionCity,
    Participation,
    Round,
    RoundParticipation,
    RoundScore,
    Result,
    CertificateTemplate,
    Certificate,
    CompetitionStatus,
    ParticipationSource,
    RoundStatus,
    QualifiedBy,
    ResultStatus,
    TemplateStatus,
    CertificateStatus,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "User",
    "Competition",
    "City",
    "CompetitionCity",
    "Participation",
    "Round",
    "RoundParticipation",
    "RoundScore",
    "Result",
    "CertificateTemplate",
    "Certificate",
    "CompetitionStatus",
    "ParticipationSource",
    "RoundStatus",
    "QualifiedBy",
    "ResultStatus",
    "TemplateStatus",
    "CertificateStatus",
]
