"""Data models for records, jobs, entities and signals."""

from .entities import (
    ContactKind,
    ContactPoint,
    Entity,
    EntityAddress,
    HouseholdLink,
    MatchEvidence,
    ProfessionalProfile,
    ReviewItem,
    ReviewStatus,
    new_entity_id,
)
from .jobs import FleetRunResult, JobError, JobOptions, JobStatus, ScraperJobResult
from .records import (
    CaseType,
    CourtCaseRecord,
    DocumentRecord,
    DocumentType,
    MentionRole,
    NormalizedRecord,
    PartyMention,
    ProfessionalRecord,
    PropertyRecord,
    PropertyType,
    RecordRef,
    RecordTable,
    record_from_fields,
)
from .signals import (
    ProspectScore,
    Signal,
    SignalCategory,
    SignalStrength,
    SignalType,
)

__all__ = [
    "CaseType",
    "ContactKind",
    "ContactPoint",
    "CourtCaseRecord",
    "DocumentRecord",
    "DocumentType",
    "Entity",
    "EntityAddress",
    "FleetRunResult",
    "HouseholdLink",
    "JobError",
    "JobOptions",
    "JobStatus",
    "MatchEvidence",
    "MentionRole",
    "NormalizedRecord",
    "PartyMention",
    "ProfessionalProfile",
    "ProfessionalRecord",
    "PropertyRecord",
    "PropertyType",
    "ProspectScore",
    "RecordRef",
    "RecordTable",
    "ReviewItem",
    "ReviewStatus",
    "ScraperJobResult",
    "Signal",
    "SignalCategory",
    "SignalStrength",
    "SignalType",
    "new_entity_id",
    "record_from_fields",
]
