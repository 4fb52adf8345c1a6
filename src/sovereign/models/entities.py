"""Canonical entity models produced by the resolution engine."""

import uuid
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .records import PartyMention, RecordRef, utcnow


def new_entity_id() -> str:
    """Generate a fresh entity id. Ids are never reused."""
    return f"ENT-{uuid.uuid4().hex[:12].upper()}"


class EntityAddress(BaseModel):
    """An address an entity has been seen at, with its validity range."""

    line: str
    street_key: str
    unit: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    source: str = "unknown"


class ContactKind(str, Enum):
    PHONE = "phone"
    EMAIL = "email"


class ContactPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ContactKind
    value: str
    source: str
    score: float | None = None


class ProfessionalProfile(BaseModel):
    company: str
    title: str | None = None
    city: str | None = None
    state: str | None = None


class MatchEvidence(BaseModel):
    """One contributing match: a mention linked to the entity by a layer."""

    model_config = ConfigDict(frozen=True)

    mention_key: str
    ref: RecordRef
    layer: str
    confidence: float = Field(ge=0.0, le=1.0)
    matched_at: datetime = Field(default_factory=utcnow)


class Entity(BaseModel):
    """A resolved identity.

    Merged-away entities keep their row with ``merged_into`` set so that
    external references can still be followed to the survivor.
    """

    entity_id: str = Field(default_factory=new_entity_id)
    canonical_name: str
    is_organization: bool = False
    name_variants: list[str] = Field(default_factory=list)
    # Parsed identity names as FIRST|MIDDLE|LAST|ORG strings
    name_keys: list[str] = Field(default_factory=list)
    addresses: list[EntityAddress] = Field(default_factory=list)
    contact_points: list[ContactPoint] = Field(default_factory=list)
    age_estimate: int | None = None
    professional: ProfessionalProfile | None = None
    parcel_ids: list[str] = Field(default_factory=list)
    case_numbers: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    evidence: list[MatchEvidence] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    prospect_score: float | None = None
    merged_into: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def confidence_score(self) -> int:
        """Confidence on the 0-100 scale."""
        return round(self.confidence * 100)

    @computed_field
    @property
    def source_count(self) -> int:
        return len(self.sources)

    @property
    def is_redirect(self) -> bool:
        return self.merged_into is not None

    @property
    def records(self) -> list[RecordRef]:
        """Distinct records contributing to this entity."""
        seen: dict[str, RecordRef] = {}
        for ev in self.evidence:
            seen.setdefault(str(ev.ref), ev.ref)
        return list(seen.values())

    def add_variant(self, raw_name: str) -> None:
        name = raw_name.strip()
        if name and name not in self.name_variants:
            self.name_variants.append(name)

    def add_name_key(self, name_key: str) -> None:
        if name_key not in self.name_keys:
            self.name_keys.append(name_key)

    def add_source(self, source: str) -> None:
        if source not in self.sources:
            self.sources.append(source)

    def add_contact(self, contact: ContactPoint) -> None:
        if all(
            (c.kind, c.value) != (contact.kind, contact.value) for c in self.contact_points
        ):
            self.contact_points.append(contact)

    def phones(self) -> set[str]:
        return {c.value for c in self.contact_points if c.kind == ContactKind.PHONE}

    def emails(self) -> set[str]:
        return {c.value for c in self.contact_points if c.kind == ContactKind.EMAIL}

    def add_address(self, address: EntityAddress) -> None:
        """Add or widen an address, keeping the list most-recent first."""
        for existing in self.addresses:
            if existing.street_key == address.street_key and existing.unit == address.unit:
                if address.valid_from and (
                    existing.valid_from is None or address.valid_from < existing.valid_from
                ):
                    existing.valid_from = address.valid_from
                if address.valid_to and (
                    existing.valid_to is None or address.valid_to > existing.valid_to
                ):
                    existing.valid_to = address.valid_to
                break
        else:
            self.addresses.append(address)
        self.addresses.sort(
            key=lambda a: (a.valid_to or a.valid_from or date.min, a.valid_from or date.min),
            reverse=True,
        )


class HouseholdLink(BaseModel):
    """Weak HOUSEHOLD edge between two entities. Never implies a merge."""

    entity_a: str
    entity_b: str
    relation: str = "HOUSEHOLD"
    surname: str | None = None
    address: str | None = None
    confidence: float = 0.85
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def between(cls, first: str, second: str, **kwargs) -> "HouseholdLink":
        a, b = sorted((first, second))
        return cls(entity_a=a, entity_b=b, **kwargs)

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_a, self.entity_b)

    def other(self, entity_id: str) -> str:
        return self.entity_b if entity_id == self.entity_a else self.entity_a


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewItem(BaseModel):
    """A sub-threshold match waiting for a human decision."""

    item_id: str = Field(default_factory=lambda: f"REV-{uuid.uuid4().hex[:10].upper()}")
    mention: PartyMention
    identity_index: int = 0
    identity_name: str
    candidate_entity_id: str
    confidence: float
    reason: str
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None
    resolved_entity_id: str | None = None
