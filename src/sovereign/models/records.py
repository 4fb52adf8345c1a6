"""Normalized public records.

Every source adapter maps its raw rows into one of these models. Records
are immutable once built and are keyed by (jurisdiction, natural_key).
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordTable(str, Enum):
    """Record tables, one per normalized record variant."""

    PROPERTIES = "properties"
    DOCUMENTS = "documents"
    COURT_CASES = "court_cases"
    PROFESSIONAL_RECORDS = "professional_records"


class PropertyType(str, Enum):
    SINGLE_FAMILY = "single_family"
    CONDO = "condo"
    MULTI_FAMILY = "multi_family"
    COMMERCIAL = "commercial"
    LAND = "land"
    OTHER = "other"


class DocumentType(str, Enum):
    """Recorder document types."""

    DEED = "deed"
    MORTGAGE = "mortgage"
    SATISFACTION = "satisfaction"
    RECONVEYANCE = "reconveyance"
    RELEASE = "release"
    LIS_PENDENS = "lis_pendens"
    PROBATE = "probate"
    DIVORCE = "divorce"
    LIEN = "lien"
    ASSIGNMENT = "assignment"
    NOTICE_OF_DEFAULT = "notice_of_default"
    OTHER = "other"


SATISFACTION_TYPES = frozenset(
    {DocumentType.SATISFACTION, DocumentType.RECONVEYANCE, DocumentType.RELEASE}
)


class CaseType(str, Enum):
    PROBATE = "probate"
    DIVORCE = "divorce"
    FORECLOSURE = "foreclosure"
    BANKRUPTCY = "bankruptcy"
    EVICTION = "eviction"
    CIVIL = "civil"
    OTHER = "other"


class MentionRole(str, Enum):
    """The part a named party plays on a record."""

    OWNER = "owner"
    GRANTOR = "grantor"
    GRANTEE = "grantee"
    PARTY = "party"
    INSIDER = "insider"


class RecordRef(BaseModel):
    """Pointer to a stored record."""

    model_config = ConfigDict(frozen=True)

    table: RecordTable
    jurisdiction: str
    natural_key: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.jurisdiction, self.natural_key)

    def __str__(self) -> str:
        return f"{self.table.value}:{self.jurisdiction}:{self.natural_key}"


class PartyMention(BaseModel):
    """One named party appearing on a record.

    A mention is the unit of resolution. Joint owners recorded as a single
    string ("SMITH JOHN & MARY") stay one mention here and are split into
    separate identities by the resolution engine.
    """

    model_config = ConfigDict(frozen=True)

    ref: RecordRef
    slot: int
    raw_name: str
    role: MentionRole
    # "last_first" for county indexes, "natural" for "First Last", "auto" to guess
    name_order: str = "auto"
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    phones: tuple[str, ...] = ()
    emails: tuple[str, ...] = ()
    parcel_ids: tuple[str, ...] = ()
    case_numbers: tuple[str, ...] = ()
    company: str | None = None
    title: str | None = None
    observed_on: date | None = None
    source: str = "unknown"


class NormalizedRecord(BaseModel):
    """Base for all normalized records."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    TABLE: ClassVar[RecordTable]

    jurisdiction: str
    source: str = "unknown"
    scraped_at: datetime = Field(default_factory=utcnow)

    @property
    def natural_key(self) -> str:
        raise NotImplementedError

    @property
    def key(self) -> tuple[str, str]:
        return (self.jurisdiction, self.natural_key)

    @property
    def ref(self) -> RecordRef:
        return RecordRef(
            table=self.TABLE, jurisdiction=self.jurisdiction, natural_key=self.natural_key
        )

    def mentions(self) -> list[PartyMention]:
        return []

    def to_fields(self) -> dict:
        """Serialize for the store (JSON-compatible)."""
        return self.model_dump(mode="json")


class PropertyRecord(NormalizedRecord):
    """An assessor parcel."""

    TABLE: ClassVar[RecordTable] = RecordTable.PROPERTIES

    parcel_id: str
    county: str | None = None
    state: str | None = None
    owner_name: str
    owner_mailing_address: str | None = None
    property_address: str | None = None
    property_city: str | None = None
    property_zip: str | None = None
    assessed_value: float | None = None
    market_value: float | None = None
    land_value: float | None = None
    improvement_value: float | None = None
    year_built: int | None = None
    square_feet: int | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    property_type: PropertyType = PropertyType.OTHER
    tax_amount: float | None = None
    homestead_exemption: bool = False
    last_sale_date: date | None = None
    last_sale_price: float | None = None

    @property
    def natural_key(self) -> str:
        return self.parcel_id

    @property
    def value(self) -> float | None:
        return self.market_value or self.assessed_value

    def mentions(self) -> list[PartyMention]:
        if not self.owner_name:
            return []
        return [
            PartyMention(
                ref=self.ref,
                slot=0,
                raw_name=self.owner_name,
                role=MentionRole.OWNER,
                name_order="last_first",
                address=self.property_address,
                city=self.property_city,
                state=self.state,
                zip_code=self.property_zip,
                parcel_ids=(self.parcel_id,),
                observed_on=self.last_sale_date,
                source=self.source,
            )
        ]


class DocumentRecord(NormalizedRecord):
    """A recorder document (deed, mortgage, satisfaction, ...)."""

    TABLE: ClassVar[RecordTable] = RecordTable.DOCUMENTS

    document_number: str
    document_type: DocumentType = DocumentType.OTHER
    recording_date: date | None = None
    book_page: str | None = None
    grantor_name: str | None = None
    grantee_name: str | None = None
    property_address: str | None = None
    property_city: str | None = None
    property_zip: str | None = None
    parcel_id: str | None = None
    document_amount: float | None = None
    lender_name: str | None = None
    original_loan_date: date | None = None
    satisfaction_date: date | None = None
    case_number: str | None = None

    @property
    def natural_key(self) -> str:
        return self.document_number

    @property
    def is_satisfaction(self) -> bool:
        return self.document_type in SATISFACTION_TYPES

    @property
    def is_mortgage(self) -> bool:
        return self.document_type == DocumentType.MORTGAGE

    def mentions(self) -> list[PartyMention]:
        mentions = []
        parcels = (self.parcel_id,) if self.parcel_id else ()
        cases = (self.case_number,) if self.case_number else ()
        for slot, (name, role) in enumerate(
            [(self.grantor_name, MentionRole.GRANTOR), (self.grantee_name, MentionRole.GRANTEE)]
        ):
            if not name:
                continue
            # Lenders appear as grantor on mortgages and satisfactions
            if self.lender_name and name.strip().upper() == self.lender_name.strip().upper():
                continue
            mentions.append(
                PartyMention(
                    ref=self.ref,
                    slot=slot,
                    raw_name=name,
                    role=role,
                    name_order="auto",
                    address=self.property_address,
                    city=self.property_city,
                    zip_code=self.property_zip,
                    parcel_ids=parcels,
                    case_numbers=cases,
                    observed_on=self.recording_date,
                    source=self.source,
                )
            )
        return mentions


class CourtCaseRecord(NormalizedRecord):
    """A court case index entry."""

    TABLE: ClassVar[RecordTable] = RecordTable.COURT_CASES

    case_number: str
    case_type: CaseType = CaseType.OTHER
    filing_date: date | None = None
    party_names: list[str] = Field(default_factory=list)
    status: str | None = None
    next_hearing_date: date | None = None
    disposition_date: date | None = None
    related_properties: list[str] = Field(default_factory=list)

    @property
    def natural_key(self) -> str:
        return self.case_number

    @property
    def is_closed(self) -> bool:
        status = (self.status or "").lower()
        return self.disposition_date is not None or status in {
            "closed", "final", "disposed", "dismissed", "judgment entered",
        }

    def mentions(self) -> list[PartyMention]:
        return [
            PartyMention(
                ref=self.ref,
                slot=slot,
                raw_name=name,
                role=MentionRole.PARTY,
                name_order="auto",
                parcel_ids=tuple(self.related_properties),
                case_numbers=(self.case_number,),
                observed_on=self.filing_date,
                source=self.source,
            )
            for slot, name in enumerate(self.party_names)
            if name and name.strip()
        ]


class ProfessionalRecord(NormalizedRecord):
    """An insider filing (SEC Form 4) naming a person at a company."""

    TABLE: ClassVar[RecordTable] = RecordTable.PROFESSIONAL_RECORDS

    accession_number: str
    person_name: str
    company_name: str
    company_cik: str | None = None
    title: str | None = None
    city: str | None = None
    state: str | None = None
    form_type: str = "4"
    filing_date: date | None = None
    transaction_type: str | None = None
    shares: float | None = None
    price_per_share: float | None = None
    total_value: float | None = None

    @property
    def natural_key(self) -> str:
        return self.accession_number

    @property
    def is_sale(self) -> bool:
        return (self.transaction_type or "").upper() in {"S", "SALE", "SELL"}

    def mentions(self) -> list[PartyMention]:
        return [
            PartyMention(
                ref=self.ref,
                slot=0,
                raw_name=self.person_name,
                role=MentionRole.INSIDER,
                name_order="last_first",
                city=self.city,
                state=self.state,
                company=self.company_name,
                title=self.title,
                observed_on=self.filing_date,
                source=self.source,
            )
        ]


RECORD_MODELS: dict[RecordTable, type[NormalizedRecord]] = {
    RecordTable.PROPERTIES: PropertyRecord,
    RecordTable.DOCUMENTS: DocumentRecord,
    RecordTable.COURT_CASES: CourtCaseRecord,
    RecordTable.PROFESSIONAL_RECORDS: ProfessionalRecord,
}


def record_from_fields(table: RecordTable | str, fields: dict) -> NormalizedRecord:
    """Rebuild a record model from stored fields."""
    model = RECORD_MODELS[RecordTable(table)]
    return model.model_validate(fields)
