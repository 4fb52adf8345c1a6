"""Signal detectors.

Each detector is a pure function over an EntityContext and the records
that just arrived for the entity. Detectors are independent of each
other; their order is not significant.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from ..models.entities import Entity
from ..models.records import (
    CaseType,
    CourtCaseRecord,
    DocumentRecord,
    DocumentType,
    NormalizedRecord,
    ProfessionalRecord,
    PropertyRecord,
    utcnow,
)
from ..models.signals import Signal, SignalStrength, SignalType

FREE_AND_CLEAR_YEARS = 15
LONG_TERM_YEARS = 20
PRE_RETIREMENT_AGES = range(59, 65)
HIGH_VALUE_MEDIAN_MULTIPLE = 2.0
HIGH_VALUE_FLOOR = 1_000_000
DISTRESS_DOCUMENT_TYPES = frozenset({DocumentType.LIS_PENDENS, DocumentType.NOTICE_OF_DEFAULT})


@dataclass
class EntityContext:
    """An entity with its linked records, as seen by the detectors."""

    entity: Entity
    properties: list[PropertyRecord] = field(default_factory=list)
    documents: list[DocumentRecord] = field(default_factory=list)
    court_cases: list[CourtCaseRecord] = field(default_factory=list)
    professional_records: list[ProfessionalRecord] = field(default_factory=list)
    demographics: dict[str, Any] | None = None
    linked_refs: set[str] = field(default_factory=set)
    as_of: date = field(default_factory=date.today)

    @property
    def owned_parcels(self) -> set[str]:
        return {p.parcel_id for p in self.properties}

    @property
    def all_records(self) -> list[NormalizedRecord]:
        return [*self.properties, *self.documents, *self.court_cases, *self.professional_records]

    def documents_for(self, parcel_id: str) -> list[DocumentRecord]:
        return [d for d in self.documents if d.parcel_id == parcel_id]

    def is_linked(self, record: NormalizedRecord) -> bool:
        return str(record.ref) in self.linked_refs


Detector = Callable[[EntityContext, list[NormalizedRecord], datetime], list[Signal]]


def _years_between(earlier: date, later: date) -> float:
    return (later - earlier).days / 365.25


def _window(start: date | None, begin_days: int, end_days: int) -> tuple[date | None, date | None]:
    if start is None:
        return None, None
    return start + timedelta(days=begin_days), start + timedelta(days=end_days)


def _signal(context: EntityContext, now: datetime, **kwargs) -> Signal:
    return Signal(entity_id=context.entity.entity_id, detected_at=now, **kwargs)


# =========================
# Equity
# =========================


def detect_mortgage_satisfied(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    """A satisfaction just arrived for an owned parcel that carried a mortgage."""
    signals = []
    owned = {p.parcel_id: p for p in context.properties}
    for record in new_records:
        if not isinstance(record, DocumentRecord) or not record.is_satisfaction:
            continue
        prop = owned.get(record.parcel_id)
        if prop is None:
            continue
        mortgages = [
            d for d in context.documents_for(prop.parcel_id)
            if d.is_mortgage
            and (
                d.recording_date is None
                or record.recording_date is None
                or d.recording_date <= record.recording_date
            )
        ]
        if not mortgages:
            continue
        recorded = record.satisfaction_date or record.recording_date
        start, end = _window(recorded, 30, 90)
        signals.append(
            _signal(
                context,
                now,
                signal_type=SignalType.MORTGAGE_SATISFIED,
                strength=SignalStrength.VERY_HIGH,
                source=record.source,
                window_start=start,
                window_end=end,
                evidence=(record.ref, prop.ref, *(m.ref for m in mortgages)),
                description=f"{record.document_type.value.title()} recorded on parcel {prop.parcel_id}",
                metadata={
                    "parcel_id": prop.parcel_id,
                    "property_value": prop.value,
                    "document_number": record.document_number,
                    "lender": record.lender_name or mortgages[-1].lender_name,
                },
            )
        )
    return signals


def detect_free_and_clear(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    signals = []
    for prop in context.properties:
        docs = context.documents_for(prop.parcel_id)
        mortgages = [d for d in docs if d.is_mortgage]
        satisfactions = [d for d in docs if d.is_satisfaction]
        if mortgages:
            if len(satisfactions) < len(mortgages):
                continue
            reason = "All recorded mortgages satisfied"
        elif prop.last_sale_date and _years_between(prop.last_sale_date, context.as_of) >= FREE_AND_CLEAR_YEARS:
            reason = f"No mortgage recorded, purchased {prop.last_sale_date.year}"
        else:
            continue
        signals.append(
            _signal(
                context,
                now,
                signal_type=SignalType.FREE_AND_CLEAR,
                strength=SignalStrength.VERY_HIGH,
                source=prop.source,
                evidence=(prop.ref, *(d.ref for d in mortgages + satisfactions)),
                description=f"{reason} on parcel {prop.parcel_id}",
                metadata={"parcel_id": prop.parcel_id, "property_value": prop.value},
            )
        )
    return signals


def detect_long_term_ownership(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    signals = []
    for prop in context.properties:
        if not prop.last_sale_date:
            continue
        years = _years_between(prop.last_sale_date, context.as_of)
        if years < LONG_TERM_YEARS:
            continue
        signals.append(
            _signal(
                context,
                now,
                signal_type=SignalType.LONG_TERM_OWNERSHIP,
                strength=SignalStrength.HIGH,
                source=prop.source,
                evidence=(prop.ref,),
                description=f"Owned parcel {prop.parcel_id} for {int(years)} years",
                metadata={"parcel_id": prop.parcel_id, "years_owned": int(years)},
            )
        )
    return signals


# =========================
# Life events
# =========================


def detect_trust_transfer(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    return [
        _signal(
            context,
            now,
            signal_type=SignalType.TRUST_TRANSFER,
            strength=SignalStrength.HIGH,
            source=doc.source,
            evidence=(doc.ref,),
            description=f"Deed {doc.document_number} transferred into {doc.grantee_name}",
            metadata={"document_number": doc.document_number, "parcel_id": doc.parcel_id},
        )
        for doc in context.documents
        if doc.document_type == DocumentType.DEED
        and "TRUST" in (doc.grantee_name or "").upper()
        and (context.is_linked(doc) or doc.parcel_id in context.owned_parcels)
    ]


def detect_recent_inheritance(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    signals = []
    for case in context.court_cases:
        if case.case_type != CaseType.PROBATE or not context.is_linked(case):
            continue
        start, end = _window(case.filing_date, 90, 365)
        signals.append(
            _signal(
                context,
                now,
                signal_type=SignalType.RECENT_INHERITANCE,
                strength=SignalStrength.VERY_HIGH,
                source=case.source,
                window_start=start,
                window_end=end,
                evidence=(case.ref,),
                description=f"Named in probate case {case.case_number}",
                metadata={"case_number": case.case_number},
            )
        )
    for doc in context.documents:
        if not context.is_linked(doc) or "ESTATE" not in (doc.grantor_name or "").upper():
            continue
        if doc.document_type not in (DocumentType.DEED, DocumentType.PROBATE):
            continue
        start, end = _window(doc.recording_date, 90, 365)
        signals.append(
            _signal(
                context,
                now,
                signal_type=SignalType.RECENT_INHERITANCE,
                strength=SignalStrength.VERY_HIGH,
                source=doc.source,
                window_start=start,
                window_end=end,
                evidence=(doc.ref,),
                description=f"Received property from {doc.grantor_name}",
                metadata={"document_number": doc.document_number, "parcel_id": doc.parcel_id},
            )
        )
    return signals


def detect_divorce_finalized(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    signals = []
    for case in context.court_cases:
        if case.case_type != CaseType.DIVORCE or not case.is_closed or not context.is_linked(case):
            continue
        start, end = _window(case.disposition_date or case.filing_date, 60, 180)
        signals.append(
            _signal(
                context,
                now,
                signal_type=SignalType.DIVORCE_FINALIZED,
                strength=SignalStrength.HIGH,
                source=case.source,
                window_start=start,
                window_end=end,
                evidence=(case.ref,),
                description=f"Divorce case {case.case_number} finalized",
                metadata={"case_number": case.case_number, "status": case.status},
            )
        )
    return signals


# =========================
# Wealth and timing
# =========================


def detect_second_home(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    if len(context.owned_parcels) < 2:
        return []
    properties = sorted(context.properties, key=lambda p: p.parcel_id)
    return [
        _signal(
            context,
            now,
            signal_type=SignalType.SECOND_HOME,
            strength=SignalStrength.HIGH,
            source=properties[0].source,
            evidence=tuple(p.ref for p in properties),
            description=f"Owns {len(context.owned_parcels)} parcels",
            metadata={"parcel_ids": [p.parcel_id for p in properties]},
        )
    ]


def detect_pre_retirement(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    age = context.entity.age_estimate
    if age is None or age not in PRE_RETIREMENT_AGES:
        return []
    return [
        _signal(
            context,
            now,
            signal_type=SignalType.PRE_RETIREMENT,
            strength=SignalStrength.HIGH,
            source="age_estimate",
            description=f"Estimated age {age}",
            metadata={"age_estimate": age},
        )
    ]


def detect_insider_sale(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    return [
        _signal(
            context,
            now,
            signal_type=SignalType.INSIDER_SALE,
            strength=SignalStrength.VERY_HIGH,
            source=filing.source,
            evidence=(filing.ref,),
            description=f"Form {filing.form_type} sale at {filing.company_name}",
            metadata={
                "company": filing.company_name,
                "shares": filing.shares,
                "total_value": filing.total_value,
            },
        )
        for filing in context.professional_records
        if filing.is_sale and context.is_linked(filing)
    ]


def detect_high_value_property(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    median = (context.demographics or {}).get("median_home_value")
    threshold = median * HIGH_VALUE_MEDIAN_MULTIPLE if median else HIGH_VALUE_FLOOR
    return [
        _signal(
            context,
            now,
            signal_type=SignalType.HIGH_VALUE_PROPERTY,
            strength=SignalStrength.MEDIUM,
            source=prop.source,
            evidence=(prop.ref,),
            description=f"Parcel {prop.parcel_id} valued at ${prop.value:,.0f}",
            metadata={"parcel_id": prop.parcel_id, "property_value": prop.value, "threshold": threshold},
        )
        for prop in context.properties
        if prop.value and prop.value >= threshold
    ]


# =========================
# Distress
# =========================


def detect_foreclosure_risk(
    context: EntityContext, new_records: list[NormalizedRecord], now: datetime
) -> list[Signal]:
    owned = context.owned_parcels
    signals = [
        _signal(
            context,
            now,
            signal_type=SignalType.FORECLOSURE_RISK,
            strength=SignalStrength.LOW,
            source=doc.source,
            evidence=(doc.ref,),
            description=f"{doc.document_type.value.replace('_', ' ').title()} on parcel {doc.parcel_id}",
            metadata={"parcel_id": doc.parcel_id, "document_number": doc.document_number},
        )
        for doc in context.documents
        if doc.document_type in DISTRESS_DOCUMENT_TYPES and doc.parcel_id in owned
    ]
    signals.extend(
        _signal(
            context,
            now,
            signal_type=SignalType.FORECLOSURE_RISK,
            strength=SignalStrength.LOW,
            source=case.source,
            evidence=(case.ref,),
            description=f"Foreclosure case {case.case_number}",
            metadata={"case_number": case.case_number},
        )
        for case in context.court_cases
        if case.case_type == CaseType.FORECLOSURE
        and (context.is_linked(case) or owned & set(case.related_properties))
    )
    return signals


DETECTORS: list[Detector] = [
    detect_mortgage_satisfied,
    detect_free_and_clear,
    detect_long_term_ownership,
    detect_trust_transfer,
    detect_recent_inheritance,
    detect_divorce_finalized,
    detect_second_home,
    detect_pre_retirement,
    detect_insider_sale,
    detect_high_value_property,
    detect_foreclosure_risk,
]


def detect(
    context: EntityContext,
    new_records: list[NormalizedRecord] | None = None,
    now: datetime | None = None,
) -> list[Signal]:
    """Run every detector.

    Args:
        context: Entity and its linked records
        new_records: Records that just arrived; all context records if None
        now: Detection timestamp

    Returns:
        Detected signals, possibly repeating ones already stored
    """
    now = now or utcnow()
    arrived = context.all_records if new_records is None else list(new_records)
    signals = []
    for detector in DETECTORS:
        signals.extend(detector(context, arrived, now))
    return signals
