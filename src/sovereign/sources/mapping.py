"""Free-text type discriminators mapped onto record enums."""

import re

from ..models.records import CaseType, DocumentType, PropertyType


def map_property_type(value: str | None) -> PropertyType:
    normalized = (value or "").upper()

    if "SINGLE" in normalized or "SFR" in normalized:
        return PropertyType.SINGLE_FAMILY
    if "CONDO" in normalized:
        return PropertyType.CONDO
    if any(word in normalized for word in ("MULTI", "DUPLEX", "TRIPLEX")):
        return PropertyType.MULTI_FAMILY
    if any(word in normalized for word in ("COMMERCIAL", "OFFICE", "RETAIL")):
        return PropertyType.COMMERCIAL
    if "LAND" in normalized or "VACANT" in normalized:
        return PropertyType.LAND
    return PropertyType.OTHER


def map_case_type(value: str | None) -> CaseType:
    normalized = (value or "").lower()

    if "probate" in normalized or "estate" in normalized:
        return CaseType.PROBATE
    if "divorce" in normalized or "dissolution" in normalized:
        return CaseType.DIVORCE
    if "bankruptcy" in normalized:
        return CaseType.BANKRUPTCY
    if "eviction" in normalized or "unlawful" in normalized:
        return CaseType.EVICTION
    if "foreclosure" in normalized or "lis pendens" in normalized:
        return CaseType.FORECLOSURE
    if "civil" in normalized:
        return CaseType.CIVIL
    return CaseType.OTHER


_DOCUMENT_PATTERNS: list[tuple[re.Pattern, DocumentType]] = [
    (re.compile(r"RECONVEY"), DocumentType.RECONVEYANCE),
    (re.compile(r"SATISF|\bSAT\b"), DocumentType.SATISFACTION),
    (re.compile(r"RELEASE|\bREL\b"), DocumentType.RELEASE),
    (re.compile(r"LIS PENDENS|\bLP\b"), DocumentType.LIS_PENDENS),
    (re.compile(r"NOTICE OF DEFAULT|\bNOD\b"), DocumentType.NOTICE_OF_DEFAULT),
    (re.compile(r"ASSIGN"), DocumentType.ASSIGNMENT),
    (re.compile(r"MORTGAGE|DEED OF TRUST|\bMTG\b|\bDOT\b"), DocumentType.MORTGAGE),
    (re.compile(r"LIEN"), DocumentType.LIEN),
    (re.compile(r"PROBATE|LETTERS OF ADMIN"), DocumentType.PROBATE),
    (re.compile(r"DIVORCE|DISSOLUTION"), DocumentType.DIVORCE),
    (re.compile(r"DEED|\bWD\b|\bQCD\b"), DocumentType.DEED),
]


def map_document_type(value: str | None) -> DocumentType:
    """Map recorder instrument labels ("SAT MTG", "DEED OF TRUST", ...) to DocumentType."""
    normalized = (value or "").upper().replace("_", " ").strip()
    try:
        return DocumentType(normalized.lower().replace(" ", "_"))
    except ValueError:
        pass
    for pattern, document_type in _DOCUMENT_PATTERNS:
        if pattern.search(normalized):
            return document_type
    return DocumentType.OTHER
