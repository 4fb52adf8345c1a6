"""Match layers for entity resolution.

Each layer is a pure function from (identity, candidates) to an optional
match. The engine runs them in cascade order and stops at the first
layer that produces a match:

1. Exact name + normalized address          -> 0.99
2. Exact name + same street/ZIP, other unit -> 0.95
3. Public records chain (shared parcel/case) -> 0.94
4. Fuzzy name (Levenshtein <= 2) + address  -> 0.92
5. Nickname + shared phone or email         -> 0.90
6. Professional identity (company/title)    -> 0.88
7. Household (surname + address)            -> 0.85, relation only

Sub-threshold similarity is scored separately for the review queue.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field
from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from ..models.entities import Entity
from ..models.records import PartyMention
from .addresses import NormalizedAddress, address_key, normalize_address, street_zip_key
from .names import ParsedName, expand_initial, first_names_compatible


class MatchLayer(str, Enum):
    EXACT = "exact_name_address"
    NAME_ZIP = "name_street_zip"
    RECORDS_CHAIN = "public_records_chain"
    FUZZY = "fuzzy_name_address"
    NICKNAME_CONTACT = "nickname_contact"
    PROFESSIONAL = "professional_identity"
    HOUSEHOLD = "household"
    SEED = "seed"
    REVIEW = "manual_review"


LAYER_CONFIDENCE: dict[MatchLayer, float] = {
    MatchLayer.EXACT: 0.99,
    MatchLayer.NAME_ZIP: 0.95,
    MatchLayer.RECORDS_CHAIN: 0.94,
    MatchLayer.FUZZY: 0.92,
    MatchLayer.NICKNAME_CONTACT: 0.90,
    MatchLayer.PROFESSIONAL: 0.88,
    MatchLayer.HOUSEHOLD: 0.85,
}

# Confidence of an entity backed only by the mention that created it
SEED_CONFIDENCE = 0.80

# Review band: below the household layer, at or above the floor
REVIEW_CEILING = 0.85
DEFAULT_REVIEW_FLOOR = 0.70

MAX_NAME_DISTANCE = 2


def _normalize_contact(value: str) -> str:
    value = value.strip().lower()
    if "@" in value:
        return value
    digits = "".join(ch for ch in value if ch.isdigit())
    return digits[-10:] if len(digits) >= 10 else digits


def _company_key(company: str | None) -> str | None:
    if not company:
        return None
    return " ".join(company.upper().replace(",", " ").replace(".", " ").split())


@dataclass
class Identity:
    """One identity from a mention, ready for matching."""

    mention: PartyMention
    index: int
    name: ParsedName
    address: NormalizedAddress | None = None
    phones: set[str] = field(default_factory=set)
    emails: set[str] = field(default_factory=set)
    parcel_ids: set[str] = field(default_factory=set)
    case_numbers: set[str] = field(default_factory=set)
    company: str | None = None
    title: str | None = None

    @classmethod
    def from_mention(cls, mention: PartyMention, index: int, name: ParsedName) -> "Identity":
        return cls(
            mention=mention,
            index=index,
            name=name,
            address=normalize_address(
                mention.address, mention.city, mention.state, mention.zip_code
            ),
            phones={_normalize_contact(p) for p in mention.phones if p},
            emails={_normalize_contact(e) for e in mention.emails if e},
            parcel_ids=set(mention.parcel_ids),
            case_numbers=set(mention.case_numbers),
            company=_company_key(mention.company),
            title=mention.title.upper().strip() if mention.title else None,
        )

    @property
    def mention_key(self) -> str:
        return mention_key(self.mention, self.index)


def mention_key(mention: PartyMention, index: int) -> str:
    """Stable key of one identity within a mention."""
    return f"{mention.ref}#{mention.slot}.{index}"


@dataclass
class EntityCandidate:
    """Comparable view of an existing entity."""

    entity_id: str
    names: list[ParsedName]
    address_keys: set[str] = field(default_factory=set)
    street_zip_keys: set[str] = field(default_factory=set)
    zip_codes: set[str] = field(default_factory=set)
    phones: set[str] = field(default_factory=set)
    emails: set[str] = field(default_factory=set)
    parcel_ids: set[str] = field(default_factory=set)
    case_numbers: set[str] = field(default_factory=set)
    company: str | None = None
    title: str | None = None
    state: str | None = None

    @classmethod
    def from_entity(cls, entity: Entity) -> "EntityCandidate":
        candidate = cls(
            entity_id=entity.entity_id,
            names=[ParsedName.from_storage_key(k) for k in entity.name_keys],
            phones={_normalize_contact(p) for p in entity.phones()},
            emails={_normalize_contact(e) for e in entity.emails()},
            parcel_ids=set(entity.parcel_ids),
            case_numbers=set(entity.case_numbers),
        )
        for address in entity.addresses:
            candidate.address_keys.add(
                address_key(address.street_key, address.unit, address.zip_code, address.city)
            )
            sz = street_zip_key(address.street_key, address.zip_code, address.city)
            if sz:
                candidate.street_zip_keys.add(sz)
            if address.zip_code:
                candidate.zip_codes.add(address.zip_code)
        if entity.professional:
            candidate.company = _company_key(entity.professional.company)
            candidate.title = (entity.professional.title or "").upper().strip() or None
            candidate.state = entity.professional.state
        return candidate

    @property
    def surnames(self) -> set[str]:
        return {n.last for n in self.names}

    @property
    def name_keys(self) -> set[str]:
        return {n.key for n in self.names}


class LayerMatch(BaseModel):
    """Result of a layer: the matched entity and any tied alternatives."""

    entity_id: str
    layer: MatchLayer
    confidence: float = Field(ge=0.0, le=1.0)
    alternatives: list[str] = Field(default_factory=list)

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.alternatives)


Layer = Callable[[Identity, list[EntityCandidate]], LayerMatch | None]


def _pick(layer: MatchLayer, hits: list[EntityCandidate]) -> LayerMatch | None:
    if not hits:
        return None
    ids = sorted({h.entity_id for h in hits})
    return LayerMatch(
        entity_id=ids[0],
        layer=layer,
        confidence=LAYER_CONFIDENCE[layer],
        alternatives=ids[1:],
    )


def _same_person_name(name: ParsedName, candidate: EntityCandidate) -> bool:
    return any(
        n.last == name.last
        and n.is_organization == name.is_organization
        and (name.is_organization or first_names_compatible(n.first, name.first))
        for n in candidate.names
    )


# =========================
# Layers
# =========================


def exact_name_address(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    if identity.address is None:
        return None
    key = identity.address.full_key
    hits = [
        c for c in candidates
        if identity.name.key in c.name_keys and key in c.address_keys
    ]
    return _pick(MatchLayer.EXACT, hits)


def name_street_zip(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    if identity.address is None or identity.address.street_zip_key is None:
        return None
    key = identity.address.street_zip_key
    hits = [
        c for c in candidates
        if identity.name.key in c.name_keys and key in c.street_zip_keys
    ]
    return _pick(MatchLayer.NAME_ZIP, hits)


def public_records_chain(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    if not identity.parcel_ids and not identity.case_numbers:
        return None
    hits = [
        c for c in candidates
        if (identity.parcel_ids & c.parcel_ids or identity.case_numbers & c.case_numbers)
        and _same_person_name(identity.name, c)
    ]
    return _pick(MatchLayer.RECORDS_CHAIN, hits)


def fuzzy_name_address(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    if identity.address is None or identity.name.is_organization:
        return None
    key = identity.address.full_key
    hits = []
    for candidate in candidates:
        if key not in candidate.address_keys:
            continue
        for name in candidate.names:
            if name.is_organization or not name.first:
                continue
            if identity.name.has_initial_only or name.has_initial_only:
                # An initial only matches a name starting with it
                if not first_names_compatible(identity.name.first, name.first):
                    continue
            left = expand_initial(identity.name, name)
            right = expand_initial(name, identity.name)
            if Levenshtein.distance(left, right) <= MAX_NAME_DISTANCE:
                hits.append(candidate)
                break
    return _pick(MatchLayer.FUZZY, hits)


def nickname_contact(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    if not identity.phones and not identity.emails:
        return None
    hits = [
        c for c in candidates
        if (identity.phones & c.phones or identity.emails & c.emails)
        and any(
            n.last == identity.name.last and n.canonical_first == identity.name.canonical_first
            for n in c.names
        )
    ]
    return _pick(MatchLayer.NICKNAME_CONTACT, hits)


def professional_identity(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    if not identity.company:
        return None
    state = identity.mention.state
    hits = [
        c for c in candidates
        if c.company == identity.company
        and (not identity.title or not c.title or identity.title == c.title)
        and (not state or not c.state or state == c.state)
        and _same_person_name(identity.name, c)
    ]
    return _pick(MatchLayer.PROFESSIONAL, hits)


def household(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    """Same surname at the same street/ZIP but a different first name.

    Produces a relation, never an identity merge.
    """
    if identity.address is None or identity.name.is_organization:
        return None
    key = identity.address.street_zip_key
    if key is None:
        return None
    hits = [
        c for c in candidates
        if key in c.street_zip_keys
        and identity.name.last in c.surnames
        and not _same_person_name(identity.name, c)
    ]
    # Alternatives here are further household members, not ties
    return _pick(MatchLayer.HOUSEHOLD, hits)


LAYERS: list[Layer] = [
    exact_name_address,
    name_street_zip,
    public_records_chain,
    fuzzy_name_address,
    nickname_contact,
    professional_identity,
    household,
]


def run_cascade(identity: Identity, candidates: list[EntityCandidate]) -> LayerMatch | None:
    """Run the layers in order and return the first match."""
    if not candidates:
        return None
    for layer in LAYERS:
        match = layer(identity, candidates)
        if match is not None:
            return match
    return None


class ReviewCandidate(BaseModel):
    entity_id: str
    confidence: float
    reason: str


def review_score(
    identity: Identity,
    candidates: list[EntityCandidate],
    floor: float = DEFAULT_REVIEW_FLOOR,
) -> ReviewCandidate | None:
    """Score the best sub-threshold candidate for manual review.

    - 0.80: same name, nothing corroborating
    - 0.75: same surname, compatible first name (initial or nickname)
    - 0.72: similar name (token sort ratio >= 90) in the same ZIP

    Returns:
        The best candidate at or above ``floor``, or None
    """
    best: ReviewCandidate | None = None
    name = identity.name
    zip_code = identity.address.zip_code if identity.address else None

    for candidate in candidates:
        score, reason = 0.0, ""
        if name.key in candidate.name_keys:
            score, reason = 0.80, f"Same name '{name.key}' with no corroborating attribute"
        elif not name.is_organization and _same_person_name(name, candidate):
            score, reason = 0.75, f"Compatible name '{name.key}' with no corroborating attribute"
        elif zip_code and zip_code in candidate.zip_codes:
            ratio = max(
                (fuzz.token_sort_ratio(name.key, n.key) for n in candidate.names),
                default=0.0,
            )
            if ratio >= 90:
                score, reason = 0.72, f"Similar name ({ratio:.0f}) in ZIP {zip_code}"

        if score < floor or score >= REVIEW_CEILING:
            continue
        if best is None or score > best.confidence or (
            score == best.confidence and candidate.entity_id < best.entity_id
        ):
            best = ReviewCandidate(entity_id=candidate.entity_id, confidence=score, reason=reason)
    return best
