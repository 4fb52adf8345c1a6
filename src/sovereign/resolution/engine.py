"""Entity resolution engine.

Resolves the party mentions on normalized records into canonical
entities. Each mention is split into identities (joint owners become
separate identities linked as a household), candidates are blocked by
surname and street/ZIP, and the match layers run in cascade order with
early accept. Ties and sub-threshold similarity go to the review queue;
anything else seeds a new entity.

Writes to an entity are serialized per entity id. Merges lock both ids
in sorted order so that two merges touching the same pair cannot
deadlock.
"""

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..errors import EntityNotFound, MergeNotAllowed, ResolutionError
from ..logging import get_context_logger, log_merge_event, log_resolution_event
from ..models.entities import (
    ContactKind,
    ContactPoint,
    Entity,
    EntityAddress,
    HouseholdLink,
    MatchEvidence,
    ProfessionalProfile,
    ReviewItem,
    ReviewStatus,
)
from ..models.records import NormalizedRecord, PartyMention, RecordTable, utcnow
from ..models.signals import Signal
from ..sources.skip_trace import SkipTraceResult
from ..store.gateway import (
    ENTITIES,
    ENTITY_INDEX,
    HOUSEHOLD_LINKS,
    RECORD_LINKS,
    SIGNALS,
    StoreGateway,
)
from ..store.repository import RecordRepository
from .addresses import NormalizedAddress, normalize_address
from .layers import (
    DEFAULT_REVIEW_FLOOR,
    LAYER_CONFIDENCE,
    SEED_CONFIDENCE,
    EntityCandidate,
    Identity,
    MatchLayer,
    mention_key,
    review_score,
    run_cascade,
)
from .names import ParsedName, parse_names
from .review import ReviewQueue

logger = get_context_logger(__name__)

RESOLUTION_ORDER = (
    RecordTable.PROPERTIES,
    RecordTable.DOCUMENTS,
    RecordTable.COURT_CASES,
    RecordTable.PROFESSIONAL_RECORDS,
)


class ConfidencePolicy(str, Enum):
    """How an entity's confidence is aggregated from its matches."""

    MAX = "max"
    WEIGHTED_MEAN = "weighted_mean"

    def aggregate(self, confidences: list[float]) -> float:
        if not confidences:
            return 0.0
        if self is ConfidencePolicy.MAX:
            return max(confidences)
        # Each match weighted by its own confidence
        total = sum(confidences)
        return sum(c * c for c in confidences) / total


class OutcomeKind(str, Enum):
    LINKED = "linked"
    SEEDED = "seeded"
    HOUSEHOLD = "household"
    REVIEW = "review"
    SKIPPED = "skipped"
    UNLINKED = "unlinked"


class ResolutionOutcome(BaseModel):
    """What happened to one identity of one mention."""

    mention_key: str
    identity_name: str
    kind: OutcomeKind
    entity_id: str | None = None
    layer: str | None = None
    confidence: float = 0.0
    review_item_id: str | None = None
    # Entity that held this mention before the record changed hands
    previous_entity_id: str | None = None


class ResolutionSummary(BaseModel):
    records: int = 0
    outcomes: list[ResolutionOutcome] = Field(default_factory=list)

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind)

    @property
    def entity_ids(self) -> set[str]:
        return {o.entity_id for o in self.outcomes if o.entity_id}

    def summary(self) -> dict[str, int]:
        return {"records": self.records, **{k.value: self.count(k) for k in OutcomeKind}}


class MergeResult(BaseModel):
    survivor: Entity
    loser_id: str
    records_moved: int = 0
    signals_moved: int = 0
    signals_deduplicated: int = 0


class ResolutionEngine:
    """Maintains canonical entities over the durable store."""

    def __init__(
        self,
        store: StoreGateway,
        policy: ConfidencePolicy = ConfidencePolicy.MAX,
        review_floor: float = DEFAULT_REVIEW_FLOOR,
    ):
        """Initialize the engine.

        Args:
            store: Durable store gateway (opened by the caller)
            policy: Confidence aggregation policy
            review_floor: Minimum similarity routed to manual review
        """
        self.store = store
        self.policy = ConfidencePolicy(policy)
        self.review_floor = review_floor
        self.repository = RecordRepository(store)
        self.review_queue = ReviewQueue(store)
        self._locks: dict[str, asyncio.Lock] = {}

    # =========================
    # Locking
    # =========================

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = self._locks[entity_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _locked(self, *entity_ids: str):
        locks = [self._lock_for(eid) for eid in sorted(set(entity_ids))]
        for lock in locks:
            await lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    # =========================
    # Entity access
    # =========================

    async def _load(self, entity_id: str) -> Entity:
        row = await self.store.get(ENTITIES, (entity_id,))
        if row is None:
            raise EntityNotFound(entity_id)
        return Entity.model_validate(row)

    async def _save(self, entity: Entity) -> None:
        await self.store.upsert(ENTITIES, (entity.entity_id,), entity.model_dump(mode="json"))

    async def resolve_id(self, entity_id: str) -> str:
        """Follow merge redirects to the surviving entity id.

        Raises:
            EntityNotFound: The id was never assigned
        """
        seen = set()
        current = entity_id
        while True:
            entity = await self._load(current)
            if not entity.is_redirect:
                return current
            if current in seen:
                raise ResolutionError(f"Redirect cycle at {current}")
            seen.add(current)
            current = entity.merged_into

    async def get_entity(self, entity_id: str, follow_redirects: bool = True) -> Entity:
        if follow_redirects:
            entity_id = await self.resolve_id(entity_id)
        return await self._load(entity_id)

    async def household_of(self, entity_id: str) -> list[HouseholdLink]:
        rows = await self.store.query(HOUSEHOLD_LINKS, {"entity_a": entity_id})
        rows += await self.store.query(HOUSEHOLD_LINKS, {"entity_b": entity_id})
        return [HouseholdLink.model_validate(row) for row in rows]

    async def links_for_entity(self, entity_id: str) -> list[dict[str, Any]]:
        return await self.store.query(RECORD_LINKS, {"entity_id": entity_id})

    # =========================
    # Resolution
    # =========================

    async def resolve_record(self, record: NormalizedRecord) -> list[ResolutionOutcome]:
        """Resolve every identity named on a record.

        Already-linked identities and identities waiting in the review
        queue are skipped, so resolving a record twice is a no-op.
        """
        outcomes = []
        for mention in record.mentions():
            names = parse_names(mention.raw_name, mention.name_order)
            resolved_ids: list[str] = []
            for index, name in enumerate(names):
                identity = Identity.from_mention(mention, index, name)
                outcome = await self._resolve_identity(identity, exclude=set(resolved_ids))
                outcomes.append(outcome)
                log_resolution_event(
                    outcome.layer or "none",
                    name.key,
                    outcome.entity_id,
                    outcome.confidence,
                    outcome.kind.value,
                )
                if outcome.entity_id:
                    resolved_ids.append(outcome.entity_id)
            outcomes.extend(await self._drop_vanished_identities(mention, len(names)))

            # Joint owners on one mention form a household
            if len(resolved_ids) > 1:
                address = normalize_address(
                    mention.address, mention.city, mention.state, mention.zip_code
                )
                anchor = resolved_ids[0]
                for other in resolved_ids[1:]:
                    await self._add_household(
                        anchor, other, names[0].last, address.line if address else None
                    )
        return outcomes

    async def _resolve_identity(self, identity: Identity, exclude: set[str]) -> ResolutionOutcome:
        """Resolve one identity, relinking it when the record changed hands.

        A link whose stored name differs from the name now on the record
        is dropped from its old entity before matching again. Links
        written without a name are trusted as-is.
        """
        key = identity.mention_key
        existing = await self.store.get(RECORD_LINKS, (key,))
        if existing is None:
            return await self._match_identity(identity, exclude)
        if existing.get("name_key") in (None, identity.name.key):
            entity_id = await self.resolve_id(existing["entity_id"])
            return ResolutionOutcome(
                mention_key=key,
                identity_name=identity.name.key,
                kind=OutcomeKind.SKIPPED,
                entity_id=entity_id,
                layer=existing.get("layer"),
                confidence=existing.get("confidence", 0.0),
            )

        previous_id = await self._unlink(existing)
        logger.info(
            f"{key} now names {identity.name.key}; unlinked from {previous_id}",
            extra={"mention_key": key, "entity_id": previous_id},
        )
        outcome = await self._match_identity(identity, exclude)
        outcome.previous_entity_id = previous_id
        return outcome

    async def _drop_vanished_identities(self, mention: PartyMention, count: int) -> list[ResolutionOutcome]:
        """Unlink identities past the end of a mention that lost names."""
        outcomes = []
        index = count
        while True:
            key = mention_key(mention, index)
            existing = await self.store.get(RECORD_LINKS, (key,))
            if existing is None:
                return outcomes
            previous_id = await self._unlink(existing)
            outcomes.append(
                ResolutionOutcome(
                    mention_key=key,
                    identity_name=existing.get("name_key") or "",
                    kind=OutcomeKind.UNLINKED,
                    previous_entity_id=previous_id,
                )
            )
            index += 1

    async def _match_identity(self, identity: Identity, exclude: set[str]) -> ResolutionOutcome:
        key = identity.mention_key
        pending = await self.review_queue.pending_for_mention(key)
        if pending is not None:
            return ResolutionOutcome(
                mention_key=key,
                identity_name=identity.name.key,
                kind=OutcomeKind.SKIPPED,
                layer=MatchLayer.REVIEW.value,
                confidence=pending.confidence,
                review_item_id=pending.item_id,
            )

        candidates = [
            c for c in await self._candidates(identity) if c.entity_id not in exclude
        ]
        match = run_cascade(identity, candidates)

        if match is not None and match.layer != MatchLayer.HOUSEHOLD:
            if match.is_ambiguous:
                return await self._enqueue(
                    identity,
                    match.entity_id,
                    match.confidence,
                    f"Tied {match.layer.value} match with {', '.join(match.alternatives)}",
                )
            entity = await self._link(identity, match.entity_id, match.layer, match.confidence)
            return ResolutionOutcome(
                mention_key=key,
                identity_name=identity.name.key,
                kind=OutcomeKind.LINKED,
                entity_id=entity.entity_id,
                layer=match.layer.value,
                confidence=match.confidence,
            )

        if match is None:
            candidate = review_score(identity, candidates, floor=self.review_floor)
            if candidate is not None:
                return await self._enqueue(
                    identity, candidate.entity_id, candidate.confidence, candidate.reason
                )

        entity = await self._seed(identity)
        if match is not None:
            for member in [match.entity_id, *match.alternatives]:
                await self._add_household(
                    entity.entity_id,
                    member,
                    identity.name.last,
                    identity.address.line if identity.address else None,
                )
            return ResolutionOutcome(
                mention_key=key,
                identity_name=identity.name.key,
                kind=OutcomeKind.HOUSEHOLD,
                entity_id=entity.entity_id,
                layer=MatchLayer.HOUSEHOLD.value,
                confidence=LAYER_CONFIDENCE[MatchLayer.HOUSEHOLD],
            )
        return ResolutionOutcome(
            mention_key=key,
            identity_name=identity.name.key,
            kind=OutcomeKind.SEEDED,
            entity_id=entity.entity_id,
            layer=MatchLayer.SEED.value,
            confidence=SEED_CONFIDENCE,
        )

    async def resolve_pending(self, jurisdiction: str | None = None) -> ResolutionSummary:
        """Resolve every stored record, optionally for one jurisdiction."""
        summary = ResolutionSummary()
        for table in RESOLUTION_ORDER:
            for record in await self.repository.records_for_jurisdiction(table, jurisdiction):
                summary.records += 1
                summary.outcomes.extend(await self.resolve_record(record))
        logger.info(
            f"Resolution pass finished: {summary.summary()}",
            extra={"jurisdiction": jurisdiction},
        )
        return summary

    # =========================
    # Candidates
    # =========================

    def _index_entries(self, name: ParsedName, address: NormalizedAddress | None) -> list[tuple[str, str]]:
        entries = [("surname", name.last)]
        if address is not None and address.street_zip_key:
            entries.append(("street_zip", address.street_zip_key))
        return entries

    async def _index(self, entity_id: str, entries: list[tuple[str, str]]) -> None:
        for kind, value in entries:
            await self.store.upsert(
                ENTITY_INDEX,
                (kind, value, entity_id),
                {"kind": kind, "value": value, "entity_id": entity_id},
            )

    async def _candidates(self, identity: Identity) -> list[EntityCandidate]:
        ids: set[str] = set()
        for kind, value in self._index_entries(identity.name, identity.address):
            rows = await self.store.query(ENTITY_INDEX, {"kind": kind, "value": value})
            ids.update(row["entity_id"] for row in rows)

        candidates = {}
        for entity_id in sorted(ids):
            try:
                survivor = await self.resolve_id(entity_id)
            except EntityNotFound:
                continue
            if survivor not in candidates:
                candidates[survivor] = EntityCandidate.from_entity(await self._load(survivor))
        return list(candidates.values())

    # =========================
    # Writes
    # =========================

    def _absorb(self, entity: Entity, identity: Identity, layer: MatchLayer, confidence: float) -> None:
        mention = identity.mention
        entity.add_variant(mention.raw_name)
        entity.add_name_key(identity.name.storage_key)
        entity.add_source(mention.source)

        if identity.address is not None:
            entity.add_address(
                EntityAddress(
                    line=identity.address.line,
                    street_key=identity.address.street,
                    unit=identity.address.unit,
                    city=identity.address.city,
                    state=identity.address.state,
                    zip_code=identity.address.zip_code,
                    valid_from=mention.observed_on,
                    valid_to=mention.observed_on,
                    source=mention.source,
                )
            )
        for parcel_id in mention.parcel_ids:
            if parcel_id not in entity.parcel_ids:
                entity.parcel_ids.append(parcel_id)
        for case_number in mention.case_numbers:
            if case_number not in entity.case_numbers:
                entity.case_numbers.append(case_number)
        for phone in mention.phones:
            entity.add_contact(ContactPoint(kind=ContactKind.PHONE, value=phone, source=mention.source))
        for email in mention.emails:
            entity.add_contact(ContactPoint(kind=ContactKind.EMAIL, value=email, source=mention.source))
        if mention.company:
            entity.professional = ProfessionalProfile(
                company=mention.company,
                title=mention.title,
                city=mention.city,
                state=mention.state,
            )

        if all(ev.mention_key != identity.mention_key for ev in entity.evidence):
            entity.evidence.append(
                MatchEvidence(
                    mention_key=identity.mention_key,
                    ref=mention.ref,
                    layer=layer.value,
                    confidence=confidence,
                )
            )
        entity.canonical_name = _canonical_name(entity)
        entity.confidence = self.policy.aggregate([ev.confidence for ev in entity.evidence])
        entity.last_updated = utcnow()

    async def _write_link(
        self, identity: Identity, entity_id: str, layer: MatchLayer, confidence: float
    ) -> None:
        ref = identity.mention.ref
        await self.store.upsert(
            RECORD_LINKS,
            (identity.mention_key,),
            {
                "mention_key": identity.mention_key,
                "table": ref.table.value,
                "jurisdiction": ref.jurisdiction,
                "natural_key": ref.natural_key,
                "slot": identity.mention.slot,
                "index": identity.index,
                "name_key": identity.name.key,
                "entity_id": entity_id,
                "layer": layer.value,
                "confidence": confidence,
                "linked_at": utcnow().isoformat(),
            },
        )
        entries = self._index_entries(identity.name, identity.address)
        # Parcels are indexed for lookups by holding, never for blocking
        entries += [("parcel", parcel_id) for parcel_id in identity.mention.parcel_ids]
        await self._index(entity_id, entries)

    async def _seed(self, identity: Identity) -> Entity:
        entity = Entity(
            canonical_name=identity.name.display,
            is_organization=identity.name.is_organization,
        )
        async with self._locked(entity.entity_id):
            self._absorb(entity, identity, MatchLayer.SEED, SEED_CONFIDENCE)
            await self._save(entity)
            await self._write_link(identity, entity.entity_id, MatchLayer.SEED, SEED_CONFIDENCE)
        return entity

    async def _link(
        self, identity: Identity, entity_id: str, layer: MatchLayer, confidence: float
    ) -> Entity:
        while True:
            entity_id = await self.resolve_id(entity_id)
            async with self._locked(entity_id):
                entity = await self._load(entity_id)
                # Merged away while waiting for the lock
                if entity.is_redirect:
                    continue
                self._absorb(entity, identity, layer, confidence)
                await self._save(entity)
                await self._write_link(identity, entity_id, layer, confidence)
                return entity

    async def _unlink(self, link: dict[str, Any]) -> str | None:
        """Detach one mention from the entity it was linked to.

        The entity loses the mention's evidence, any parcel or case number
        no remaining record supports, and the signals that cited the
        record once nothing else links it. Returns the entity id, or None
        when the linked entity no longer exists.
        """
        key = link["mention_key"]
        await self.store.delete(RECORD_LINKS, (key,))
        try:
            entity_id = await self.resolve_id(link["entity_id"])
        except EntityNotFound:
            return None

        ref_key = f"{link['table']}:{link['jurisdiction']}:{link['natural_key']}"
        while True:
            async with self._locked(entity_id):
                entity = await self._load(entity_id)
                if entity.is_redirect:
                    entity_id = await self.resolve_id(entity_id)
                    continue

                entity.evidence = [ev for ev in entity.evidence if ev.mention_key != key]
                parcels, cases = await self._holdings(entity)
                dropped = [p for p in entity.parcel_ids if p not in parcels]
                entity.parcel_ids = [p for p in entity.parcel_ids if p in parcels]
                entity.case_numbers = [c for c in entity.case_numbers if c in cases]
                entity.confidence = self.policy.aggregate([ev.confidence for ev in entity.evidence])
                entity.last_updated = utcnow()
                await self._save(entity)

                for parcel_id in dropped:
                    await self.store.delete(ENTITY_INDEX, ("parcel", parcel_id, entity_id))
                if all(str(ev.ref) != ref_key for ev in entity.evidence):
                    for row in await self.store.query(SIGNALS, {"entity_id": entity_id}):
                        signal = Signal.model_validate(row)
                        if any(str(ref) == ref_key for ref in signal.evidence):
                            await self.store.delete(SIGNALS, signal.key)
                return entity_id

    async def _holdings(self, entity: Entity) -> tuple[set[str], set[str]]:
        """Parcels and case numbers named by the entity's own mentions."""
        keys = {ev.mention_key for ev in entity.evidence}
        parcels: set[str] = set()
        cases: set[str] = set()
        for record in await self.repository.load_many(entity.records):
            for mention in record.mentions():
                if any(k.startswith(f"{mention.ref}#{mention.slot}.") for k in keys):
                    parcels.update(mention.parcel_ids)
                    cases.update(mention.case_numbers)
        return parcels, cases

    async def entities_for_parcels(self, parcel_ids: set[str]) -> set[str]:
        """Surviving entities holding any of the parcels."""
        ids = set()
        for parcel_id in sorted(parcel_ids):
            for row in await self.store.query(ENTITY_INDEX, {"kind": "parcel", "value": parcel_id}):
                try:
                    ids.add(await self.resolve_id(row["entity_id"]))
                except EntityNotFound:
                    continue
        return ids

    async def _add_household(
        self, first: str, second: str, surname: str | None, address: str | None
    ) -> None:
        if first == second:
            return
        link = HouseholdLink.between(first, second, surname=surname, address=address)
        existing = await self.store.get(HOUSEHOLD_LINKS, link.key)
        if existing is None:
            await self.store.upsert(HOUSEHOLD_LINKS, link.key, link.model_dump(mode="json"))

    async def _enqueue(
        self, identity: Identity, entity_id: str, confidence: float, reason: str
    ) -> ResolutionOutcome:
        item = await self.review_queue.enqueue(
            ReviewItem(
                mention=identity.mention,
                identity_index=identity.index,
                identity_name=identity.name.key,
                candidate_entity_id=entity_id,
                confidence=confidence,
                reason=reason,
            )
        )
        logger.info(
            f"Queued {identity.name.key} for review against {entity_id} ({confidence:.2f})",
            extra={"review_item_id": item.item_id, "mention_key": identity.mention_key},
        )
        return ResolutionOutcome(
            mention_key=identity.mention_key,
            identity_name=identity.name.key,
            kind=OutcomeKind.REVIEW,
            layer=MatchLayer.REVIEW.value,
            confidence=confidence,
            review_item_id=item.item_id,
        )

    # =========================
    # Review decisions
    # =========================

    def _identity_for(self, item: ReviewItem) -> Identity:
        names = parse_names(item.mention.raw_name, item.mention.name_order)
        if item.identity_index >= len(names):
            raise ResolutionError(f"Review item {item.item_id} no longer parses to an identity")
        return Identity.from_mention(item.mention, item.identity_index, names[item.identity_index])

    async def approve_review(self, item_id: str) -> Entity:
        """Link the queued mention to its candidate entity."""
        item = await self.review_queue.get(item_id)
        if item.status != ReviewStatus.PENDING:
            raise ResolutionError(f"Review item {item_id} is already {item.status.value}")
        identity = self._identity_for(item)
        entity = await self._link(identity, item.candidate_entity_id, MatchLayer.REVIEW, item.confidence)
        await self.review_queue.close_item(item, ReviewStatus.APPROVED, entity.entity_id)
        log_resolution_event(
            MatchLayer.REVIEW.value, item.identity_name, entity.entity_id, item.confidence, "linked"
        )
        return entity

    async def reject_review(self, item_id: str) -> Entity:
        """Seed a new entity for the queued mention."""
        item = await self.review_queue.get(item_id)
        if item.status != ReviewStatus.PENDING:
            raise ResolutionError(f"Review item {item_id} is already {item.status.value}")
        entity = await self._seed(self._identity_for(item))
        await self.review_queue.close_item(item, ReviewStatus.REJECTED, entity.entity_id)
        log_resolution_event(
            MatchLayer.SEED.value, item.identity_name, entity.entity_id, SEED_CONFIDENCE, "seeded"
        )
        return entity

    # =========================
    # Merge
    # =========================

    async def merge(
        self, survivor_id: str, loser_id: str, allow_household: bool = False
    ) -> MergeResult:
        """Merge the loser entity into the survivor.

        All linked records, signals, household edges and pending review
        items of the loser move to the survivor. The loser row stays as a
        redirect. Both ids are locked for the whole operation.

        Args:
            survivor_id: Entity that keeps its id
            loser_id: Entity merged away
            allow_household: Permit merging two household members

        Raises:
            EntityNotFound: Either id is unknown
            MergeNotAllowed: The entities share a household edge
        """
        survivor_id = await self.resolve_id(survivor_id)
        loser_id = await self.resolve_id(loser_id)
        if survivor_id == loser_id:
            return MergeResult(survivor=await self._load(survivor_id), loser_id=loser_id)

        edge = HouseholdLink.between(survivor_id, loser_id)
        if not allow_household and await self.store.get(HOUSEHOLD_LINKS, edge.key) is not None:
            raise MergeNotAllowed(
                f"{loser_id} and {survivor_id} are household members; pass allow_household to merge"
            )

        async with self._locked(survivor_id, loser_id):
            survivor = await self._load(survivor_id)
            loser = await self._load(loser_id)
            if survivor.is_redirect or loser.is_redirect:
                raise ResolutionError("Entity was merged concurrently; retry the merge")

            records_moved = await self._move_links(loser_id, survivor_id)
            moved, deduplicated = await self._move_signals(loser_id, survivor_id)
            await self._move_households(loser_id, survivor_id)
            await self._move_reviews(loser_id, survivor_id)
            await self._move_index(loser_id, survivor_id)

            _absorb_entity(survivor, loser)
            survivor.confidence = self.policy.aggregate([ev.confidence for ev in survivor.evidence])
            survivor.canonical_name = _canonical_name(survivor)
            survivor.last_updated = utcnow()
            await self._save(survivor)

            loser.merged_into = survivor_id
            loser.evidence = []
            loser.last_updated = utcnow()
            await self._save(loser)

        log_merge_event(survivor_id, loser_id, records_moved, moved)
        return MergeResult(
            survivor=survivor,
            loser_id=loser_id,
            records_moved=records_moved,
            signals_moved=moved,
            signals_deduplicated=deduplicated,
        )

    async def _move_links(self, loser_id: str, survivor_id: str) -> int:
        rows = await self.store.query(RECORD_LINKS, {"entity_id": loser_id})
        for row in rows:
            await self.store.upsert(
                RECORD_LINKS, (row["mention_key"],), {**row, "entity_id": survivor_id}
            )
        return len({(r["table"], r["jurisdiction"], r["natural_key"]) for r in rows})

    async def _move_signals(self, loser_id: str, survivor_id: str) -> tuple[int, int]:
        kept = [Signal.model_validate(r) for r in await self.store.query(SIGNALS, {"entity_id": survivor_id})]
        moved = deduplicated = 0
        for row in await self.store.query(SIGNALS, {"entity_id": loser_id}):
            signal = Signal.model_validate(row)
            await self.store.delete(SIGNALS, signal.key)
            if any(signal.same_observation(other) for other in kept):
                deduplicated += 1
                continue
            reassigned = signal.reassigned(survivor_id)
            await self.store.upsert(SIGNALS, reassigned.key, reassigned.model_dump(mode="json"))
            kept.append(reassigned)
            moved += 1
        return moved, deduplicated

    async def _move_households(self, loser_id: str, survivor_id: str) -> None:
        for link in await self.household_of(loser_id):
            await self.store.delete(HOUSEHOLD_LINKS, link.key)
            other = link.other(loser_id)
            await self._add_household(survivor_id, other, link.surname, link.address)

    async def _move_reviews(self, loser_id: str, survivor_id: str) -> None:
        for item in await self.review_queue.for_candidate(loser_id):
            if item.status == ReviewStatus.PENDING:
                await self.review_queue.save(
                    item.model_copy(update={"candidate_entity_id": survivor_id})
                )

    async def _move_index(self, loser_id: str, survivor_id: str) -> None:
        for row in await self.store.query(ENTITY_INDEX, {"entity_id": loser_id}):
            await self.store.delete(ENTITY_INDEX, (row["kind"], row["value"], loser_id))
            await self._index(survivor_id, [(row["kind"], row["value"])])

    async def set_prospect_score(self, entity_id: str, score: float) -> Entity:
        """Store a recomputed prospect score on the surviving entity."""
        entity_id = await self.resolve_id(entity_id)
        async with self._locked(entity_id):
            entity = await self._load(entity_id)
            entity.prospect_score = score
            entity.last_updated = utcnow()
            await self._save(entity)
        return entity

    # =========================
    # Enrichment
    # =========================

    async def enrich(self, entity_id: str, result: SkipTraceResult) -> Entity:
        """Attach skip-trace contact points, age and prior addresses."""
        entity_id = await self.resolve_id(entity_id)
        async with self._locked(entity_id):
            entity = await self._load(entity_id)
            for phone in result.phones:
                entity.add_contact(
                    ContactPoint(kind=ContactKind.PHONE, value=phone.number, source=result.provider, score=phone.score)
                )
            for email in result.emails:
                entity.add_contact(
                    ContactPoint(kind=ContactKind.EMAIL, value=email.address, source=result.provider, score=email.score)
                )
            if result.age is not None:
                entity.age_estimate = result.age
            entries = []
            for line in result.previous_addresses:
                address = normalize_address(line)
                if address is None:
                    continue
                entity.add_address(
                    EntityAddress(
                        line=address.line,
                        street_key=address.street,
                        unit=address.unit,
                        city=address.city,
                        state=address.state,
                        zip_code=address.zip_code,
                        source=result.provider,
                    )
                )
                if address.street_zip_key:
                    entries.append(("street_zip", address.street_zip_key))
            entity.add_source(result.provider)
            entity.last_updated = utcnow()
            await self._save(entity)
            await self._index(entity_id, entries)
        logger.info(
            f"Enriched {entity_id}: {len(result.phones)} phones, {len(result.emails)} emails",
            extra={"entity_id": entity_id, "provider": result.provider},
        )
        return entity


def _canonical_name(entity: Entity) -> str:
    """Best quality name: full first name, then a middle name, then length."""
    if not entity.name_keys:
        return entity.canonical_name
    names = [ParsedName.from_storage_key(k) for k in entity.name_keys]
    best = max(
        names,
        key=lambda n: (not n.has_initial_only, bool(n.middle), len(n.display)),
    )
    return best.display


def _absorb_entity(survivor: Entity, loser: Entity) -> None:
    for variant in loser.name_variants:
        survivor.add_variant(variant)
    for key in loser.name_keys:
        survivor.add_name_key(key)
    for address in loser.addresses:
        survivor.add_address(address)
    for contact in loser.contact_points:
        survivor.add_contact(contact)
    for source in loser.sources:
        survivor.add_source(source)
    for parcel_id in loser.parcel_ids:
        if parcel_id not in survivor.parcel_ids:
            survivor.parcel_ids.append(parcel_id)
    for case_number in loser.case_numbers:
        if case_number not in survivor.case_numbers:
            survivor.case_numbers.append(case_number)
    known = {ev.mention_key for ev in survivor.evidence}
    survivor.evidence.extend(ev for ev in loser.evidence if ev.mention_key not in known)
    if survivor.age_estimate is None:
        survivor.age_estimate = loser.age_estimate
    if survivor.professional is None:
        survivor.professional = loser.professional
