"""Signal service: detection, persistence and score recomputation."""

from datetime import timedelta

from pydantic import BaseModel, Field

from ..logging import get_context_logger, log_signal_detected
from ..models.entities import Entity
from ..models.records import (
    CourtCaseRecord,
    DocumentRecord,
    NormalizedRecord,
    ProfessionalRecord,
    PropertyRecord,
    utcnow,
)
from ..models.signals import ProspectScore, Signal
from ..resolution.engine import ResolutionEngine
from ..store.gateway import SIGNALS, StoreGateway
from ..store.repository import RecordRepository
from .detectors import EntityContext, detect
from .scoring import ProspectScorer

logger = get_context_logger(__name__)


class SignalRunResult(BaseModel):
    entity_id: str
    new_signals: list[Signal] = Field(default_factory=list)
    previous_score: float | None = None
    score: ProspectScore


class SignalService:
    """Owns signal creation. Entity writes go through the resolution engine."""

    def __init__(
        self,
        store: StoreGateway,
        engine: ResolutionEngine,
        scorer: ProspectScorer | None = None,
    ):
        self.store = store
        self.engine = engine
        self.scorer = scorer or ProspectScorer()
        self.repository = RecordRepository(store)

    async def signals_for(self, entity_id: str) -> list[Signal]:
        rows = await self.store.query(SIGNALS, {"entity_id": entity_id})
        signals = [Signal.model_validate(row) for row in rows]
        return sorted(signals, key=lambda s: s.detected_at)

    async def build_context(self, entity: Entity) -> EntityContext:
        records = await self.repository.load_many(entity.records)
        context = EntityContext(
            entity=entity,
            properties=[r for r in records if isinstance(r, PropertyRecord)],
            documents=[r for r in records if isinstance(r, DocumentRecord)],
            court_cases=[r for r in records if isinstance(r, CourtCaseRecord)],
            professional_records=[r for r in records if isinstance(r, ProfessionalRecord)],
            linked_refs={str(ref) for ref in entity.records},
        )

        # Documents on owned parcels belong to the context even when their
        # parties resolved elsewhere (lenders, trustees)
        known = {d.key for d in context.documents}
        for prop in context.properties:
            for doc in await self.repository.documents_for_parcel(prop.jurisdiction, prop.parcel_id):
                if doc.key not in known:
                    context.documents.append(doc)
                    known.add(doc.key)

        jurisdiction = next((r.jurisdiction for r in records), None)
        if jurisdiction:
            context.demographics = await self.repository.get_demographics(jurisdiction)
        return context

    async def process(
        self, entity_id: str, new_records: list[NormalizedRecord] | None = None
    ) -> SignalRunResult:
        """Detect signals for an entity and recompute its prospect score.

        Args:
            entity_id: Entity id (redirects are followed)
            new_records: Records that just arrived; None re-examines all

        Returns:
            Newly stored signals and the recomputed score
        """
        entity = await self.engine.get_entity(entity_id)
        context = await self.build_context(entity)
        existing = await self.signals_for(entity.entity_id)

        now = utcnow()
        new_signals: list[Signal] = []
        for offset, signal in enumerate(detect(context, new_records, now=now)):
            if any(signal.same_observation(other) for other in existing + new_signals):
                continue
            # Distinct detected_at keeps the (entity, type, detected_at) key unique
            signal = signal.model_copy(update={"detected_at": now + timedelta(microseconds=offset)})
            await self.store.upsert(SIGNALS, signal.key, signal.model_dump(mode="json"))
            new_signals.append(signal)
            log_signal_detected(
                entity.entity_id, signal.signal_type.value, signal.strength.value, signal.source
            )

        score = await self._rescore(entity, existing + new_signals)
        return SignalRunResult(
            entity_id=entity.entity_id,
            new_signals=new_signals,
            previous_score=entity.prospect_score,
            score=score,
        )

    async def rescore(self, entity_id: str) -> ProspectScore:
        """Recompute the score from stored signals only."""
        entity = await self.engine.get_entity(entity_id)
        return await self._rescore(entity, await self.signals_for(entity.entity_id))

    async def _rescore(self, entity: Entity, signals: list[Signal]) -> ProspectScore:
        score = self.scorer.score(entity.entity_id, signals)
        await self.engine.set_prospect_score(entity.entity_id, score.score)
        logger.debug(
            f"Scored {entity.entity_id}: {score.score}",
            extra={"entity_id": entity.entity_id, "active_signals": score.active_signals},
        )
        return score

    async def process_many(
        self, entity_ids: list[str] | set[str], new_records: list[NormalizedRecord] | None = None
    ) -> list[SignalRunResult]:
        results = []
        for entity_id in sorted(entity_ids):
            results.append(await self.process(entity_id, new_records))
        return results
