"""Pipeline facade and downstream read model.

The pipeline wires the fleet, the resolution engine and the signal
service over one store: a jurisdiction is scraped, its records are
resolved once the job has not failed, and every touched entity is run
through signal detection. The read model gives consumers read-only
access to entities, signals and job results.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .errors import EntityNotFound
from .http import RateLimitedClient
from .logging import get_context_logger
from .models.entities import Entity, HouseholdLink, ReviewItem
from .models.jobs import FleetRunResult, JobOptions, JobStatus, ScraperJobResult
from .models.records import NormalizedRecord, RecordRef, RecordTable
from .models.signals import ProspectScore, Signal
from .resolution.engine import (
    ConfidencePolicy,
    MergeResult,
    OutcomeKind,
    ResolutionEngine,
    ResolutionSummary,
)
from .resolution.names import ParsedName
from .resolution.review import ReviewQueue
from .scraping.fleet import FleetOrchestrator
from .signals.scoring import load_scorer
from .signals.service import SignalRunResult, SignalService
from .sources.registry import AdapterRegistry
from .sources.skip_trace import SkipTraceClient, SkipTraceRequest
from .store.gateway import ENTITIES, HOUSEHOLD_LINKS, RECORD_LINKS, SIGNALS, StoreGateway
from .store.repository import RecordRepository

logger = get_context_logger(__name__)

TOUCHED = (OutcomeKind.LINKED, OutcomeKind.SEEDED, OutcomeKind.HOUSEHOLD)


class PipelineRunResult(BaseModel):
    """Outcome of scraping, resolving and scoring one jurisdiction."""

    job: ScraperJobResult
    resolution: ResolutionSummary | None = None
    signals: list[SignalRunResult] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "jurisdiction_id": self.job.jurisdiction_id,
            "job_status": self.job.status.value,
            "records_processed": self.job.records_processed,
            "errors": len(self.job.errors),
            "resolution": self.resolution.summary() if self.resolution else None,
            "entities_scored": len(self.signals),
            "new_signals": sum(len(r.new_signals) for r in self.signals),
        }


class Pipeline:
    def __init__(
        self,
        store: StoreGateway,
        registry: AdapterRegistry | None = None,
        settings: Settings | None = None,
        client: RateLimitedClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self._owns_client = client is None
        self.client = client or RateLimitedClient()
        self.fleet = FleetOrchestrator(
            store, registry=registry, client=self.client, settings=self.settings
        )
        self.engine = ResolutionEngine(
            store,
            policy=ConfidencePolicy(self.settings.resolution_confidence_policy),
            review_floor=self.settings.resolution_review_floor,
        )
        self.repository = RecordRepository(store)
        self.signals = SignalService(
            store, self.engine, load_scorer(self.settings.scoring_weights_path)
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.close()

    async def __aenter__(self) -> "Pipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def list_jurisdictions(self) -> list[str]:
        return self.fleet.list_jurisdictions()

    # =========================
    # Trigger
    # =========================

    async def resolve_and_score(
        self, jurisdiction_id: str | None = None, since: datetime | None = None
    ) -> tuple[ResolutionSummary, list[SignalRunResult]]:
        """Resolve stored records, then run detection for every affected entity.

        Affected entities are those a record was linked to or unlinked from,
        plus, when ``since`` is given, every entity holding a parcel named by
        a document or court case scraped since then. Co-owners whose own
        mentions were unchanged still see documents landing on their parcels.
        """
        summary = await self.engine.resolve_pending(jurisdiction_id)
        touched = {o.entity_id for o in summary.outcomes if o.kind in TOUCHED and o.entity_id}
        touched |= {o.previous_entity_id for o in summary.outcomes if o.previous_entity_id}
        if since is not None and jurisdiction_id is not None:
            parcels = await self.repository.parcels_scraped_since(jurisdiction_id, since)
            touched |= await self.engine.entities_for_parcels(parcels)
        results = await self.signals.process_many(touched)
        return summary, results

    async def run_jurisdiction(
        self, jurisdiction_id: str, options: JobOptions | None = None, resolve: bool = True
    ) -> PipelineRunResult:
        """Scrape one jurisdiction, then resolve and score what it produced.

        Resolution runs only when the job did not fail, so that it can rely
        on every record of the job being durably stored.

        Raises:
            UnknownJurisdiction: The id is not registered
        """
        job = await self.fleet.run_one(jurisdiction_id, options)
        result = PipelineRunResult(job=job)
        if resolve and job.status != JobStatus.FAILED:
            result.resolution, result.signals = await self.resolve_and_score(
                jurisdiction_id, since=job.started_at
            )
        logger.info(f"Pipeline run finished: {result.summary()}")
        return result

    async def run_fleet(
        self,
        options: JobOptions | None = None,
        parallel: int | None = None,
        resolve: bool = True,
    ) -> tuple[FleetRunResult, list[PipelineRunResult]]:
        """Run the fleet, then resolve and score each jurisdiction that did not fail."""
        fleet = await self.fleet.run_all(options, parallel=parallel)
        runs = []
        for jurisdiction_id, job in fleet.results:
            run = PipelineRunResult(job=job)
            if resolve and job.status != JobStatus.FAILED:
                run.resolution, run.signals = await self.resolve_and_score(
                    jurisdiction_id, since=job.started_at
                )
            runs.append(run)
        return fleet, runs

    def stop(self) -> None:
        self.fleet.stop()

    # =========================
    # Entity operations
    # =========================

    async def merge(
        self, survivor_id: str, loser_id: str, allow_household: bool = False
    ) -> tuple[MergeResult, ProspectScore]:
        result = await self.engine.merge(survivor_id, loser_id, allow_household=allow_household)
        score = await self.signals.rescore(result.survivor.entity_id)
        return result, score

    async def approve_review(self, item_id: str) -> SignalRunResult:
        entity = await self.engine.approve_review(item_id)
        return await self.signals.process(entity.entity_id)

    async def reject_review(self, item_id: str) -> SignalRunResult:
        entity = await self.engine.reject_review(item_id)
        return await self.signals.process(entity.entity_id)

    async def enrich(self, entity_id: str) -> SignalRunResult | None:
        """Skip-trace an entity and re-run detection.

        Returns None when no provider is configured or nothing was found.
        """
        skip_trace = SkipTraceClient(self.client, self.settings)
        if not skip_trace.enabled:
            return None
        entity = await self.engine.get_entity(entity_id)
        if entity.is_organization or not entity.name_keys:
            return None

        name = ParsedName.from_storage_key(entity.name_keys[0])
        request = SkipTraceRequest(first_name=name.first, last_name=name.last)
        if entity.addresses:
            current = entity.addresses[0]
            request = request.model_copy(
                update={
                    "address": current.line,
                    "city": current.city or "",
                    "state": current.state or "",
                    "zip": current.zip_code or "",
                    "parcel_id": entity.parcel_ids[0] if entity.parcel_ids else None,
                }
            )
        found = await skip_trace.lookup(request)
        if found is None:
            return None
        await self.engine.enrich(entity.entity_id, found)
        return await self.signals.process(entity.entity_id)


class ReadModel:
    """Read-only view for downstream consumers."""

    def __init__(self, store: StoreGateway):
        self.store = store
        self.repository = RecordRepository(store)

    async def _resolve(self, entity_id: str) -> Entity:
        seen = set()
        while True:
            row = await self.store.get(ENTITIES, (entity_id,))
            if row is None:
                raise EntityNotFound(entity_id)
            entity = Entity.model_validate(row)
            if not entity.is_redirect or entity_id in seen:
                return entity
            seen.add(entity_id)
            entity_id = entity.merged_into

    async def get_entity(self, entity_id: str) -> Entity:
        """Entity by id; merged-away ids resolve to the survivor."""
        return await self._resolve(entity_id)

    async def list_entities(
        self, min_score: float | None = None, limit: int | None = None
    ) -> list[Entity]:
        """Live entities, highest prospect score first."""
        rows = await self.store.query(ENTITIES, {"merged_into": None})
        entities = [Entity.model_validate(row) for row in rows]
        if min_score is not None:
            entities = [e for e in entities if (e.prospect_score or 0) >= min_score]
        entities.sort(key=lambda e: (-(e.prospect_score or 0), e.entity_id))
        return entities[:limit] if limit else entities

    async def list_signals(self, entity_id: str) -> list[Signal]:
        entity = await self._resolve(entity_id)
        rows = await self.store.query(SIGNALS, {"entity_id": entity.entity_id})
        return sorted((Signal.model_validate(r) for r in rows), key=lambda s: s.detected_at)

    async def list_job_results(self, jurisdiction_id: str | None = None) -> list[ScraperJobResult]:
        return await self.repository.job_results(jurisdiction_id)

    async def records_for_entity(self, entity_id: str) -> list[NormalizedRecord]:
        entity = await self._resolve(entity_id)
        rows = await self.store.query(RECORD_LINKS, {"entity_id": entity.entity_id})
        refs = {
            (row["table"], row["jurisdiction"], row["natural_key"]): RecordRef(
                table=RecordTable(row["table"]),
                jurisdiction=row["jurisdiction"],
                natural_key=row["natural_key"],
            )
            for row in rows
        }
        return await self.repository.load_many([refs[k] for k in sorted(refs)])

    async def household(self, entity_id: str) -> list[HouseholdLink]:
        entity = await self._resolve(entity_id)
        rows = await self.store.query(HOUSEHOLD_LINKS, {"entity_a": entity.entity_id})
        rows += await self.store.query(HOUSEHOLD_LINKS, {"entity_b": entity.entity_id})
        return [HouseholdLink.model_validate(row) for row in rows]

    async def pending_reviews(self, limit: int | None = None) -> list[ReviewItem]:
        return await ReviewQueue(self.store).pending(limit)

    async def demographics(self, jurisdiction_id: str) -> dict[str, Any] | None:
        return await self.repository.get_demographics(jurisdiction_id)

