"""Fleet orchestrator: runs scraper jobs across jurisdictions.

Jurisdictions run sequentially with a pause between them by default, so
that unrelated public portals sharing infrastructure are not hit at the
same time. A bounded worker pool can be used instead. Either way one
jurisdiction failing is recorded as a failed result and never aborts
the others.
"""

import asyncio
from datetime import datetime, timezone

from ..config import Settings, get_settings
from ..http import RateLimitedClient
from ..logging import get_context_logger
from ..models.jobs import FleetRunResult, JobError, JobOptions, JobStatus, ScraperJobResult
from ..sources.registry import AdapterRegistry
from ..store.gateway import StoreGateway
from .job import ScraperJob, new_job_id

logger = get_context_logger(__name__)


class FleetOrchestrator:
    def __init__(
        self,
        store: StoreGateway,
        registry: AdapterRegistry | None = None,
        client: RateLimitedClient | None = None,
        settings: Settings | None = None,
        pause_seconds: float | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.registry = registry or AdapterRegistry(settings=self.settings)
        self._owns_client = client is None
        self.client = client or RateLimitedClient()
        self.pause_seconds = (
            self.settings.fleet_pause_seconds if pause_seconds is None else pause_seconds
        )
        self._stop_requested = False

    async def close(self) -> None:
        if self._owns_client:
            await self.client.close()

    async def __aenter__(self) -> "FleetOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def list_jurisdictions(self) -> list[str]:
        return self.registry.list_jurisdictions()

    def stop(self) -> None:
        """Stop issuing new jurisdictions. Jobs already running finish."""
        self._stop_requested = True
        logger.info("Fleet stop requested")

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    async def run_one(
        self, jurisdiction_id: str, options: JobOptions | None = None
    ) -> ScraperJobResult:
        """Run one jurisdiction's job.

        Raises:
            UnknownJurisdiction: The id is not registered
        """
        options = options or JobOptions()
        config = self.registry.get(jurisdiction_id)
        adapters = self.registry.build_adapters(jurisdiction_id, self.client)
        federal = (
            self.registry.build_federal(jurisdiction_id, self.client)
            if options.scrape_federal
            else []
        )
        job = ScraperJob(config, adapters, self.store, federal_sources=federal)
        try:
            return await job.run(options)
        finally:
            for adapter in adapters:
                await adapter.close()

    async def _run_isolated(
        self, jurisdiction_id: str, options: JobOptions
    ) -> ScraperJobResult:
        started_at = datetime.now(timezone.utc)
        try:
            return await self.run_one(jurisdiction_id, options)
        except Exception as e:
            logger.exception(f"Jurisdiction {jurisdiction_id} failed outside its job")
            return ScraperJobResult(
                job_id=new_job_id(),
                jurisdiction_id=jurisdiction_id,
                status=JobStatus.FAILED,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                errors=(
                    JobError(
                        message=str(e),
                        context={"error_type": type(e).__name__, "fatal": True},
                    ),
                ),
            )

    async def run_all(
        self,
        options: JobOptions | None = None,
        parallel: int | None = None,
        jurisdiction_ids: list[str] | None = None,
    ) -> FleetRunResult:
        """Run every (or the given) jurisdiction.

        Args:
            options: Job options applied to each jurisdiction
            parallel: Worker pool size; 1 runs sequentially with pauses
            jurisdiction_ids: Subset to run, in order

        Returns:
            Per-jurisdiction results in issue order
        """
        options = options or JobOptions()
        parallel = parallel or self.settings.fleet_max_parallel
        ids = jurisdiction_ids or self.list_jurisdictions()
        self._stop_requested = False

        logger.info(f"Running fleet of {len(ids)} jurisdictions (parallel={parallel})")
        if parallel <= 1:
            fleet = await self._run_sequential(ids, options)
        else:
            fleet = await self._run_pooled(ids, options, parallel)

        summary = fleet.summary()
        logger.info(
            f"Fleet finished: {summary['total_jurisdictions']} jurisdictions, "
            f"{summary['total_records']} records"
            + (" (stopped early)" if fleet.stopped_early else "")
        )
        return fleet

    async def _run_sequential(self, ids: list[str], options: JobOptions) -> FleetRunResult:
        fleet = FleetRunResult()
        for index, jurisdiction_id in enumerate(ids):
            if self._stop_requested:
                fleet.stopped_early = True
                break
            result = await self._run_isolated(jurisdiction_id, options)
            fleet.results.append((jurisdiction_id, result))
            if index < len(ids) - 1 and self.pause_seconds > 0 and not self._stop_requested:
                await asyncio.sleep(self.pause_seconds)
        return fleet

    async def _run_pooled(
        self, ids: list[str], options: JobOptions, parallel: int
    ) -> FleetRunResult:
        semaphore = asyncio.Semaphore(parallel)
        issued: list[str] = []

        async def worker(jurisdiction_id: str) -> ScraperJobResult | None:
            async with semaphore:
                if self._stop_requested:
                    return None
                issued.append(jurisdiction_id)
                return await self._run_isolated(jurisdiction_id, options)

        outcomes = await asyncio.gather(*(worker(jid) for jid in ids))
        fleet = FleetRunResult(stopped_early=len(issued) < len(ids))
        by_id = dict(zip(ids, outcomes))
        for jurisdiction_id in issued:
            fleet.results.append((jurisdiction_id, by_id[jurisdiction_id]))
        return fleet
