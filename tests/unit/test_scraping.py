"""Unit tests for scraper jobs and the fleet orchestrator."""

from typing import Any

import pytest

from sovereign.errors import HttpStatusError, StoreUnavailable, UnknownJurisdiction
from sovereign.http import RateLimitedClient
from sovereign.models.jobs import JobOptions, JobStatus
from sovereign.models.records import RecordTable
from sovereign.scraping import FleetOrchestrator, ScraperJob
from sovereign.sources.base import FederalSource
from sovereign.sources.registry import AdapterRegistry
from sovereign.sources.static import StaticAdapter
from sovereign.store import MemoryStore, RecordRepository
from sovereign.store.gateway import JOB_RESULTS, PROPERTIES

from fixtures.records import (
    OCEAN_BLVD_MORTGAGE,
    OCEAN_BLVD_PROPERTY,
    make_jurisdiction,
    property_row,
)


class ThrottledRecorder(StaticAdapter):
    """Serves properties but is throttled on the recorder index."""

    kind = "throttled"

    def __init__(self, jurisdiction):
        super().__init__(jurisdiction, properties=[OCEAN_BLVD_PROPERTY])
        self.handles = frozenset({RecordTable.PROPERTIES, RecordTable.DOCUMENTS})

    async def fetch_documents(self, options):
        raise HttpStatusError(429, url="https://recorder.test/index")
        yield


class UnavailableStore(MemoryStore):
    """Accepts job results but loses the connection on record writes."""

    async def upsert(self, table, key, fields):
        raise StoreUnavailable("connection reset")


class BrokenCensus(FederalSource):
    kind = "census"

    async def fetch_by_jurisdiction_key(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        raise RuntimeError("census api down")


class StaticCensus(FederalSource):
    kind = "census"

    async def fetch_by_jurisdiction_key(self, params):
        return [{"median_home_value": 650_000}]

    def parse_row(self, row):
        return {"jurisdiction": self.jurisdiction.id, **row}


class TestScraperJob:
    """Tests for one job run."""

    async def test_completed_job_counts_records(self, store, jurisdiction):
        adapter = StaticAdapter(
            jurisdiction,
            properties=[OCEAN_BLVD_PROPERTY, property_row(parcel_id="P-1002")],
            documents=[OCEAN_BLVD_MORTGAGE],
        )

        result = await ScraperJob(jurisdiction, [adapter], store).run()

        assert result.status == JobStatus.COMPLETED
        assert result.succeeded
        assert result.records_processed == 3
        assert result.records_created == 3
        assert result.completed_at >= result.started_at

    async def test_rerun_updates_instead_of_duplicating(self, store, jurisdiction):
        rows = [OCEAN_BLVD_PROPERTY]

        await ScraperJob(jurisdiction, [StaticAdapter(jurisdiction, properties=rows)], store).run()
        second = await ScraperJob(jurisdiction, [StaticAdapter(jurisdiction, properties=rows)], store).run()

        assert second.records_created == 0
        assert second.records_updated == 1
        assert await store.count(PROPERTIES) == 1

    async def test_malformed_row_is_logged_and_skipped(self, store, jurisdiction):
        adapter = StaticAdapter(
            jurisdiction,
            properties=[{"owner_name": "NO PARCEL"}, OCEAN_BLVD_PROPERTY],
        )

        result = await ScraperJob(jurisdiction, [adapter], store).run()

        assert result.status == JobStatus.COMPLETED
        assert result.partial
        assert result.records_processed == 1
        assert len(result.errors) == 1
        assert result.errors[0].context["phase"] == "properties"
        assert "Skipped malformed properties row" in result.log_output

    async def test_rate_limited_source_does_not_fail_job(self, store, jurisdiction):
        result = await ScraperJob(jurisdiction, [ThrottledRecorder(jurisdiction)], store).run()

        assert result.status == JobStatus.COMPLETED
        assert result.records_processed == 1
        assert result.errors[0].context["status_code"] == 429
        assert "Rate limited by source" in result.log_output

    async def test_store_unavailable_fails_job(self, jurisdiction):
        async with UnavailableStore() as store:
            adapter = StaticAdapter(jurisdiction, properties=[OCEAN_BLVD_PROPERTY])

            result = await ScraperJob(jurisdiction, [adapter], store).run()
            stored = await RecordRepository(store).job_results(jurisdiction.id)

        assert result.status == JobStatus.FAILED
        assert result.errors[-1].context["fatal"] is True
        assert [r.job_id for r in stored] == [result.job_id]

    async def test_disabled_phases_are_skipped(self, store, jurisdiction):
        adapter = StaticAdapter(
            jurisdiction, properties=[OCEAN_BLVD_PROPERTY], documents=[OCEAN_BLVD_MORTGAGE]
        )

        result = await ScraperJob(jurisdiction, [adapter], store).run(
            JobOptions(scrape_documents=False)
        )

        assert result.records_processed == 1

    async def test_federal_failures_are_isolated(self, store, jurisdiction, repository):
        job = ScraperJob(
            jurisdiction,
            [],
            store,
            federal_sources=[BrokenCensus(jurisdiction), StaticCensus(jurisdiction)],
        )

        result = await job.run(JobOptions(scrape_properties=False, scrape_documents=False, scrape_federal=True))

        assert result.status == JobStatus.COMPLETED
        assert len(result.errors) == 1
        assert (await repository.get_demographics(jurisdiction.id))["median_home_value"] == 650_000

    async def test_job_runs_once(self, store, jurisdiction):
        job = ScraperJob(jurisdiction, [], store)
        await job.run()

        with pytest.raises(RuntimeError):
            await job.run()

    async def test_result_is_persisted(self, store, jurisdiction):
        result = await ScraperJob(jurisdiction, [], store).run()

        assert await store.get(JOB_RESULTS, (result.job_id,)) is not None


class TestFleetOrchestrator:
    """Tests for running many jurisdictions."""

    @pytest.fixture
    def fleet_registry(self, settings):
        jurisdictions = {
            jid: make_jurisdiction(jid) for jid in ("alpha_fl", "bravo_fl", "charlie_fl")
        }
        registry = AdapterRegistry(jurisdictions=jurisdictions, settings=settings, federal_factories=())
        for jid in jurisdictions:
            registry.register(
                jid,
                lambda config, client: StaticAdapter(
                    config, properties=[property_row(parcel_id=f"{config.id}-1")]
                ),
            )
        return registry

    async def test_failure_in_one_jurisdiction_is_isolated(self, store, settings, fleet_registry):
        def exploding(config, client):
            raise RuntimeError("adapter construction failed")

        fleet_registry.register("bravo_fl", exploding)
        async with FleetOrchestrator(store, registry=fleet_registry, settings=settings) as fleet:
            result = await fleet.run_all()

        statuses = {jid: r.status for jid, r in result.results}
        assert statuses == {
            "alpha_fl": JobStatus.COMPLETED,
            "bravo_fl": JobStatus.FAILED,
            "charlie_fl": JobStatus.COMPLETED,
        }
        assert result.total_records == 2

    async def test_stop_prevents_new_jurisdictions(self, store, settings, fleet_registry):
        fleet = FleetOrchestrator(store, registry=fleet_registry, settings=settings)

        def stopping(config, client):
            fleet.stop()
            return StaticAdapter(config, properties=[property_row(parcel_id="alpha-1")])

        fleet_registry.register("alpha_fl", stopping)
        result = await fleet.run_all()
        await fleet.close()

        assert [jid for jid, _ in result.results] == ["alpha_fl"]
        assert result.results[0][1].status == JobStatus.COMPLETED
        assert result.stopped_early
        assert fleet.stop_requested

    async def test_pooled_run_keeps_issue_order(self, store, settings, fleet_registry):
        async with FleetOrchestrator(store, registry=fleet_registry, settings=settings) as fleet:
            result = await fleet.run_all(parallel=3)

        assert [jid for jid, _ in result.results] == ["alpha_fl", "bravo_fl", "charlie_fl"]
        assert not result.stopped_early
        assert result.summary()["total_records"] == 3

    async def test_run_one_unknown_jurisdiction(self, store, settings, fleet_registry):
        async with FleetOrchestrator(store, registry=fleet_registry, settings=settings) as fleet:
            with pytest.raises(UnknownJurisdiction):
                await fleet.run_one("atlantis")

    async def test_subset_of_jurisdictions(self, store, settings, fleet_registry):
        client = RateLimitedClient()
        fleet = FleetOrchestrator(store, registry=fleet_registry, client=client, settings=settings)

        result = await fleet.run_all(jurisdiction_ids=["charlie_fl"])
        await client.close()

        assert [jid for jid, _ in result.results] == ["charlie_fl"]
