"""Unit tests for the store gateways.

Every contract test runs against the in-memory store and against SQLite
through aiosqlite.
"""

import pytest
import pytest_asyncio
from sqlalchemy import event

from sovereign.errors import RecordConflict, StoreUnavailable
from sovereign.models.jobs import JobStatus, ScraperJobResult
from sovereign.models.records import utcnow
from sovereign.store import MemoryStore, RecordRepository, SqlStore, open_store
from sovereign.store.gateway import DOCUMENTS, ENTITIES, JOB_RESULTS, PROPERTIES
from sovereign.config import Settings

from fixtures.records import make_document, make_property


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def gateway(request, tmp_path):
    if request.param == "memory":
        store = MemoryStore()
    else:
        store = SqlStore(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    async with store:
        yield store


class TestUpsert:
    """Upserts are idempotent per key."""

    async def test_first_write_creates(self, gateway):
        result = await gateway.upsert(PROPERTIES, ("fl", "P-1"), {"parcel_id": "P-1"})

        assert result.created
        assert await gateway.get(PROPERTIES, ("fl", "P-1")) == {"parcel_id": "P-1"}

    async def test_same_fields_twice_is_unchanged_update(self, gateway):
        await gateway.upsert(PROPERTIES, ("fl", "P-1"), {"parcel_id": "P-1", "value": 10})
        result = await gateway.upsert(PROPERTIES, ("fl", "P-1"), {"parcel_id": "P-1", "value": 10})

        assert result.updated
        assert not result.changed
        assert await gateway.count(PROPERTIES) == 1

    async def test_new_fields_replace_row(self, gateway):
        await gateway.upsert(PROPERTIES, ("fl", "P-1"), {"parcel_id": "P-1", "value": 10})
        result = await gateway.upsert(PROPERTIES, ("fl", "P-1"), {"parcel_id": "P-1", "value": 20})

        assert result.changed
        assert (await gateway.get(PROPERTIES, ("fl", "P-1")))["value"] == 20

    async def test_append_only_table_rejects_upsert(self, gateway):
        with pytest.raises(RecordConflict):
            await gateway.upsert(JOB_RESULTS, ("job_1",), {"job_id": "job_1"})


class TestInsertAndQuery:
    async def test_insert_conflict(self, gateway):
        await gateway.insert(JOB_RESULTS, ("job_1",), {"job_id": "job_1"})

        with pytest.raises(RecordConflict):
            await gateway.insert(JOB_RESULTS, ("job_1",), {"job_id": "job_1"})

    async def test_query_equality_and_membership_filters(self, gateway):
        for parcel, jurisdiction in [("P-1", "fl"), ("P-2", "fl"), ("P-3", "az")]:
            await gateway.upsert(
                DOCUMENTS, (jurisdiction, parcel), {"parcel_id": parcel, "jurisdiction": jurisdiction}
            )

        fl_rows = await gateway.query(DOCUMENTS, {"jurisdiction": "fl"})
        picked = await gateway.query(DOCUMENTS, {"parcel_id": ["P-1", "P-3"]})

        assert {r["parcel_id"] for r in fl_rows} == {"P-1", "P-2"}
        assert {r["parcel_id"] for r in picked} == {"P-1", "P-3"}
        assert len(await gateway.query(DOCUMENTS, limit=2)) == 2

    async def test_null_and_unindexed_filters(self, gateway):
        await gateway.upsert(ENTITIES, ("ENT-1",), {"entity_id": "ENT-1", "merged_into": None})
        await gateway.upsert(ENTITIES, ("ENT-2",), {"entity_id": "ENT-2", "merged_into": "ENT-1"})
        for number, kind in [("D-1", "MORTGAGE"), ("D-2", "DEED"), ("D-3", "MORTGAGE")]:
            await gateway.upsert(
                DOCUMENTS, ("fl", number), {"jurisdiction": "fl", "document_type": kind}
            )

        live = await gateway.query(ENTITIES, {"merged_into": None})
        mortgages = await gateway.query(DOCUMENTS, {"jurisdiction": "fl", "document_type": "MORTGAGE"}, limit=1)

        assert [r["entity_id"] for r in live] == ["ENT-1"]
        assert len(mortgages) == 1
        assert mortgages[0]["document_type"] == "MORTGAGE"

    async def test_delete(self, gateway):
        await gateway.upsert(PROPERTIES, ("fl", "P-1"), {"parcel_id": "P-1"})

        assert await gateway.delete(PROPERTIES, ("fl", "P-1"))
        assert not await gateway.delete(PROPERTIES, ("fl", "P-1"))
        assert await gateway.get(PROPERTIES, ("fl", "P-1")) is None

    async def test_unknown_table(self, gateway):
        with pytest.raises(ValueError):
            await gateway.get("parcels", ("fl", "P-1"))


class TestSqlFilters:
    """Query filters on indexed fields are evaluated by the database."""

    @pytest_asyncio.fixture
    async def sql_store(self, tmp_path):
        async with SqlStore(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}") as store:
            yield store

    async def test_filter_runs_in_where_clause(self, sql_store):
        statements = []

        def record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        event.listen(sql_store.engine.sync_engine, "before_cursor_execute", record)
        for parcel in ("P-1", "P-2", "P-3"):
            await sql_store.upsert(DOCUMENTS, ("fl", parcel), {"parcel_id": parcel, "jurisdiction": "fl"})

        rows = await sql_store.query(DOCUMENTS, {"jurisdiction": "fl", "parcel_id": "P-2"})

        assert rows == [{"parcel_id": "P-2", "jurisdiction": "fl"}]
        assert any("documents.parcel_id" in s and "WHERE" in s for s in statements)

    async def test_update_moves_row_between_filters(self, sql_store):
        await sql_store.upsert(DOCUMENTS, ("fl", "D-1"), {"parcel_id": "P-1", "jurisdiction": "fl"})
        await sql_store.upsert(DOCUMENTS, ("fl", "D-1"), {"parcel_id": "P-9", "jurisdiction": "fl"})

        assert await sql_store.query(DOCUMENTS, {"parcel_id": "P-1"}) == []
        assert len(await sql_store.query(DOCUMENTS, {"parcel_id": "P-9"})) == 1


class TestAvailability:
    async def test_closed_memory_store_is_unavailable(self):
        store = MemoryStore()

        with pytest.raises(StoreUnavailable):
            await store.upsert(PROPERTIES, ("fl", "P-1"), {})

    async def test_unopened_sql_store_is_unavailable(self, tmp_path):
        store = SqlStore(f"sqlite+aiosqlite:///{tmp_path / 'never.db'}")

        with pytest.raises(StoreUnavailable):
            await store.get(PROPERTIES, ("fl", "P-1"))

    def test_open_store_selects_backend(self):
        assert isinstance(open_store(Settings(database_url="memory://")), MemoryStore)
        assert isinstance(
            open_store(Settings(database_url="sqlite+aiosqlite:///./x.db")), SqlStore
        )


class TestRecordRepository:
    """Record round trips through the repository."""

    async def test_save_and_load_record(self, gateway):
        repository = RecordRepository(gateway)
        record = make_property()

        first = await repository.save(record)
        second = await repository.save(record)
        loaded = await repository.load(record.ref)

        assert first.created
        assert second.updated
        assert loaded == record

    async def test_documents_for_parcel(self, gateway):
        repository = RecordRepository(gateway)
        await repository.save(make_document())
        await repository.save(make_document(document_number="2020-1", parcel_id="P-9"))

        docs = await repository.documents_for_parcel("test_beach_fl", "P-1001")

        assert [d.document_number for d in docs] == ["2011-000123"]

    async def test_job_results_are_ordered(self, gateway):
        repository = RecordRepository(gateway)
        for job_id in ("job_a", "job_b"):
            await repository.append_job_result(
                ScraperJobResult(
                    job_id=job_id,
                    jurisdiction_id="test_beach_fl",
                    status=JobStatus.COMPLETED,
                    started_at=utcnow(),
                    completed_at=utcnow(),
                )
            )

        results = await repository.job_results("test_beach_fl")

        assert [r.job_id for r in results] == ["job_a", "job_b"]
