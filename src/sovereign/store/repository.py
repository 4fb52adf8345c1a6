"""Record-level helpers over the store gateway."""

from datetime import datetime
from typing import Any

from ..models.jobs import ScraperJobResult
from ..models.records import (
    CourtCaseRecord,
    DocumentRecord,
    NormalizedRecord,
    RecordRef,
    RecordTable,
    record_from_fields,
)
from .gateway import DEMOGRAPHICS, DOCUMENTS, JOB_RESULTS, StoreGateway, UpsertResult


class RecordRepository:
    """Reads and writes normalized records keyed by (jurisdiction, natural key)."""

    def __init__(self, store: StoreGateway):
        self.store = store

    async def save(self, record: NormalizedRecord) -> UpsertResult:
        return await self.store.upsert(record.TABLE.value, record.key, record.to_fields())

    async def load(self, ref: RecordRef) -> NormalizedRecord | None:
        fields = await self.store.get(ref.table.value, ref.key)
        if fields is None:
            return None
        return record_from_fields(ref.table, fields)

    async def load_many(self, refs: list[RecordRef]) -> list[NormalizedRecord]:
        records = []
        for ref in refs:
            record = await self.load(ref)
            if record is not None:
                records.append(record)
        return records

    async def records_for_jurisdiction(
        self, table: RecordTable, jurisdiction: str | None = None
    ) -> list[NormalizedRecord]:
        filter = {"jurisdiction": jurisdiction} if jurisdiction else None
        rows = await self.store.query(table.value, filter)
        return [record_from_fields(table, row) for row in rows]

    async def documents_for_parcel(self, jurisdiction: str, parcel_id: str) -> list[DocumentRecord]:
        rows = await self.store.query(
            DOCUMENTS, {"jurisdiction": jurisdiction, "parcel_id": parcel_id}
        )
        return [DocumentRecord.model_validate(row) for row in rows]

    async def parcels_scraped_since(self, jurisdiction: str, since: datetime) -> set[str]:
        """Parcels named by documents and court cases scraped at or after ``since``."""
        parcels: set[str] = set()
        for record in await self.records_for_jurisdiction(RecordTable.DOCUMENTS, jurisdiction):
            if isinstance(record, DocumentRecord) and record.parcel_id and record.scraped_at >= since:
                parcels.add(record.parcel_id)
        for record in await self.records_for_jurisdiction(RecordTable.COURT_CASES, jurisdiction):
            if isinstance(record, CourtCaseRecord) and record.scraped_at >= since:
                parcels.update(record.related_properties)
        return parcels

    # =========================
    # Demographics
    # =========================

    async def save_demographics(self, jurisdiction: str, fields: dict[str, Any]) -> UpsertResult:
        return await self.store.upsert(DEMOGRAPHICS, (jurisdiction,), fields)

    async def get_demographics(self, jurisdiction: str) -> dict[str, Any] | None:
        return await self.store.get(DEMOGRAPHICS, (jurisdiction,))

    # =========================
    # Job results (append-only)
    # =========================

    async def append_job_result(self, result: ScraperJobResult) -> None:
        await self.store.insert(JOB_RESULTS, (result.job_id,), result.model_dump(mode="json"))

    async def job_results(self, jurisdiction_id: str | None = None) -> list[ScraperJobResult]:
        filter = {"jurisdiction_id": jurisdiction_id} if jurisdiction_id else None
        rows = await self.store.query(JOB_RESULTS, filter)
        results = [ScraperJobResult.model_validate(row) for row in rows]
        return sorted(results, key=lambda r: r.started_at)
