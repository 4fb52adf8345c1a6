"""Adapter over rows already in memory or in JSON fixture files.

Rows use record field names directly. Used for offline runs, seeded
jurisdictions without a live feed, and tests.
"""

import json
from pathlib import Path
from typing import Any, AsyncIterator

from ..errors import SourceFormatError
from ..models.jobs import JobOptions
from ..models.records import CourtCaseRecord, DocumentRecord, PropertyRecord, RecordTable
from .base import SourceAdapter, build_record
from .jurisdictions import JurisdictionConfig
from .mapping import map_case_type, map_document_type, map_property_type

FIXTURE_FILES = {
    RecordTable.PROPERTIES: "properties.json",
    RecordTable.DOCUMENTS: "documents.json",
    RecordTable.COURT_CASES: "court_cases.json",
}


class StaticAdapter(SourceAdapter):
    kind = "static"

    def __init__(
        self,
        jurisdiction: JurisdictionConfig,
        properties: list[dict[str, Any]] | None = None,
        documents: list[dict[str, Any]] | None = None,
        court_cases: list[dict[str, Any]] | None = None,
        name: str | None = None,
    ):
        super().__init__(jurisdiction, name=name)
        self.rows = {
            RecordTable.PROPERTIES: list(properties or []),
            RecordTable.DOCUMENTS: list(documents or []),
            RecordTable.COURT_CASES: list(court_cases or []),
        }
        self.handles = frozenset(table for table, rows in self.rows.items() if rows)

    @classmethod
    def from_directory(cls, jurisdiction: JurisdictionConfig, path: str | Path) -> "StaticAdapter":
        """Load <path>/{properties,documents,court_cases}.json where present."""
        directory = Path(path)
        loaded: dict[RecordTable, list] = {}
        for table, filename in FIXTURE_FILES.items():
            file_path = directory / filename
            if file_path.exists():
                with open(file_path, encoding="utf-8") as f:
                    loaded[table] = json.load(f)
        return cls(
            jurisdiction,
            properties=loaded.get(RecordTable.PROPERTIES),
            documents=loaded.get(RecordTable.DOCUMENTS),
            court_cases=loaded.get(RecordTable.COURT_CASES),
            name=f"{jurisdiction.id}.fixtures",
        )

    async def _iterate(self, table: RecordTable, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        rows = self.rows[table]
        if options.max_records:
            rows = rows[: options.max_records]
        for row in rows:
            yield row

    async def fetch_properties(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        async for row in self._iterate(RecordTable.PROPERTIES, options):
            yield row

    async def fetch_documents(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        async for row in self._iterate(RecordTable.DOCUMENTS, options):
            yield row

    async def fetch_court_cases(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        async for row in self._iterate(RecordTable.COURT_CASES, options):
            yield row

    def _defaults(self) -> dict[str, Any]:
        return {
            **self._common(),
            "county": self.jurisdiction.county,
            "state": self.jurisdiction.state,
        }

    @staticmethod
    def _fields(row: Any, field: str, mapper) -> dict[str, Any]:
        if not isinstance(row, dict):
            raise SourceFormatError(f"Expected a row object, got {type(row).__name__}")
        data = dict(row)
        if data.get(field) is not None:
            data[field] = mapper(str(data[field]))
        return data

    def parse_property(self, row: dict[str, Any]) -> PropertyRecord:
        data = self._fields(row, "property_type", map_property_type)
        return build_record(PropertyRecord, {**self._defaults(), **data}, row)

    def parse_document(self, row: dict[str, Any]) -> DocumentRecord:
        data = self._fields(row, "document_type", map_document_type)
        return build_record(DocumentRecord, {**self._common(), **data}, row)

    def parse_court_case(self, row: dict[str, Any]) -> CourtCaseRecord:
        data = self._fields(row, "case_type", map_case_type)
        return build_record(CourtCaseRecord, {**self._common(), **data}, row)
