"""Recorder and court indexes served as paged JSON."""

from typing import Any, AsyncIterator

from ..config import get_settings
from ..errors import SourceFormatError
from ..http import RateLimitedClient, RateLimitPolicy
from ..models.jobs import JobOptions
from ..models.records import CourtCaseRecord, DocumentRecord, RecordTable
from .base import (
    FieldMap,
    RetryConfig,
    SourceAdapter,
    build_record,
    clean_str,
    split_names,
    to_date,
    to_money,
    with_retry,
)
from .jurisdictions import JsonIndexEndpoint, JurisdictionConfig
from .mapping import map_case_type, map_document_type

DOCUMENT_CONVERTERS = {
    "document_number": lambda v: clean_str(v),
    "document_type": map_document_type,
    "recording_date": to_date,
    "original_loan_date": to_date,
    "satisfaction_date": to_date,
    "document_amount": to_money,
    "property_zip": lambda v: str(v).strip()[:5],
}

COURT_CONVERTERS = {
    "case_number": lambda v: clean_str(v),
    "case_type": map_case_type,
    "filing_date": to_date,
    "next_hearing_date": to_date,
    "disposition_date": to_date,
    "party_names": split_names,
    "related_properties": split_names,
}


class JsonIndexAdapter(SourceAdapter):
    """Generic paged JSON index.

    The same class serves recorder indexes (kind="recorder", documents) and
    court indexes (kind="court", court cases); the endpoint configuration
    carries the column mapping.
    """

    def __init__(
        self,
        jurisdiction: JurisdictionConfig,
        client: RateLimitedClient,
        endpoint: JsonIndexEndpoint,
        kind: str = "recorder",
        policy: RateLimitPolicy | None = None,
        retry: RetryConfig | None = None,
    ):
        if kind not in ("recorder", "court"):
            raise ValueError(f"Unsupported index kind: {kind}")
        self.kind = kind
        super().__init__(jurisdiction)
        self.client = client
        self.endpoint = endpoint
        self.policy = policy or RateLimitPolicy(
            requests_per_minute=jurisdiction.requests_per_minute,
            delay_ms=jurisdiction.delay_ms,
            timeout_ms=get_settings().http_timeout_ms,
        )
        self.retry = retry or RetryConfig()
        if kind == "recorder":
            self.handles = frozenset({RecordTable.DOCUMENTS})
            self.field_map = FieldMap(
                columns=endpoint.columns,
                converters=DOCUMENT_CONVERTERS,
                required=("document_number",),
            )
        else:
            self.handles = frozenset({RecordTable.COURT_CASES})
            self.field_map = FieldMap(
                columns=endpoint.columns,
                converters=COURT_CONVERTERS,
                required=("case_number",),
            )

    async def _pages(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        max_records = options.max_records or get_settings().default_max_records
        fetched = 0
        offset = 0
        while fetched < max_records:
            limit = min(self.endpoint.page_size, max_records - fetched)
            params: dict[str, Any] = {
                self.endpoint.offset_param: offset,
                self.endpoint.limit_param: limit,
            }
            if options.start_date:
                params[self.endpoint.start_param] = options.start_date.isoformat()
            if options.end_date:
                params[self.endpoint.end_param] = options.end_date.isoformat()

            data = await with_retry(
                lambda: self.client.get_json(self.endpoint.url, self.policy, params=params),
                self.retry,
                self.logger,
            )
            rows = self._rows(data)
            self.logger.info(f"Fetched {len(rows)} {self.kind} rows (offset {offset})")
            for row in rows:
                yield row
            fetched += len(rows)
            offset += len(rows)
            if len(rows) < limit:
                break

    def _rows(self, data: Any) -> list[dict[str, Any]]:
        if self.endpoint.rows_key:
            if not isinstance(data, dict) or self.endpoint.rows_key not in data:
                raise SourceFormatError(
                    f"{self.name}: payload has no '{self.endpoint.rows_key}' key"
                )
            data = data[self.endpoint.rows_key]
        if not isinstance(data, list):
            raise SourceFormatError(f"{self.name}: expected a list of rows")
        return data

    async def fetch_documents(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        if self.kind != "recorder":
            return
        async for row in self._pages(options):
            yield row

    async def fetch_court_cases(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        if self.kind != "court":
            return
        async for row in self._pages(options):
            yield row

    def parse_document(self, row: dict[str, Any]) -> DocumentRecord:
        data = self.field_map.extract(row)
        return build_record(DocumentRecord, {**self._common(), **data}, row)

    def parse_court_case(self, row: dict[str, Any]) -> CourtCaseRecord:
        data = self.field_map.extract(row)
        return build_record(CourtCaseRecord, {**self._common(), **data}, row)
