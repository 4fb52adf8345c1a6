"""Assessor parcels from an ArcGIS feature service."""

from typing import Any, AsyncIterator

from ..config import get_settings
from ..http import RateLimitedClient, RateLimitPolicy, query_arcgis
from ..models.jobs import JobOptions
from ..models.records import PropertyRecord, RecordTable
from .base import (
    FieldMap,
    RetryConfig,
    SourceAdapter,
    build_record,
    clean_str,
    to_date,
    to_int,
    to_money,
    with_retry,
)
from .jurisdictions import ArcGISLayer, JurisdictionConfig
from .mapping import map_property_type

PROPERTY_CONVERTERS = {
    "parcel_id": lambda v: clean_str(v),
    "owner_name": lambda v: clean_str(v),
    "property_zip": lambda v: str(v).strip()[:5],
    "assessed_value": to_money,
    "market_value": to_money,
    "land_value": to_money,
    "improvement_value": to_money,
    "tax_amount": to_money,
    "last_sale_price": to_money,
    "year_built": to_int,
    "square_feet": to_int,
    "bedrooms": to_int,
    "bathrooms": to_money,
    "last_sale_date": to_date,
    "property_type": map_property_type,
}


class ArcGISAssessorAdapter(SourceAdapter):
    """Pages through a parcel layer ordered by value, above a value floor."""

    kind = "assessor"
    handles = frozenset({RecordTable.PROPERTIES})

    def __init__(
        self,
        jurisdiction: JurisdictionConfig,
        client: RateLimitedClient,
        layer: ArcGISLayer,
        policy: RateLimitPolicy | None = None,
        page_size: int = 1000,
        retry: RetryConfig | None = None,
    ):
        super().__init__(jurisdiction)
        self.client = client
        self.layer = layer
        self.policy = policy or RateLimitPolicy(
            requests_per_minute=jurisdiction.requests_per_minute,
            delay_ms=jurisdiction.delay_ms,
            timeout_ms=get_settings().http_timeout_ms,
        )
        self.page_size = page_size
        self.retry = retry or RetryConfig()
        self.field_map = FieldMap(
            columns=layer.columns,
            converters=PROPERTY_CONVERTERS,
            constants={"county": jurisdiction.county, "state": jurisdiction.state},
            required=("parcel_id", "owner_name"),
        )

    async def fetch_properties(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        settings = get_settings()
        min_value = (
            options.min_property_value
            if options.min_property_value is not None
            else settings.default_min_property_value
        )
        max_records = options.max_records or settings.default_max_records
        where = f"{self.layer.value_field} > {int(min_value)}"

        fetched = 0
        offset = 0
        while fetched < max_records:
            page_size = min(self.page_size, max_records - fetched)
            rows = await with_retry(
                lambda: query_arcgis(
                    self.client,
                    self.layer.service_url,
                    self.policy,
                    where=where,
                    result_record_count=page_size,
                    result_offset=offset,
                    order_by_fields=f"{self.layer.value_field} DESC",
                ),
                self.retry,
                self.logger,
            )
            self.logger.info(
                f"Fetched {len(rows)} parcels above ${min_value:,} (offset {offset})"
            )
            for row in rows:
                yield row
            fetched += len(rows)
            offset += len(rows)
            if len(rows) < page_size:
                break

    def parse_property(self, row: dict[str, Any]) -> PropertyRecord:
        data = self.field_map.extract(row)
        if not data.get("property_city") and self.layer.default_city:
            data["property_city"] = self.layer.default_city
        return build_record(PropertyRecord, {**self._common(), **data}, row)
