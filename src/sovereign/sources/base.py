"""Source adapter interface.

A source adapter knows how to page through one public-record source and
how to turn a raw row into a normalized record. Adapters are selected per
jurisdiction by the registry; there is no per-county subclass tree.
"""

import asyncio
from abc import ABC
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel, ValidationError

from ..errors import NetworkError, SourceFormatError
from ..logging import get_context_logger
from ..models.jobs import JobOptions
from ..models.records import (
    CourtCaseRecord,
    DocumentRecord,
    NormalizedRecord,
    ProfessionalRecord,
    PropertyRecord,
    RecordTable,
)
from .jurisdictions import JurisdictionConfig


# =========================
# Retry
# =========================


class RetryConfig(BaseModel):
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0


async def with_retry(
    func,
    config: RetryConfig | None = None,
    logger=None,
    retry_on: tuple[type[BaseException], ...] = (NetworkError,),
):
    """Execute a function with exponential backoff retry.

    Only exceptions listed in retry_on are retried; anything else
    propagates immediately.

    Args:
        func: Async function to execute
        config: Retry configuration
        logger: Optional logger for retry messages
        retry_on: Exception types worth another attempt

    Returns:
        Function result

    Raises:
        Exception: If all retries are exhausted
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= config.max_retries:
                if logger:
                    logger.error(f"All {config.max_retries + 1} attempts failed")
                raise

            delay = min(
                config.base_delay * (config.exponential_base ** attempt),
                config.max_delay,
            )
            if logger:
                logger.warning(
                    f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s"
                )
            await asyncio.sleep(delay)


# =========================
# Field coercion
# =========================


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_money(value: Any) -> float | None:
    """Parse "$1,250,000.00", 1250000 or "1250000" into a float."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace("$", "").replace(",", "").strip()
    if not text:
        return None
    return float(text)


def to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(float(str(value).replace(",", "")))


def to_date(value: Any) -> date | None:
    """Accept ISO strings, US dates, datetimes and ArcGIS epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y%m%d", "%m-%d-%Y"):
        try:
            return datetime.strptime(text[:10] if fmt == "%Y-%m-%d" else text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {value!r}")


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() in {"1", "Y", "YES", "TRUE", "T", "H", "HX"}


def split_names(value: Any) -> list[str]:
    """Party lists arrive either as JSON lists or as ';' separated text."""
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(";") if part.strip()]


@dataclass
class FieldMap:
    """Declarative mapping from a source's columns to record fields.

    Attributes:
        columns: record field -> source column name
        converters: record field -> coercion function
        constants: fields set on every record from this source
        required: record fields that must be present after mapping
    """

    columns: dict[str, str]
    converters: dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    constants: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def extract(self, row: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(row, dict):
            raise SourceFormatError(f"Expected a row object, got {type(row).__name__}")

        data = dict(self.constants)
        for target, column in self.columns.items():
            value = row.get(column)
            if isinstance(value, str):
                value = value.strip() or None
            if value is not None and target in self.converters:
                try:
                    value = self.converters[target](value)
                except (TypeError, ValueError) as e:
                    raise SourceFormatError(
                        f"Bad value for {column}: {value!r}", row=row
                    ) from e
            if value is not None:
                data[target] = value

        missing = [name for name in self.required if data.get(name) in (None, "")]
        if missing:
            raise SourceFormatError(
                f"Missing required fields: {', '.join(missing)}", row=row
            )
        return data


def build_record(model: type[NormalizedRecord], data: dict[str, Any], row: dict[str, Any]):
    """Validate mapped data into a record, turning validation failures into SourceFormatError."""
    try:
        return model(**data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise SourceFormatError(
            f"Invalid {model.__name__}: {location} {first.get('msg', str(e))}".strip(),
            row=row,
        ) from e


# =========================
# Adapter interface
# =========================


class SourceAdapter(ABC):
    """Pluggable source of raw rows for one jurisdiction.

    Adapters yield raw rows from the fetch_* generators and map each row
    with the matching parse_* method. An adapter that does not serve a
    record kind yields nothing for it.
    """

    kind = "source"
    handles: frozenset[RecordTable] = frozenset()

    def __init__(self, jurisdiction: JurisdictionConfig, name: str | None = None):
        self.jurisdiction = jurisdiction
        self.name = name or f"{jurisdiction.id}.{self.kind}"
        self.logger = get_context_logger(
            f"sovereign.sources.{self.kind}", source=self.name, jurisdiction=jurisdiction.id
        )

    def serves(self, table: RecordTable) -> bool:
        return table in self.handles

    async def fetch_properties(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        return
        yield

    async def fetch_documents(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        return
        yield

    async def fetch_court_cases(self, options: JobOptions) -> AsyncIterator[dict[str, Any]]:
        return
        yield

    def parse_property(self, row: dict[str, Any]) -> PropertyRecord:
        raise SourceFormatError(f"{self.name} does not produce properties", row=row)

    def parse_document(self, row: dict[str, Any]) -> DocumentRecord:
        raise SourceFormatError(f"{self.name} does not produce documents", row=row)

    def parse_court_case(self, row: dict[str, Any]) -> CourtCaseRecord:
        raise SourceFormatError(f"{self.name} does not produce court cases", row=row)

    def _common(self) -> dict[str, Any]:
        return {"jurisdiction": self.jurisdiction.id, "source": self.name}

    async def close(self) -> None:
        """Release adapter resources. The shared HTTP client is closed by its owner."""


class FederalSource(ABC):
    """Read-only external registry queried by jurisdiction key.

    Failures surface as FetchError/SourceFormatError and are caught and
    logged by the owning job.
    """

    kind = "federal"

    def __init__(self, jurisdiction: JurisdictionConfig, name: str | None = None):
        self.jurisdiction = jurisdiction
        self.name = name or f"{jurisdiction.id}.{self.kind}"
        self.logger = get_context_logger(
            f"sovereign.sources.{self.kind}", source=self.name, jurisdiction=jurisdiction.id
        )

    async def fetch_by_jurisdiction_key(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    def parse_row(self, row: dict[str, Any]) -> ProfessionalRecord | dict[str, Any]:
        """Map a row to a ProfessionalRecord, or to a demographics dict."""
        raise NotImplementedError
