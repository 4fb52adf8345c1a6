"""Exception hierarchy for the acquisition and resolution pipeline.

Fetch errors are raised by the HTTP client and handled by source adapters
and scraper jobs. StoreUnavailable is the only error that ends a job.
Ambiguous matches are not exceptions; they are routed to the review queue.
"""

from typing import Any


class SovereignError(Exception):
    """Base class for all pipeline errors."""


# =========================
# Fetch errors
# =========================


class FetchError(SovereignError):
    """A call to an external source failed."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Transport-level failure (DNS, connection reset, TLS)."""


class FetchTimeout(NetworkError):
    """The per-call deadline of a rate limit policy expired."""


class HttpStatusError(FetchError):
    """The source answered with a non-success status code."""

    def __init__(self, status_code: int, url: str | None = None, body: str = ""):
        super().__init__(f"HTTP {status_code} from {url or 'source'}", url=url)
        self.status_code = status_code
        self.body = body[:500]

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class SourceFormatError(SovereignError):
    """A source payload did not match the expected schema."""

    def __init__(self, message: str, row: dict[str, Any] | None = None):
        super().__init__(message)
        self.row = row or {}


# =========================
# Store errors
# =========================


class StoreError(SovereignError):
    """Base class for durable store failures."""


class StoreUnavailable(StoreError):
    """The store cannot be reached. Fatal for a scraper job."""


class RecordConflict(StoreError):
    """An append-only insert hit an existing key."""

    def __init__(self, table: str, key: tuple):
        super().__init__(f"Record {key!r} already exists in {table}")
        self.table = table
        self.key = key


# =========================
# Resolution errors
# =========================


class ResolutionError(SovereignError):
    """Base class for entity resolution failures."""


class EntityNotFound(ResolutionError):
    def __init__(self, entity_id: str):
        super().__init__(f"Entity not found: {entity_id}")
        self.entity_id = entity_id


class MergeNotAllowed(ResolutionError):
    """Merge rejected, e.g. household members without the explicit gate."""


class ReviewItemNotFound(ResolutionError):
    def __init__(self, item_id: str):
        super().__init__(f"Review item not found: {item_id}")
        self.item_id = item_id


class UnknownJurisdiction(SovereignError):
    def __init__(self, jurisdiction_id: str):
        super().__init__(f"Unknown jurisdiction: {jurisdiction_id}")
        self.jurisdiction_id = jurisdiction_id
