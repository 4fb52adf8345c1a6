"""Durable store gateway contract.

The gateway is the only shared mutable resource in the pipeline. Every
call is atomic on its own; writes are scoped by key and use upsert
semantics so that concurrent re-scrapes of the same record are safe.
The handle is constructed explicitly, opened once and closed at shutdown.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

# =========================
# Tables
# =========================

PROPERTIES = "properties"
DOCUMENTS = "documents"
COURT_CASES = "court_cases"
PROFESSIONAL_RECORDS = "professional_records"
DEMOGRAPHICS = "demographics"
ENTITIES = "entities"
ENTITY_INDEX = "entity_index"
RECORD_LINKS = "record_links"
HOUSEHOLD_LINKS = "household_links"
REVIEW_QUEUE = "review_queue"
SIGNALS = "signals"
JOB_RESULTS = "job_results"

ALL_TABLES = (
    PROPERTIES,
    DOCUMENTS,
    COURT_CASES,
    PROFESSIONAL_RECORDS,
    DEMOGRAPHICS,
    ENTITIES,
    ENTITY_INDEX,
    RECORD_LINKS,
    HOUSEHOLD_LINKS,
    REVIEW_QUEUE,
    SIGNALS,
    JOB_RESULTS,
)

# Tables that only accept inserts
APPEND_ONLY_TABLES = frozenset({JOB_RESULTS})

Key = tuple[str, ...]


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of an upsert."""

    created: bool
    changed: bool = True

    @property
    def updated(self) -> bool:
        return not self.created


def normalize_key(key: Key | list | str) -> Key:
    if isinstance(key, str):
        return (key,)
    return tuple(str(part) for part in key)


def matches_filter(fields: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    """Equality filter over top-level fields.

    A list, tuple or set filter value means "field is one of these".
    """
    if not filter:
        return True
    for name, expected in filter.items():
        actual = fields.get(name)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class StoreGateway(ABC):
    """Abstract durable store with upsert semantics."""

    async def __aenter__(self) -> "StoreGateway":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abstractmethod
    async def open(self) -> None:
        """Connect and make sure every table exists."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def upsert(self, table: str, key: Key, fields: dict[str, Any]) -> UpsertResult:
        """Insert or replace the row stored under key.

        Args:
            table: Table name
            key: Natural key tuple
            fields: JSON-compatible field dict

        Returns:
            Whether the row was created and whether its fields changed

        Raises:
            StoreUnavailable: The store cannot be reached
            RecordConflict: The table is append-only
        """
        ...

    @abstractmethod
    async def insert(self, table: str, key: Key, fields: dict[str, Any]) -> None:
        """Append a row. Raises RecordConflict if the key exists."""
        ...

    @abstractmethod
    async def get(self, table: str, key: Key) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def query(
        self,
        table: str,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows whose fields match an equality filter."""
        ...

    @abstractmethod
    async def delete(self, table: str, key: Key) -> bool:
        ...

    async def count(self, table: str, filter: dict[str, Any] | None = None) -> int:
        return len(await self.query(table, filter))
