"""In-process store for tests, dry runs and offline fixtures."""

import asyncio
import copy
from typing import Any

from ..errors import RecordConflict, StoreUnavailable
from .gateway import (
    ALL_TABLES,
    APPEND_ONLY_TABLES,
    Key,
    StoreGateway,
    UpsertResult,
    matches_filter,
    normalize_key,
)


class MemoryStore(StoreGateway):
    """Dict-backed gateway. Rows are copied in and out."""

    def __init__(self):
        self._tables: dict[str, dict[Key, dict[str, Any]]] = {t: {} for t in ALL_TABLES}
        self._lock = asyncio.Lock()
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    def _table(self, table: str) -> dict[Key, dict[str, Any]]:
        if not self._open:
            raise StoreUnavailable("Memory store is not open")
        try:
            return self._tables[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    async def upsert(self, table: str, key: Key, fields: dict[str, Any]) -> UpsertResult:
        if table in APPEND_ONLY_TABLES:
            raise RecordConflict(table, normalize_key(key))
        key = normalize_key(key)
        async with self._lock:
            rows = self._table(table)
            existing = rows.get(key)
            rows[key] = copy.deepcopy(fields)
        if existing is None:
            return UpsertResult(created=True)
        return UpsertResult(created=False, changed=existing != fields)

    async def insert(self, table: str, key: Key, fields: dict[str, Any]) -> None:
        key = normalize_key(key)
        async with self._lock:
            rows = self._table(table)
            if key in rows:
                raise RecordConflict(table, key)
            rows[key] = copy.deepcopy(fields)

    async def get(self, table: str, key: Key) -> dict[str, Any] | None:
        row = self._table(table).get(normalize_key(key))
        return copy.deepcopy(row) if row is not None else None

    async def query(
        self,
        table: str,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        results = []
        for fields in list(self._table(table).values()):
            if matches_filter(fields, filter):
                results.append(copy.deepcopy(fields))
                if limit and len(results) >= limit:
                    break
        return results

    async def delete(self, table: str, key: Key) -> bool:
        async with self._lock:
            return self._table(table).pop(normalize_key(key), None) is not None
