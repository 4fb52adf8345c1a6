"""SQLAlchemy-backed store gateway.

Each logical table is a key/JSON table with the fields that queries
filter on copied into indexed columns. Upserts use
INSERT ... ON CONFLICT ... DO UPDATE, which both SQLite and PostgreSQL
support. Works with aiosqlite for local runs and asyncpg in production.
"""

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    ColumnElement,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    bindparam,
    or_,
    select,
    text,
)
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..errors import RecordConflict, StoreError, StoreUnavailable
from ..logging import get_context_logger
from .gateway import (
    ALL_TABLES,
    APPEND_ONLY_TABLES,
    COURT_CASES,
    DOCUMENTS,
    ENTITIES,
    ENTITY_INDEX,
    HOUSEHOLD_LINKS,
    JOB_RESULTS,
    PROFESSIONAL_RECORDS,
    PROPERTIES,
    RECORD_LINKS,
    REVIEW_QUEUE,
    SIGNALS,
    Key,
    StoreGateway,
    UpsertResult,
    matches_filter,
    normalize_key,
)

logger = get_context_logger(__name__)

# Naming convention for constraints (improves migration compatibility)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

# Top-level fields copied into indexed columns so that query filters run in SQL
FILTER_COLUMNS: dict[str, tuple[str, ...]] = {
    PROPERTIES: ("jurisdiction",),
    DOCUMENTS: ("jurisdiction", "parcel_id"),
    COURT_CASES: ("jurisdiction",),
    PROFESSIONAL_RECORDS: ("jurisdiction",),
    ENTITIES: ("merged_into",),
    ENTITY_INDEX: ("kind", "value", "entity_id"),
    RECORD_LINKS: ("entity_id",),
    HOUSEHOLD_LINKS: ("entity_a", "entity_b"),
    REVIEW_QUEUE: ("mention_key", "status", "candidate_entity_id"),
    SIGNALS: ("entity_id",),
    JOB_RESULTS: ("jurisdiction_id",),
}

TABLES: dict[str, Table] = {
    name: Table(
        name,
        metadata,
        Column("key", String(512), primary_key=True),
        Column("fields", Text, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
        *(Column(column, String(512), index=True) for column in FILTER_COLUMNS.get(name, ())),
    )
    for name in ALL_TABLES
}


def _encode_key(key: Key) -> str:
    return json.dumps(list(normalize_key(key)))


def _column_value(value: Any) -> str | None:
    return None if value is None else str(value)


def _filter_columns(table: str, fields: dict[str, Any]) -> dict[str, str | None]:
    return {name: _column_value(fields.get(name)) for name in FILTER_COLUMNS.get(table, ())}


def _where(table: str, filter: dict[str, Any]) -> tuple[list[ColumnElement[bool]], bool]:
    """SQL conditions for the filter entries that have a column.

    The flag is True when every entry was pushed down.
    """
    sql_table = TABLES[table]
    conditions = []
    complete = True
    for name, expected in filter.items():
        if name not in FILTER_COLUMNS.get(table, ()):
            complete = False
            continue
        column = sql_table.c[name]
        if isinstance(expected, (list, tuple, set, frozenset)):
            values = [_column_value(v) for v in expected if v is not None]
            condition = column.in_(values)
            if any(v is None for v in expected):
                condition = or_(condition, column.is_(None))
            conditions.append(condition)
        elif expected is None:
            conditions.append(column.is_(None))
        else:
            conditions.append(column == _column_value(expected))
    return conditions, complete


def _is_connection_error(error: Exception) -> bool:
    if isinstance(error, (OperationalError, InterfaceError, OSError, ConnectionError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class SqlStore(StoreGateway):
    """Gateway over an async SQLAlchemy engine."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self._engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StoreUnavailable("SQL store is not open")
        return self._engine

    async def open(self) -> None:
        if self._engine is not None:
            return
        engine = create_async_engine(self.database_url, echo=self.echo, pool_pre_ping=True)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except Exception as e:
            await engine.dispose()
            if _is_connection_error(e):
                raise StoreUnavailable(f"Cannot open store: {e}") from e
            raise
        self._engine = engine
        logger.info("SQL store opened", extra={"dialect": engine.dialect.name})

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    def _check_table(self, table: str) -> Table:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    def _wrap(self, error: Exception, action: str) -> StoreError:
        if _is_connection_error(error):
            return StoreUnavailable(f"Store unavailable during {action}: {error}")
        return StoreError(f"Store error during {action}: {error}")

    async def upsert(self, table: str, key: Key, fields: dict[str, Any]) -> UpsertResult:
        self._check_table(table)
        if table in APPEND_ONLY_TABLES:
            raise RecordConflict(table, normalize_key(key))
        encoded_key = _encode_key(key)
        payload = json.dumps(fields, sort_keys=True, default=str)
        now = datetime.now(timezone.utc)
        columns = _filter_columns(table, fields)
        names = "".join(f', "{name}"' for name in columns)
        params = "".join(f", :{name}" for name in columns)
        updates = "".join(f',\n                            "{name}" = excluded."{name}"' for name in columns)

        try:
            async with self.engine.begin() as conn:
                existing = await conn.execute(
                    text(f"SELECT fields FROM {table} WHERE key = :key"),
                    {"key": encoded_key},
                )
                previous = existing.scalar_one_or_none()
                await conn.execute(
                    text(f"""
                        INSERT INTO {table} (key, fields, created_at, updated_at{names})
                        VALUES (:key, :fields, :now, :now{params})
                        ON CONFLICT (key) DO UPDATE SET
                            fields = excluded.fields,
                            updated_at = excluded.updated_at{updates}
                    """).bindparams(bindparam("now", type_=DateTime(timezone=True))),
                    {"key": encoded_key, "fields": payload, "now": now, **columns},
                )
        except SQLAlchemyError as e:
            raise self._wrap(e, f"upsert into {table}") from e
        except OSError as e:
            raise StoreUnavailable(f"Store unavailable: {e}") from e

        if previous is None:
            return UpsertResult(created=True)
        return UpsertResult(created=False, changed=json.loads(previous) != json.loads(payload))

    async def insert(self, table: str, key: Key, fields: dict[str, Any]) -> None:
        sql_table = self._check_table(table)
        now = datetime.now(timezone.utc)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    sql_table.insert().values(
                        key=_encode_key(key),
                        fields=json.dumps(fields, sort_keys=True, default=str),
                        created_at=now,
                        updated_at=now,
                        **_filter_columns(table, fields),
                    )
                )
        except IntegrityError as e:
            raise RecordConflict(table, normalize_key(key)) from e
        except SQLAlchemyError as e:
            raise self._wrap(e, f"insert into {table}") from e
        except OSError as e:
            raise StoreUnavailable(f"Store unavailable: {e}") from e

    async def get(self, table: str, key: Key) -> dict[str, Any] | None:
        sql_table = self._check_table(table)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(sql_table.c.fields).where(sql_table.c.key == _encode_key(key))
                )
                raw = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._wrap(e, f"get from {table}") from e
        except OSError as e:
            raise StoreUnavailable(f"Store unavailable: {e}") from e
        return json.loads(raw) if raw is not None else None

    async def query(
        self,
        table: str,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql_table = self._check_table(table)
        conditions, complete = _where(table, filter or {})
        statement = select(sql_table.c.fields).order_by(sql_table.c.created_at, sql_table.c.key)
        if conditions:
            statement = statement.where(*conditions)
        if limit and complete:
            statement = statement.limit(limit)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(statement)
                raw_rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise self._wrap(e, f"query on {table}") from e
        except OSError as e:
            raise StoreUnavailable(f"Store unavailable: {e}") from e

        rows = []
        for raw in raw_rows:
            fields = json.loads(raw)
            if matches_filter(fields, filter):
                rows.append(fields)
                if limit and len(rows) >= limit:
                    break
        return rows

    async def delete(self, table: str, key: Key) -> bool:
        sql_table = self._check_table(table)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    sql_table.delete().where(sql_table.c.key == _encode_key(key))
                )
        except SQLAlchemyError as e:
            raise self._wrap(e, f"delete from {table}") from e
        return result.rowcount > 0
