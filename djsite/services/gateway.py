"""Remote data gateway with in-memory and Postgres backends."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

from sqlalchemy import Uuid, delete, false, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from djsite.config import Settings, settings
from djsite.db import get_session_factory
from djsite.models import TABLE_MODELS

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

TABLES = frozenset(TABLE_MODELS)

_TABLE_DEFAULTS: Dict[str, Row] = {
    "albums": {
        "description": None,
        "cover_image_url": None,
        "is_published": False,
    },
    "photos": {
        "album_id": None,
        "title": None,
        "description": None,
        "thumbnail_url": None,
        "width": None,
        "height": None,
        "size_bytes": None,
        "is_published": True,
        "display_order": 0,
    },
    "videos": {
        "description": None,
        "thumbnail_url": None,
        "storage_path": None,
        "video_type": "upload",
        "external_id": None,
        "duration_seconds": None,
        "is_featured": False,
        "is_published": True,
        "display_order": 0,
    },
    "events": {
        "description": None,
        "venue": None,
        "address": None,
        "city": None,
        "state": None,
        "country": "Brasil",
        "start_time": None,
        "end_time": None,
        "cover_image_url": None,
        "ticket_url": None,
        "ticket_price": None,
        "is_featured": False,
        "is_published": True,
        "status": "upcoming",
    },
    "site_settings": {
        "value": None,
        "type": "text",
        "description": None,
    },
    "contact_messages": {
        "phone": None,
        "subject": None,
        "event_type": None,
        "event_date": None,
        "is_read": False,
        "is_archived": False,
    },
}

_TABLES_WITHOUT_UPDATED_AT = frozenset({"contact_messages"})


class GatewayError(RuntimeError):
    """Raised when the backing store rejects or fails a request."""


@dataclass(frozen=True)
class Query:
    """Table read request: equality filters, ordering and an optional limit."""

    table: str
    filters: Mapping[str, Any] = field(default_factory=dict)
    ordering: Tuple[Tuple[str, bool], ...] = ()
    max_rows: int | None = None

    def where(self, **filters: Any) -> "Query":
        merged = dict(self.filters)
        merged.update(filters)
        return replace(self, filters=merged)

    def order(self, column: str, *, descending: bool = False) -> "Query":
        return replace(self, ordering=self.ordering + ((column, descending),))

    def limit(self, count: int) -> "Query":
        return replace(self, max_rows=count)


class DataGateway(Protocol):
    async def select(self, query: Query) -> List[Row]: ...

    async def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int: ...

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row: ...

    async def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> Row | None: ...

    async def update_where(
        self, table: str, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> int: ...

    async def upsert(
        self, table: str, values: Mapping[str, Any], *, conflict_column: str
    ) -> Row: ...

    async def delete(self, table: str, row_id: str) -> bool: ...

    async def delete_many(self, table: str, row_ids: Sequence[str]) -> int: ...

    async def set_exclusive_flag(self, table: str, column: str, row_id: str) -> None: ...


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise GatewayError(f"Unknown table: {table}")


def _matches(row: Row, filters: Mapping[str, Any]) -> bool:
    return all(row.get(column) == value for column, value in filters.items())


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class InMemoryGateway:
    """Ephemeral backing store used for local development and tests."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Row]] = {name: {} for name in TABLES}

    async def select(self, query: Query) -> List[Row]:
        _check_table(query.table)
        rows = [
            copy.deepcopy(row)
            for row in self._tables[query.table].values()
            if _matches(row, query.filters)
        ]
        # Stable sorts applied from the least significant key; None sorts last.
        for column, descending in reversed(query.ordering):
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: row[column], reverse=descending)
            rows = present + missing
        if query.max_rows is not None:
            rows = rows[: query.max_rows]
        return rows

    async def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        _check_table(table)
        return sum(1 for row in self._tables[table].values() if _matches(row, filters or {}))

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        _check_table(table)
        now = datetime.now(tz=timezone.utc)
        row: Row = dict(_TABLE_DEFAULTS[table])
        row.update(values)
        row.setdefault("id", str(uuid.uuid4()))
        row["created_at"] = now
        if table not in _TABLES_WITHOUT_UPDATED_AT:
            row["updated_at"] = now
        self._tables[table][row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, table: str, row_id: str, values: Mapping[str, Any]) -> Row | None:
        _check_table(table)
        row = self._tables[table].get(row_id)
        if row is None:
            return None
        row.update(values)
        self._touch(table, row)
        return copy.deepcopy(row)

    async def update_where(
        self, table: str, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> int:
        _check_table(table)
        changed = 0
        for row in self._tables[table].values():
            if _matches(row, filters):
                row.update(values)
                self._touch(table, row)
                changed += 1
        return changed

    async def upsert(
        self, table: str, values: Mapping[str, Any], *, conflict_column: str
    ) -> Row:
        _check_table(table)
        key = values[conflict_column]
        for row in self._tables[table].values():
            if row.get(conflict_column) == key:
                row.update(values)
                self._touch(table, row)
                return copy.deepcopy(row)
        return await self.insert(table, values)

    async def delete(self, table: str, row_id: str) -> bool:
        _check_table(table)
        removed = self._tables[table].pop(row_id, None)
        if removed is not None and table == "albums":
            self._cascade_album(row_id)
        return removed is not None

    async def delete_many(self, table: str, row_ids: Sequence[str]) -> int:
        _check_table(table)
        removed = 0
        for row_id in row_ids:
            if await self.delete(table, row_id):
                removed += 1
        return removed

    async def set_exclusive_flag(self, table: str, column: str, row_id: str) -> None:
        _check_table(table)
        # No await between the writes, so no other task observes a partial state.
        for key, row in self._tables[table].items():
            desired = key == row_id
            if row.get(column) != desired:
                row[column] = desired
                self._touch(table, row)

    def reset(self) -> None:
        for rows in self._tables.values():
            rows.clear()

    def _cascade_album(self, album_id: str) -> None:
        photos = self._tables["photos"]
        for photo_id in [key for key, row in photos.items() if row.get("album_id") == album_id]:
            photos.pop(photo_id, None)

    @staticmethod
    def _touch(table: str, row: Row) -> None:
        if table not in _TABLES_WITHOUT_UPDATED_AT:
            row["updated_at"] = datetime.now(tz=timezone.utc)


class DatabaseGateway:
    """Run gateway requests as SQLAlchemy Core statements against Postgres."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def select(self, query: Query) -> List[Row]:
        table = self._table(query.table)
        statement = select(table).where(*self._conditions(table, query.filters))
        for column, descending in query.ordering:
            target = table.c[column]
            statement = statement.order_by(
                target.desc().nulls_last() if descending else target.asc().nulls_last()
            )
        if query.max_rows is not None:
            statement = statement.limit(query.max_rows)
        async with self._session_factory() as session:
            try:
                result = await session.execute(statement)
            except SQLAlchemyError as exc:
                raise GatewayError(f"Failed to read {query.table}") from exc
            return [dict(row) for row in result.mappings().all()]

    async def count(self, table_name: str, filters: Mapping[str, Any] | None = None) -> int:
        table = self._table(table_name)
        statement = (
            select(func.count())
            .select_from(table)
            .where(*self._conditions(table, filters or {}))
        )
        async with self._session_factory() as session:
            try:
                result = await session.execute(statement)
            except SQLAlchemyError as exc:
                raise GatewayError(f"Failed to count {table_name}") from exc
            return int(result.scalar_one())

    async def insert(self, table_name: str, values: Mapping[str, Any]) -> Row:
        table = self._table(table_name)
        statement = insert(table).values(**values).returning(*table.c)
        row = await self._write_one(statement, f"Failed to insert into {table_name}")
        if row is None:
            raise GatewayError(f"Insert into {table_name} returned no row")
        return row

    async def update(self, table_name: str, row_id: str, values: Mapping[str, Any]) -> Row | None:
        table = self._table(table_name)
        statement = (
            update(table)
            .where(*self._conditions(table, {"id": row_id}))
            .values(**values)
            .returning(*table.c)
        )
        return await self._write_one(statement, f"Failed to update {table_name}")

    async def update_where(
        self, table_name: str, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> int:
        table = self._table(table_name)
        statement = update(table).where(*self._conditions(table, filters)).values(**values)
        return await self._write_count(statement, f"Failed to update {table_name}")

    async def upsert(
        self, table_name: str, values: Mapping[str, Any], *, conflict_column: str
    ) -> Row:
        table = self._table(table_name)
        changes = {key: value for key, value in values.items() if key != conflict_column}
        statement = (
            pg_insert(table)
            .values(**values)
            .on_conflict_do_update(index_elements=[table.c[conflict_column]], set_=changes)
            .returning(*table.c)
        )
        row = await self._write_one(statement, f"Failed to upsert into {table_name}")
        if row is None:
            raise GatewayError(f"Upsert into {table_name} returned no row")
        return row

    async def delete(self, table_name: str, row_id: str) -> bool:
        table = self._table(table_name)
        statement = delete(table).where(*self._conditions(table, {"id": row_id}))
        return await self._write_count(statement, f"Failed to delete from {table_name}") > 0

    async def delete_many(self, table_name: str, row_ids: Sequence[str]) -> int:
        row_ids = [row_id for row_id in row_ids if _is_uuid(row_id)]
        if not row_ids:
            return 0
        table = self._table(table_name)
        statement = delete(table).where(table.c.id.in_(row_ids))
        return await self._write_count(statement, f"Failed to delete from {table_name}")

    async def set_exclusive_flag(self, table_name: str, column: str, row_id: str) -> None:
        table = self._table(table_name)
        flag = table.c.id == row_id if _is_uuid(row_id) else false()
        statement = update(table).values({column: flag})
        await self._write_count(statement, f"Failed to update {table_name}")

    @staticmethod
    def _table(table_name: str):
        _check_table(table_name)
        return TABLE_MODELS[table_name].__table__

    @staticmethod
    def _conditions(table, filters: Mapping[str, Any]) -> list:
        conditions = []
        for column, value in filters.items():
            target = table.c[column]
            # Postgres rejects malformed uuid literals; such a filter matches nothing.
            if isinstance(target.type, Uuid) and value is not None and not _is_uuid(value):
                conditions.append(false())
            else:
                conditions.append(target == value)
        return conditions

    async def _write_one(self, statement, failure: str) -> Row | None:
        async with self._session_factory() as session:
            try:
                result = await session.execute(statement)
                row = result.mappings().first()
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise GatewayError(failure) from exc
            return dict(row) if row is not None else None

    async def _write_count(self, statement, failure: str) -> int:
        async with self._session_factory() as session:
            try:
                result = await session.execute(statement)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise GatewayError(failure) from exc
            return int(result.rowcount or 0)


def build_gateway(config: Settings = settings) -> DataGateway | None:
    """Pick the configured backend; ``None`` means the site runs offline."""

    session_factory = get_session_factory()
    if config.database_url and session_factory is not None:
        return DatabaseGateway(session_factory)
    if config.use_memory_backend:
        logger.info("Using the in-memory content backend")
        return InMemoryGateway()
    logger.warning("No content backend configured; running in offline mode")
    return None
