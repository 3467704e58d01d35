import asyncio
from typing import Any, Dict, List, Mapping, Sequence

from djsite.services.gateway import GatewayError, InMemoryGateway, Query


def run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class StubGateway:
    """Returns canned rows per table in the given order and records every call."""

    def __init__(self, rows: Mapping[str, List[Dict[str, Any]]], failing: Sequence[str] = ()) -> None:
        self.rows = {table: list(values) for table, values in rows.items()}
        self.failing = set(failing)
        self.calls: List[str] = []

    async def select(self, query: Query) -> List[Dict[str, Any]]:
        self.calls.append(query.table)
        if query.table in self.failing:
            raise GatewayError(f"{query.table} unavailable")
        rows = self.rows.get(query.table, [])
        if query.max_rows is not None:
            rows = rows[: query.max_rows]
        return [dict(row) for row in rows]


class FlakyGateway(InMemoryGateway):
    """In-memory gateway whose selected operations raise ``GatewayError``."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise GatewayError(f"{operation} failed")

    async def select(self, query: Query):
        self._check("select")
        return await super().select(query)

    async def insert(self, table, values):
        self._check("insert")
        return await super().insert(table, values)

    async def update(self, table, row_id, values):
        self._check("update")
        return await super().update(table, row_id, values)

    async def delete(self, table, row_id):
        self._check("delete")
        return await super().delete(table, row_id)

    async def count(self, table, filters=None):
        self._check("count")
        return await super().count(table, filters)
