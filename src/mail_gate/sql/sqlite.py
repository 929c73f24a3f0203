# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite backend for the send history, built on aiosqlite."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import aiosqlite

from .base import DbAdapter, Params, Row

T = TypeVar("T")


class SqliteAdapter(DbAdapter):
    """SQLite adapter that opens a connection per operation.

    A ``:memory:`` database would vanish between operations, so in-memory
    use keeps one shared connection open from ``connect()`` to ``close()``.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        """Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
            timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = db_path or ":memory:"
        self.timeout = timeout
        self._shared: aiosqlite.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == ":memory:"

    async def connect(self) -> None:
        if self.in_memory and self._shared is None:
            self._shared = await aiosqlite.connect(self.db_path, timeout=self.timeout)

    async def close(self) -> None:
        if self._shared is not None:
            await self._shared.close()
            self._shared = None

    async def _run(self, op: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        if self._shared is not None:
            return await op(self._shared)
        async with aiosqlite.connect(self.db_path, timeout=self.timeout) as db:
            return await op(db)

    async def execute(self, query: str, params: Params | None = None) -> int:
        async def op(db: aiosqlite.Connection) -> int:
            cursor = await db.execute(query, params or {})
            await db.commit()
            return cursor.rowcount

        return await self._run(op)

    async def fetch_all(self, query: str, params: Params | None = None) -> list[Row]:
        async def op(db: aiosqlite.Connection) -> list[Row]:
            async with db.execute(query, params or {}) as cursor:
                cols = [c[0] for c in cursor.description]
                return [dict(zip(cols, row)) for row in await cursor.fetchall()]

        return await self._run(op)

    async def execute_script(self, script: str) -> None:
        async def op(db: aiosqlite.Connection) -> None:
            await db.executescript(script)
            await db.commit()

        await self._run(op)
