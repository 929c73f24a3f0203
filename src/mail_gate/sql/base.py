# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Adapter contract for the send-history database."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

Params = dict[str, Any]
Row = dict[str, Any]


class DbAdapter(ABC):
    """Async access to one database, with rows returned as dicts.

    Queries bind parameters by name (``:identity``, ``:cutoff``). Writes
    are committed before the call returns.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open whatever the backend keeps between operations."""

    @abstractmethod
    async def close(self) -> None:
        """Release what :meth:`connect` opened. Safe to call twice."""

    @abstractmethod
    async def execute(self, query: str, params: Params | None = None) -> int:
        """Run a write and return the affected row count."""

    @abstractmethod
    async def fetch_all(self, query: str, params: Params | None = None) -> list[Row]:
        """Run a read and return every row."""

    @abstractmethod
    async def execute_script(self, script: str) -> None:
        """Run several ``;``-separated statements, e.g. schema DDL."""

    async def fetch_one(self, query: str, params: Params | None = None) -> Row | None:
        """First row of a read, or None."""
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None

    async def fetch_value(self, query: str, params: Params | None = None, default: Any = None) -> Any:
        """First column of the first row, or ``default`` when there is none."""
        row = await self.fetch_one(query, params)
        if not row:
            return default
        return next(iter(row.values()))
