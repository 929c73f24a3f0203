# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Send history stores for rate limiting.

A history store keeps, per caller identity, the Unix timestamps of accepted
sends. Stores only persist and query; the read-modify-write sequencing and
the per-identity locking live in :class:`mail_gate.rate_limit.RateLimiter`.

Two backends are provided:

- :class:`MemoryHistoryStore`: process-local deques, lost on restart.
- :class:`SqliteHistoryStore`: ``send_log`` table accessed through the
  async SQL adapter layer, survives restarts.

Any backend fault surfaces as :class:`StorageUnavailableError` so callers
can tell an infrastructure failure from a policy decision.

Example:
    Selecting a store from a connection string::

        store = create_history_store("/data/mail_gate.db")
        await store.init()
        await store.append("203.0.113.7", int(time.time()))
        history = await store.load("203.0.113.7")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict, deque
from collections.abc import Iterator
from contextlib import contextmanager

import aiosqlite

from .errors import StorageUnavailableError
from .logger import get_logger
from .sql import DbAdapter, create_adapter

logger = get_logger("history")

SEND_LOG_SCHEMA = """
CREATE TABLE IF NOT EXISTS send_log (
    identity TEXT NOT NULL,
    timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_send_log_identity_ts ON send_log (identity, timestamp);
"""


class HistoryStore(ABC):
    """Keyed store of send timestamps, one ordered history per identity."""

    async def init(self) -> None:
        """Prepare the backend (create schema, open connections)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def load(self, identity: str) -> list[int]:
        """Return the timestamps recorded for ``identity``, oldest first."""
        ...

    @abstractmethod
    async def append(self, identity: str, timestamp: int) -> None:
        """Append one send timestamp to the history of ``identity``."""
        ...

    @abstractmethod
    async def prune(self, identity: str, cutoff: int) -> int:
        """Drop entries with ``timestamp <= cutoff``. Returns removed count."""
        ...

    async def count_since(self, identity: str, since_ts: int) -> int:
        """Count sends strictly after ``since_ts`` for ``identity``."""
        return sum(1 for ts in await self.load(identity) if ts > since_ts)


class MemoryHistoryStore(HistoryStore):
    """In-process history store backed by a dict of deques."""

    def __init__(self) -> None:
        self._history: defaultdict[str, deque[int]] = defaultdict(deque)

    async def load(self, identity: str) -> list[int]:
        return list(self._history.get(identity, ()))

    async def append(self, identity: str, timestamp: int) -> None:
        self._history[identity].append(timestamp)

    async def prune(self, identity: str, cutoff: int) -> int:
        entries = self._history.get(identity)
        if not entries:
            return 0
        kept = deque(ts for ts in entries if ts > cutoff)
        removed = len(entries) - len(kept)
        if kept:
            self._history[identity] = kept
        else:
            del self._history[identity]
        return removed


@contextmanager
def _storage_errors(operation: str, identity: str) -> Iterator[None]:
    """Translate backend exceptions into StorageUnavailableError."""
    try:
        yield
    except (aiosqlite.Error, OSError) as exc:
        logger.error("History %s failed for %s: %s", operation, identity, exc)
        raise StorageUnavailableError(f"Send history {operation} failed: {exc}") from exc


class SqliteHistoryStore(HistoryStore):
    """History store persisted in a SQLite ``send_log`` table.

    Attributes:
        adapter: The SQL adapter executing the queries.
    """

    def __init__(self, connection_string: str):
        """Initialize the store.

        Args:
            connection_string: SQLite path, ``sqlite:<path>`` or ``:memory:``.
        """
        self.adapter: DbAdapter = create_adapter(connection_string)

    async def init(self) -> None:
        with _storage_errors("init", "*"):
            await self.adapter.connect()
            await self.adapter.execute_script(SEND_LOG_SCHEMA)

    async def close(self) -> None:
        await self.adapter.close()

    async def load(self, identity: str) -> list[int]:
        with _storage_errors("read", identity):
            rows = await self.adapter.fetch_all(
                "SELECT timestamp FROM send_log WHERE identity = :identity ORDER BY timestamp",
                {"identity": identity},
            )
        return [int(row["timestamp"]) for row in rows]

    async def append(self, identity: str, timestamp: int) -> None:
        with _storage_errors("write", identity):
            await self.adapter.execute(
                "INSERT INTO send_log (identity, timestamp) VALUES (:identity, :timestamp)",
                {"identity": identity, "timestamp": timestamp},
            )

    async def prune(self, identity: str, cutoff: int) -> int:
        with _storage_errors("prune", identity):
            return await self.adapter.execute(
                "DELETE FROM send_log WHERE identity = :identity AND timestamp <= :cutoff",
                {"identity": identity, "cutoff": cutoff},
            )

    async def count_since(self, identity: str, since_ts: int) -> int:
        with _storage_errors("read", identity):
            count = await self.adapter.fetch_value(
                "SELECT COUNT(*) FROM send_log WHERE identity = :identity AND timestamp > :since_ts",
                {"identity": identity, "since_ts": since_ts},
                default=0,
            )
        return int(count)


def create_history_store(connection_string: str | None) -> HistoryStore:
    """Build a history store from a connection string.

    ``None``, an empty string or ``"memory"`` selects the in-process store;
    anything else is handed to the SQLite backend.
    """
    if not connection_string or connection_string == "memory":
        return MemoryHistoryStore()
    return SqliteHistoryStore(connection_string)


__all__ = [
    "HistoryStore",
    "MemoryHistoryStore",
    "SqliteHistoryStore",
    "create_history_store",
]
