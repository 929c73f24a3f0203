# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async SQL access for the send history.

Usage:
    adapter = create_adapter("/data/mail_gate.db")
    await adapter.connect()
    count = await adapter.fetch_value(
        "SELECT COUNT(*) FROM send_log WHERE identity = :identity",
        {"identity": "203.0.113.7"},
        default=0,
    )
    await adapter.close()
"""

from .base import DbAdapter
from .sqlite import SqliteAdapter

SQLITE_SCHEME = "sqlite"


def create_adapter(connection_string: str) -> DbAdapter:
    """Build the adapter named by ``connection_string``.

    Accepted forms:
        - a file path: ``/data/gate.db``, ``./gate.db``, ``gate.db``
        - ``:memory:`` for a throwaway in-memory database
        - ``sqlite:<path>``, including ``sqlite::memory:``

    Raises:
        ValueError: The string names a scheme other than sqlite.
    """
    if connection_string == ":memory:" or connection_string.startswith(("/", ".")):
        return SqliteAdapter(connection_string)

    scheme, sep, rest = connection_string.partition(":")
    if not sep:
        return SqliteAdapter(connection_string)
    if scheme.lower() == SQLITE_SCHEME:
        return SqliteAdapter(rest)
    raise ValueError(f"Unknown database type: '{scheme}'. Only sqlite history is available")


__all__ = ["DbAdapter", "SqliteAdapter", "create_adapter"]
