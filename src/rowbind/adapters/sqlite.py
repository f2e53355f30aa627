"""
SQLite database adapter implementation.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from ..dialects.sqlite import SQLiteDialect
from ..utils import get_logger
from .base import (
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    ExecutionResult,
)


@dataclass(slots=True)
class SQLiteConnectionState:
    connection: sqlite3.Connection


class SQLiteAdapter:
    """
    Adapter wrapping the Python stdlib sqlite3 module.

    Statements run synchronously inside the coroutine methods, so every call
    blocks the event loop until sqlite3 returns. Keep SQLite sessions off
    loops that also serve latency-sensitive tasks. The connection is opened
    in autocommit mode; transactions are explicit BEGIN/COMMIT.
    """

    def __init__(self, config: ConnectionConfig | None = None, slow_query_ms: int | None = None) -> None:
        self.config = config or ConnectionConfig.from_dsn("sqlite:///:memory:")
        self.dialect = SQLiteDialect()
        self.slow_query_ms = slow_query_ms if slow_query_ms is not None else self.config.slow_query_ms
        self._state: SQLiteConnectionState | None = None
        self.logger = get_logger("adapters.sqlite")

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    async def connect(self) -> sqlite3.Connection:
        if self._state:
            return self._state.connection
        config = self.config
        path = self._normalize_path(config.url)
        timeout = config.timeout if config.timeout is not None else 5.0
        try:
            connection = sqlite3.connect(
                path,
                isolation_level=None,
                timeout=timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise AdapterConnectionError(f"Failed to open SQLite database {path!r}.") from exc
        connection.row_factory = sqlite3.Row
        if (config.options or {}).get("foreign_keys", True):
            connection.execute("PRAGMA foreign_keys = ON")
        self.logger.debug("Connected to SQLite %s", config.descriptive_label())
        self._state = SQLiteConnectionState(connection)
        return connection

    async def close(self) -> None:
        if self._state:
            self._state.connection.close()
            self._state = None

    def _ensure_connection(self) -> sqlite3.Connection:
        if not self._state:
            raise AdapterConnectionError("SQLiteAdapter is not connected.")
        return self._state.connection

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> ExecutionResult:
        connection = self._ensure_connection()
        values = [self._adapt(value) for value in params or ()]
        try:
            cursor = connection.execute(sql, values)
            rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
        except sqlite3.Error as exc:
            raise AdapterExecutionError(str(exc)) from exc
        return ExecutionResult(rows=rows, rowcount=cursor.rowcount)

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    async def begin(self) -> None:
        await self._transaction_statement("BEGIN")

    async def commit(self) -> None:
        await self._transaction_statement("COMMIT")

    async def rollback(self) -> None:
        await self._transaction_statement("ROLLBACK")

    async def _transaction_statement(self, statement: str) -> None:
        connection = self._ensure_connection()
        try:
            connection.execute(statement)
        except sqlite3.Error as exc:
            raise AdapterTransactionError(f"{statement} failed: {exc}") from exc

    # ------------------------------------------------------------------ #
    @staticmethod
    def _adapt(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    @staticmethod
    def _normalize_path(url: str) -> str:
        url = url.split("?", 1)[0]
        if url == "sqlite:///:memory:" or url == "sqlite://":
            return ":memory:"
        prefix = "sqlite:///"
        if url.startswith(prefix):
            return url[len(prefix) :]
        return url
