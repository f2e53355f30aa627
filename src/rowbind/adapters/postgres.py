"""
PostgreSQL database adapter implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from ..dialects.postgres import PostgresDialect
from ..utils import get_logger
from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    ExecutionResult,
)


def _load_driver():
    try:
        import psycopg

        return psycopg
    except ImportError:
        return None


@dataclass
class PostgresConnectionState:
    connection: Any
    driver: Any


class PostgresAdapter:
    """
    Adapter wrapping psycopg's asynchronous connection.

    The connection runs in autocommit mode; transactions are explicit
    BEGIN/COMMIT statements so that only session commits open one.
    """

    def __init__(self, config: ConnectionConfig, slow_query_ms: int | None = None) -> None:
        self.config = config
        self.dialect = PostgresDialect()
        self.slow_query_ms = slow_query_ms if slow_query_ms is not None else config.slow_query_ms
        self._state: PostgresConnectionState | None = None
        self.logger = get_logger("adapters.postgres")

    async def connect(self) -> Any:
        if self._state:
            return self._state.connection
        driver = _load_driver()
        if driver is None:
            raise AdapterConfigurationError(
                "psycopg is required to use PostgresAdapter; install rowbind[postgres]."
            )
        config = self.config
        options = dict(config.options or {})
        if config.ssl:
            for key, value in config.ssl.postgres_options().items():
                options.setdefault(key, value)
        if config.timeout and "connect_timeout" not in options:
            options["connect_timeout"] = int(config.timeout)

        self.logger.info("Connecting to PostgreSQL %s", config.descriptive_label())
        conninfo = config.url.split("?", 1)[0]
        if conninfo.startswith("postgresql+psycopg://"):
            conninfo = "postgresql://" + conninfo[len("postgresql+psycopg://") :]
        try:
            connection = await driver.AsyncConnection.connect(
                conninfo,
                autocommit=True,
                row_factory=driver.rows.dict_row,
                **options,
            )
        except Exception as exc:
            raise AdapterConnectionError("Failed to connect to PostgreSQL.") from exc

        self._state = PostgresConnectionState(connection, driver)
        return connection

    async def close(self) -> None:
        if self._state:
            try:
                await self._state.connection.close()
            finally:
                self._state = None

    def _ensure_state(self) -> PostgresConnectionState:
        if not self._state:
            raise AdapterConnectionError("PostgresAdapter is not connected.")
        return self._state

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> ExecutionResult:
        state = self._ensure_state()
        values = list(params or ())
        self._validate_params(sql, values)
        try:
            cursor = await state.connection.execute(sql, values)
            rows = [dict(row) for row in await cursor.fetchall()] if cursor.description else []
        except state.driver.Error as exc:
            raise AdapterExecutionError(str(exc)) from exc
        return ExecutionResult(rows=rows, rowcount=cursor.rowcount)

    async def begin(self) -> None:
        await self._transaction_statement("BEGIN")

    async def commit(self) -> None:
        await self._transaction_statement("COMMIT")

    async def rollback(self) -> None:
        await self._transaction_statement("ROLLBACK")

    async def _transaction_statement(self, statement: str) -> None:
        state = self._ensure_state()
        try:
            await state.connection.execute(statement)
        except state.driver.Error as exc:
            raise AdapterTransactionError(f"{statement} failed: {exc}") from exc

    @staticmethod
    def _count_placeholders(sql: str) -> int:
        count = 0
        idx = 0
        while idx < len(sql) - 1:
            if sql[idx] == "%" and sql[idx + 1] == "s":
                count += 1
                idx += 2
                continue
            if sql[idx] == "%" and sql[idx + 1] == "%":
                idx += 2
                continue
            idx += 1
        return count

    def _validate_params(self, sql: str, params: Sequence[Any]) -> None:
        placeholder_count = self._count_placeholders(sql)
        if placeholder_count != len(params):
            raise AdapterExecutionError(
                f"Parameter count mismatch: expected {placeholder_count}, received {len(params)}."
            )
