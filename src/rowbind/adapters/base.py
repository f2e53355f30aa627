"""
Adapter protocol definitions and connection configuration for rowbind.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from ..dialects.base import Dialect
from ..security.dsns import DSNConfig, parse_dsn


class AdapterError(RuntimeError):
    """Base error for adapter-related failures."""


class AdapterConfigurationError(AdapterError):
    """Raised when configuration or required dependencies are invalid."""


class AdapterConnectionError(AdapterError):
    """Raised when establishing or using a connection fails."""


class AdapterExecutionError(AdapterError):
    """Raised when SQL execution or parameter validation fails."""


class AdapterTransactionError(AdapterError):
    """Raised when transaction operations fail."""


@dataclass
class SSLConfig:
    mode: str | None = None
    rootcert: str | None = None
    cert: str | None = None
    key: str | None = None

    def postgres_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.mode:
            options["sslmode"] = self.mode
        if self.rootcert:
            options["sslrootcert"] = self.rootcert
        if self.cert:
            options["sslcert"] = self.cert
        if self.key:
            options["sslkey"] = self.key
        return options


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise AdapterConfigurationError(f"Invalid boolean value for '{key}': {value!r}")


def _parse_float(value: str, *, key: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise AdapterConfigurationError(f"Invalid float value for '{key}': {value!r}") from exc


def _parse_int(value: str, *, key: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise AdapterConfigurationError(f"Invalid integer value for '{key}': {value!r}") from exc


def _pop_float(query: dict[str, str], key: str) -> float | None:
    if key not in query:
        return None
    return _parse_float(query.pop(key), key=key)


def _pop_int(query: dict[str, str], key: str) -> int | None:
    if key not in query:
        return None
    return _parse_int(query.pop(key), key=key)


def _parse_ssl(query: dict[str, str]) -> SSLConfig | None:
    ssl = SSLConfig(
        mode=query.pop("sslmode", None),
        rootcert=query.pop("sslrootcert", None),
        cert=query.pop("sslcert", None),
        key=query.pop("sslkey", None),
    )
    if any([ssl.mode, ssl.rootcert, ssl.cert, ssl.key]):
        return ssl
    return None


def _parse_option_values(query: dict[str, str]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    for key, value in query.items():
        if key == "connect_timeout":
            options[key] = _parse_int(value, key=key)
        elif key == "foreign_keys":
            options[key] = _parse_bool(value, key=key)
        else:
            options[key] = value
    return options


@dataclass
class ConnectionConfig:
    """
    Normalized connection configuration for adapters.
    """

    url: str
    timeout: float | None = None
    slow_query_ms: int | None = None
    options: dict[str, Any] | None = None
    ssl: SSLConfig | None = None
    dsn: DSNConfig | None = None
    source: str | None = None

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a connection config by parsing the DSN string.
        """

        try:
            parsed = parse_dsn(dsn)
        except ValueError as exc:
            raise AdapterConfigurationError(str(exc)) from exc
        query = dict(parsed.query)

        parsed_timeout = _pop_float(query, "timeout")
        parsed_slow_query_ms = _pop_int(query, "slow_query_ms")
        parsed_ssl = _parse_ssl(query)
        options = _parse_option_values(query)
        options.update(kwargs.pop("options", None) or {})

        timeout = kwargs.pop("timeout", parsed_timeout)
        slow_query_ms = kwargs.pop("slow_query_ms", parsed_slow_query_ms)
        ssl = kwargs.pop("ssl", parsed_ssl)

        return cls(
            url=dsn,
            dsn=parsed,
            timeout=timeout,
            slow_query_ms=slow_query_ms,
            options=options or None,
            ssl=ssl,
            **kwargs,
        )

    @classmethod
    def from_env(cls, env_var: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config from an environment variable containing a DSN.
        """

        value = os.getenv(env_var)
        if not value:
            raise AdapterConfigurationError(f"Environment variable {env_var} is not set")
        return cls.from_dsn(value, source=env_var, **kwargs)

    @property
    def backend(self) -> str:
        if self.dsn is None:
            self.dsn = parse_dsn(self.url)
        return self.dsn.backend

    def redacted_dsn(self) -> str:
        """
        Return a DSN safe for logging (credentials removed).
        """

        if self.dsn:
            return self.dsn.redacted()
        return self.url

    def descriptive_label(self) -> str:
        """
        Describe the config source for diagnostics.
        """

        redacted = self.redacted_dsn()
        if self.source:
            return f"{self.source} ({redacted})"
        return redacted


@dataclass
class ExecutionResult:
    """
    Rows returned by a statement, each as a column name to value mapping.
    """

    rows: list[Mapping[str, Any]] = field(default_factory=list)
    rowcount: int = -1


class DatabaseAdapter(Protocol):
    """
    Adapter interface exposing the database operations sessions use.
    """

    dialect: Dialect
    slow_query_ms: int | None

    async def connect(self) -> Any:
        """
        Establish the connection. Called lazily on the first statement.
        """

    async def close(self) -> None:
        """
        Close underlying resources. Implementations should be idempotent.
        """

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> ExecutionResult:
        """
        Execute a single SQL statement and return its rows.
        """

    async def begin(self) -> None:
        """
        Start a transaction.
        """

    async def commit(self) -> None:
        """
        Commit the current transaction.
        """

    async def rollback(self) -> None:
        """
        Roll back the current transaction.
        """
