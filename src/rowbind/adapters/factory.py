"""
Adapter selection by DSN scheme.
"""

from __future__ import annotations

from .base import AdapterConfigurationError, ConnectionConfig
from .postgres import PostgresAdapter
from .sqlite import SQLiteAdapter

_ADAPTERS = {
    "sqlite": SQLiteAdapter,
    "postgresql": PostgresAdapter,
}


def create_adapter(config: ConnectionConfig | str):
    if isinstance(config, str):
        config = ConnectionConfig.from_dsn(config)
    adapter_cls = _ADAPTERS.get(config.backend)
    if adapter_cls is None:
        raise AdapterConfigurationError(
            f"Unsupported database backend '{config.backend}' ({config.redacted_dsn()})"
        )
    return adapter_cls(config)
