"""
Database adapters for rowbind.
"""

from .base import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterError,
    AdapterExecutionError,
    AdapterTransactionError,
    ConnectionConfig,
    DatabaseAdapter,
    ExecutionResult,
    SSLConfig,
)
from .factory import create_adapter
from .postgres import PostgresAdapter
from .sqlite import SQLiteAdapter

__all__ = [
    "AdapterConfigurationError",
    "AdapterConnectionError",
    "AdapterError",
    "AdapterExecutionError",
    "AdapterTransactionError",
    "ConnectionConfig",
    "DatabaseAdapter",
    "ExecutionResult",
    "PostgresAdapter",
    "SQLiteAdapter",
    "SSLConfig",
    "create_adapter",
]
