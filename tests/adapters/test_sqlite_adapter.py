from datetime import datetime

import pytest

from rowbind.adapters import (
    AdapterConfigurationError,
    AdapterConnectionError,
    AdapterExecutionError,
    ConnectionConfig,
    PostgresAdapter,
    SQLiteAdapter,
    create_adapter,
)


@pytest.mark.asyncio
async def test_sqlite_adapter_executes_and_returns_dict_rows():
    adapter = SQLiteAdapter()
    await adapter.connect()
    await adapter.execute("CREATE TABLE demo (id INTEGER PRIMARY KEY, name TEXT, seen TEXT)")
    await adapter.execute(
        "INSERT INTO demo (name, seen) VALUES (?, ?)", ["one", datetime(2024, 1, 2, 3, 4, 5)]
    )
    result = await adapter.execute("SELECT id, name, seen FROM demo")
    assert result.rows == [{"id": 1, "name": "one", "seen": "2024-01-02T03:04:05"}]
    await adapter.close()


@pytest.mark.asyncio
async def test_sqlite_transactions_roll_back():
    adapter = SQLiteAdapter()
    await adapter.connect()
    await adapter.execute("CREATE TABLE demo (id INTEGER PRIMARY KEY, name TEXT)")
    await adapter.begin()
    await adapter.execute("INSERT INTO demo (name) VALUES (?)", ["gone"])
    await adapter.rollback()
    result = await adapter.execute("SELECT COUNT(*) AS total FROM demo")
    assert result.rows == [{"total": 0}]
    await adapter.close()


@pytest.mark.asyncio
async def test_sqlite_errors_are_wrapped():
    adapter = SQLiteAdapter()
    await adapter.connect()
    with pytest.raises(AdapterExecutionError):
        await adapter.execute("SELECT * FROM missing_table")
    await adapter.close()


@pytest.mark.asyncio
async def test_sqlite_requires_connection():
    adapter = SQLiteAdapter()
    with pytest.raises(AdapterConnectionError):
        await adapter.execute("SELECT 1")


@pytest.mark.asyncio
async def test_sqlite_enforces_foreign_keys_by_default(tmp_path):
    adapter = SQLiteAdapter(ConnectionConfig.from_dsn(f"sqlite:///{tmp_path / 'fk.db'}"))
    await adapter.connect()
    result = await adapter.execute("PRAGMA foreign_keys")
    assert list(result.rows[0].values()) == [1]
    await adapter.close()

    disabled = SQLiteAdapter(ConnectionConfig.from_dsn("sqlite:///:memory:?foreign_keys=off"))
    await disabled.connect()
    result = await disabled.execute("PRAGMA foreign_keys")
    assert list(result.rows[0].values()) == [0]
    await disabled.close()


def test_normalize_path():
    assert SQLiteAdapter._normalize_path("sqlite:///:memory:") == ":memory:"
    assert SQLiteAdapter._normalize_path("sqlite:///tmp/db.sqlite?timeout=1") == "tmp/db.sqlite"


def test_create_adapter_selects_by_backend():
    assert isinstance(create_adapter("sqlite:///:memory:"), SQLiteAdapter)
    assert isinstance(create_adapter("postgres://localhost/db"), PostgresAdapter)
    with pytest.raises(AdapterConfigurationError):
        create_adapter("mysql://localhost/db")
