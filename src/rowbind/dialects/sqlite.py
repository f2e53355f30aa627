"""
SQLite dialect implementation.
"""

from __future__ import annotations

from typing import Final

from .base import Dialect, DialectCapabilities

_COLUMN_TYPES: Final[dict[str, str]] = {
    "boolean": "BOOLEAN",
    "integer": "INTEGER",
    "float": "REAL",
    "text": "TEXT",
    "uuid": "TEXT",
    "datetime": "TEXT",
}


class SQLiteDialect:
    """
    SQLite dialect using qmark param style. RETURNING needs SQLite 3.35+.
    """

    name: Final[str] = "sqlite"
    param_style: Final[str] = "qmark"
    capabilities: Final[DialectCapabilities] = DialectCapabilities(
        supports_returning=True,
        supports_savepoints=True,
        supports_native_uuid=False,
        supports_ilike=False,
    )

    def quote_identifier(self, identifier: str) -> str:
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'

    def format_table(self, table_name: str) -> str:
        return self.quote_identifier(table_name)

    def limit_clause(self, limit: int | None) -> str:
        if limit is None:
            return ""
        return f"LIMIT {int(limit)}"

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "?"

    def comparator_sql(self, comparator: str) -> str:
        # LIKE is already case-insensitive for ASCII in SQLite
        if comparator == "ilike":
            return "LIKE"
        return comparator.upper()

    def column_type(self, kind: str) -> str:
        return _COLUMN_TYPES.get(kind, kind.upper())

    def uuid_default_sql(self) -> str:
        # Dashed text, the form uuid attributes store
        groups = " || '-' || ".join(f"hex(randomblob({size}))" for size in (4, 2, 2, 2, 6))
        return f"(lower({groups}))"

    def identity_clause(self) -> str:
        # INTEGER PRIMARY KEY aliases the rowid and is generated implicitly
        return ""

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        null_clause = "" if nullable else " NOT NULL"
        return f"{self.quote_identifier(column)} {column_type}{null_clause}"


def get_sqlite_dialect() -> Dialect:
    return SQLiteDialect()
