"""
PostgreSQL dialect implementation.
"""

from __future__ import annotations

from typing import Final

from .base import Dialect, DialectCapabilities

_COLUMN_TYPES: Final[dict[str, str]] = {
    "boolean": "BOOLEAN",
    "integer": "INTEGER",
    "float": "DOUBLE PRECISION",
    "text": "TEXT",
    "uuid": "UUID",
    "datetime": "TIMESTAMPTZ",
}


class PostgresDialect:
    """
    PostgreSQL dialect using percent positional parameters.
    """

    name: Final[str] = "postgresql"
    param_style: Final[str] = "format"
    capabilities: Final[DialectCapabilities] = DialectCapabilities(
        supports_returning=True,
        supports_savepoints=True,
        supports_native_uuid=True,
        supports_ilike=True,
    )

    def quote_identifier(self, identifier: str) -> str:
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'

    def format_table(self, table_name: str) -> str:
        if "." in table_name:
            schema, table = table_name.split(".", 1)
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table_name)

    def limit_clause(self, limit: int | None) -> str:
        if limit is None:
            return ""
        return f"LIMIT {int(limit)}"

    def parameter_placeholder(self, position: int | None = None) -> str:
        return "%s"

    def comparator_sql(self, comparator: str) -> str:
        return comparator.upper()

    def column_type(self, kind: str) -> str:
        return _COLUMN_TYPES.get(kind, kind.upper())

    def uuid_default_sql(self) -> str:
        return "gen_random_uuid()"

    def identity_clause(self) -> str:
        return "GENERATED BY DEFAULT AS IDENTITY"

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str:
        null_clause = "" if nullable else " NOT NULL"
        return f"{self.quote_identifier(column)} {column_type}{null_clause}"


def get_postgres_dialect() -> Dialect:
    return PostgresDialect()
