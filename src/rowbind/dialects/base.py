"""
Dialect strategy interfaces describing SQL rendering behaviors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DialectCapabilities:
    """
    Feature flags describing backend capabilities.
    """

    supports_returning: bool = True
    supports_savepoints: bool = True
    supports_native_uuid: bool = False
    supports_ilike: bool = False


class Dialect(Protocol):
    """
    Strategy interface consumed across query, schema, and adapter layers.
    """

    @property
    def name(self) -> str: ...

    @property
    def param_style(self) -> str: ...

    @property
    def capabilities(self) -> DialectCapabilities: ...

    def quote_identifier(self, identifier: str) -> str: ...

    def format_table(self, table_name: str) -> str: ...

    def limit_clause(self, limit: int | None) -> str: ...

    def parameter_placeholder(self, position: int | None = None) -> str: ...

    def comparator_sql(self, comparator: str) -> str: ...

    def column_type(self, kind: str) -> str: ...

    def uuid_default_sql(self) -> str: ...

    def identity_clause(self) -> str: ...

    def render_column_definition(self, column: str, column_type: str, *, nullable: bool) -> str: ...
