"""
Error hierarchy shared across rowbind packages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from .core.attributes import AttributeIdentity


class RowbindError(Exception):
    """Base class for all rowbind errors."""


class ParameterError(RowbindError):
    """Raised when a function receives an invalid argument."""


class SchemaError(RowbindError):
    """Raised for structural problems in model or relation definitions."""


class QueryError(RowbindError):
    """Raised when a query is constructed or used incorrectly."""


class NativeQueryError(QueryError):
    """
    Wraps an error raised by the storage driver while executing SQL.
    """

    def __init__(self, message: str, *, sql: str | None = None, params: Sequence[Any] | None = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.params = list(params or [])


class ModelStateError(RowbindError):
    """Raised when an operation is forbidden by an entity's lifecycle state."""


class RelationshipCycleError(ModelStateError):
    """Raised when ephemeral entities depend on each other in a cycle."""


class EntityAttributeError(RowbindError):
    """
    Base class for errors concerning a single entity attribute.

    The attribute identity is attached once known so callers can tell which
    attribute of which collection rejected the value.
    """

    def __init__(self, message: str, *, identity: "AttributeIdentity | None" = None) -> None:
        super().__init__(message)
        self.message = message
        self.identity = identity

    def __str__(self) -> str:
        if self.identity is None:
            return self.message
        return f"{self.identity}: {self.message}"


class AttributeKeyError(EntityAttributeError):
    """Raised when an attribute name is not part of a schema."""


class AttributeValueError(EntityAttributeError):
    """Raised when a value has the right type but is otherwise invalid."""


class AttributeTypeError(AttributeValueError):
    """Raised when a value has the wrong native type."""


class RelationalAttributeError(AttributeValueError):
    """Raised when a required foreign key never received a value."""


class AttributeErrors(RowbindError):
    """
    Aggregated attribute errors keyed by attribute name.
    """

    def __init__(self, errors: Mapping[str, EntityAttributeError]) -> None:
        self.errors: dict[str, EntityAttributeError] = dict(errors)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return "; ".join(f"{key}: {error.message}" for key, error in self.errors.items())

    def __len__(self) -> int:
        return len(self.errors)

    def __contains__(self, key: object) -> bool:
        return key in self.errors

    def __getitem__(self, key: str) -> EntityAttributeError:
        return self.errors[key]


__all__ = [
    "AttributeErrors",
    "AttributeKeyError",
    "AttributeTypeError",
    "AttributeValueError",
    "EntityAttributeError",
    "ModelStateError",
    "NativeQueryError",
    "ParameterError",
    "QueryError",
    "RelationalAttributeError",
    "RelationshipCycleError",
    "RowbindError",
    "SchemaError",
]
