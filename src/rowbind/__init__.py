"""
rowbind public package initialization.

Exposes the declaration surface (models, attributes, relations), the database
handle and the session.
"""

from .core.attributes import Attribute  # noqa: F401
from .core.database import Database  # noqa: F401
from .core.model import Model  # noqa: F401
from .core.relations import ManyRelation, OneRelation  # noqa: F401
from .core.types import AttributeType  # noqa: F401
from .errors import (  # noqa: F401
    AttributeErrors,
    AttributeKeyError,
    AttributeTypeError,
    AttributeValueError,
    EntityAttributeError,
    ModelStateError,
    NativeQueryError,
    ParameterError,
    QueryError,
    RelationalAttributeError,
    RelationshipCycleError,
    RowbindError,
    SchemaError,
)
from .persistence import Session  # noqa: F401
from .query import Query  # noqa: F401
from .schema import SchemaBuilder  # noqa: F401

__all__ = [
    "Attribute",
    "AttributeErrors",
    "AttributeKeyError",
    "AttributeType",
    "AttributeTypeError",
    "AttributeValueError",
    "Database",
    "EntityAttributeError",
    "ManyRelation",
    "Model",
    "ModelStateError",
    "NativeQueryError",
    "OneRelation",
    "ParameterError",
    "Query",
    "QueryError",
    "RelationalAttributeError",
    "RelationshipCycleError",
    "RowbindError",
    "SchemaBuilder",
    "Session",
    "SchemaError",
]
