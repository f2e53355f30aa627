"""
Core building blocks for rowbind models, attributes and relations.
"""

from .attributes import Attribute, AttributeIdentity, AttributeProxy
from .database import Database
from .model import Model, ModelMeta, ModelOptions
from .relations import (
    ManyRelation,
    ManySideRelationProxy,
    OneRelation,
    OneSideRelationProxy,
    RelationProxy,
    Resolved,
    Unresolved,
)
from .schema import Schema
from .types import (
    AttributeType,
    BooleanType,
    DateTimeType,
    FloatType,
    IntegerType,
    StringType,
    TypeRegistry,
    UUIDType,
)

__all__ = [
    "Attribute",
    "AttributeIdentity",
    "AttributeProxy",
    "AttributeType",
    "BooleanType",
    "Database",
    "DateTimeType",
    "FloatType",
    "IntegerType",
    "ManyRelation",
    "ManySideRelationProxy",
    "Model",
    "ModelMeta",
    "ModelOptions",
    "OneRelation",
    "OneSideRelationProxy",
    "RelationProxy",
    "Resolved",
    "Schema",
    "StringType",
    "TypeRegistry",
    "UUIDType",
    "Unresolved",
]
