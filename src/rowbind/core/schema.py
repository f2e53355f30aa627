"""
Compiled per-model schema: attributes, primary key and relation registry.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence

from ..errors import QueryError, SchemaError
from .attributes import AttributeIdentity

if TYPE_CHECKING:
    from .database import Database
    from .model import Model
    from .relations import RelationDescriptor


ORDER_DIRECTIONS = ("asc", "desc")


class Schema:
    """
    Fixed structure of a registered model class.

    Built once by :meth:`Database.register`; holds one attribute identity per
    declared attribute, exactly one primary key, and the ordered tuple of
    declared relation descriptors.
    """

    def __init__(
        self,
        database: "Database",
        model: type["Model"],
        collection: str,
        attributes: "OrderedDict[str, AttributeIdentity]",
        relations: Sequence["RelationDescriptor"],
    ) -> None:
        self.database = database
        self.model = model
        self.collection = collection
        self.attributes = attributes
        self.relations: tuple["RelationDescriptor", ...] = tuple(relations)

        primary_keys = [identity for identity in attributes.values() if identity.type.is_pk]
        if len(primary_keys) != 1:
            raise SchemaError(
                f"Model '{model.__name__}' must declare exactly one primary key, found {len(primary_keys)}"
            )
        self.pk: AttributeIdentity = primary_keys[0]

    @classmethod
    def build(cls, database: "Database", model: type["Model"]) -> "Schema":
        attributes: "OrderedDict[str, AttributeIdentity]" = OrderedDict()
        for name, declaration in model._meta.attributes.items():
            attribute_type = database.types.create(declaration.type_ref, declaration.options)
            attributes[name] = AttributeIdentity(model, name, attribute_type)
        clashes = set(attributes) & set(model._meta.relations)
        if clashes:
            raise SchemaError(f"Names used for both attributes and relations: {', '.join(sorted(clashes))}")
        return cls(database, model, model._meta.collection, attributes, model._meta.relations.values())

    # Lookups -------------------------------------------------------------
    @property
    def pk_attribute(self) -> str:
        return self.pk.name

    def attribute(self, name: str) -> AttributeIdentity:
        try:
            return self.attributes[name]
        except KeyError as exc:
            raise SchemaError(f"Out of schema attribute '{name}' on {self.collection}") from exc

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def foreign_keys(self) -> Iterable[AttributeIdentity]:
        return (identity for identity in self.attributes.values() if identity.type.is_fk)

    def relation(self, name: str) -> Optional["RelationDescriptor"]:
        for descriptor in self.relations:
            if descriptor.name == name:
                return descriptor
        return None

    def find_relation(
        self, kind: str, target: type["Model"], fk_attribute: str | None = None
    ) -> Optional["RelationDescriptor"]:
        """
        Return the relation of ``kind`` pointing at ``target``, or ``None``.

        Without ``fk_attribute`` several matches are ambiguous.
        """
        found = None
        for descriptor in self.relations:
            if descriptor.kind != kind:
                continue
            descriptor.bind()
            if descriptor.target_model is not target:
                continue
            if fk_attribute is not None and descriptor.source_attribute != fk_attribute:
                continue
            if found is not None:
                raise SchemaError(
                    f"Ambiguous {kind}-side relation from {self.collection} to {target._meta.collection}"
                )
            found = descriptor
        return found

    def __repr__(self) -> str:
        return f"<Schema {self.collection} ({', '.join(self.attributes)})>"


def resolve_order_components(components: Any, schema: Schema) -> tuple[tuple[str, str], ...]:
    """
    Normalize ``{"attr": "asc"}`` or a list of such one-key mappings into
    ``(attribute, direction)`` pairs.
    """
    if isinstance(components, Mapping):
        components = [components]
    if not isinstance(components, (list, tuple)) or not components:
        raise QueryError("order components must be a mapping or a non-empty list of mappings")
    resolved: list[tuple[str, str]] = []
    for component in components:
        if not isinstance(component, Mapping) or len(component) != 1:
            raise QueryError(f"order component must map one attribute to a direction, got {component!r}")
        (name, direction), = component.items()
        schema.attribute(name)
        direction = str(direction).lower()
        if direction not in ORDER_DIRECTIONS:
            raise QueryError(f"order direction must be 'asc' or 'desc', got {direction!r}")
        resolved.append((name, direction))
    return tuple(resolved)
