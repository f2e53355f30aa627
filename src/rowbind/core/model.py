"""
Model base classes and metadata orchestration for rowbind.
"""

from __future__ import annotations

import json
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Type, TypeVar

from ..errors import (
    AttributeErrors,
    AttributeKeyError,
    EntityAttributeError,
    ModelStateError,
    SchemaError,
)
from ..utils import camel_to_snake
from .attributes import Attribute, AttributeProxy
from .relations import RelationDescriptor, RelationalState, RelationProxy, Resolved, reconcile_foreign_key

if TYPE_CHECKING:
    from ..persistence.session import Session
    from .schema import Schema


@dataclass
class ModelOptions:
    """
    Container for model metadata calculated by :class:`ModelMeta`.
    """

    model: Type["Model"]
    collection: str = ""
    abstract: bool = False
    attributes: "OrderedDict[str, Attribute]" = field(default_factory=OrderedDict)
    relations: "OrderedDict[str, RelationDescriptor]" = field(default_factory=OrderedDict)


TModel = TypeVar("TModel", bound="Model")


class ModelMeta(type):
    """
    Metaclass collecting attribute and relation declarations.

    Declarations inherited from (abstract) base models come first, followed by
    the class's own declarations in definition order.
    """

    def __new__(mcls, name: str, bases: tuple[type, ...], attrs: Dict[str, Any]) -> "ModelMeta":
        cls = super().__new__(mcls, name, bases, attrs)
        if not any(isinstance(base, ModelMeta) for base in bases):
            return cls

        attributes: "OrderedDict[str, Attribute]" = OrderedDict()
        relations: "OrderedDict[str, RelationDescriptor]" = OrderedDict()
        for base in reversed(cls.__mro__[1:]):
            meta = base.__dict__.get("_meta")
            if isinstance(meta, ModelOptions):
                attributes.update(meta.attributes)
                relations.update(meta.relations)

        declared_attributes = sorted(
            ((key, value) for key, value in attrs.items() if isinstance(value, Attribute)),
            key=lambda item: item[1].creation_counter,
        )
        declared_relations = sorted(
            ((key, value) for key, value in attrs.items() if isinstance(value, RelationDescriptor)),
            key=lambda item: item[1].creation_counter,
        )
        attributes.update(declared_attributes)
        relations.update(declared_relations)

        meta = attrs.get("Meta")
        collection = camel_to_snake(name)
        abstract = False
        if meta:
            collection = getattr(meta, "collection", collection)
            abstract = getattr(meta, "abstract", False)

        cls._meta = ModelOptions(
            model=cls,
            collection=collection,
            abstract=abstract,
            attributes=attributes,
            relations=relations,
        )
        cls._schema = None
        return cls


class Model(metaclass=ModelMeta):
    """
    Base model providing the entity state machine.

    Attribute access goes through one :class:`AttributeProxy` per attribute;
    relations are reached through cached relation views. Persistence is the
    business of :class:`~rowbind.persistence.session.Session`.
    """

    _meta: ModelOptions
    _schema: Optional["Schema"] = None

    def __init__(self, **values: Any) -> None:
        schema = type(self)._require_schema()
        self._init_state(schema)

        relation_targets: Dict[str, Any] = {}
        simple: Dict[str, Any] = {}
        for key, value in values.items():
            descriptor = schema.relation(key)
            if descriptor is not None and descriptor.kind == "one":
                relation_targets[key] = value
            else:
                simple[key] = value

        if simple:
            self.update(simple)
        for key, target in relation_targets.items():
            self._relational_view(schema.relation(key)).set(target)

        self._dirtying = True
        self.model_did_construct()

    def _init_state(self, schema: "Schema") -> None:
        self._proxies: Dict[str, AttributeProxy] = {
            name: AttributeProxy(self, identity) for name, identity in schema.attributes.items()
        }
        self._dirty: Dict[str, Any] = {}
        self._dirtying = False
        self._writable = True
        self._bound = False
        self._session: Optional["Session"] = None
        self._relational = RelationalState()

    @classmethod
    def _require_schema(cls) -> "Schema":
        schema = cls.__dict__.get("_schema")
        if schema is None:
            raise SchemaError(f"Model '{cls.__name__}' is not registered on a database")
        return schema

    @classmethod
    def _reconstruct(cls: Type[TModel], session: "Session", row: Mapping[str, Any]) -> TModel:
        schema = cls._require_schema()
        entity = cls.__new__(cls)
        entity._init_state(schema)
        entity._bound = True
        entity._session = session
        entity._absorb(row)
        entity._dirtying = True
        entity.model_did_reconstruct()
        return entity

    # Internal state helpers -------------------------------------------------
    def _proxy(self, name: str) -> AttributeProxy:
        try:
            return self._proxies[name]
        except KeyError as exc:
            raise SchemaError(f"Out of schema attribute '{name}' on {self._meta.collection}") from exc

    def _relational_view(self, descriptor: RelationDescriptor) -> RelationProxy:
        views = self._relational.views
        view = views.get(descriptor.name)
        if view is None:
            view = descriptor.view_class(self, descriptor)
            views[descriptor.name] = view
        return view

    def _assert_writable(self) -> None:
        if not self._writable:
            raise ModelStateError(f"{self!r} is write-locked after deletion")

    def _record_dirty(self, name: str, previous: Any) -> None:
        if self._bound and self._dirtying and name not in self._dirty:
            self._dirty[name] = previous

    def _absorb(self, row: Mapping[str, Any]) -> list[str]:
        """
        Merge storage values without dirtying; returns the changed names.
        """
        schema = self._require_schema()
        changed = []
        for key, value in row.items():
            if not schema.has_attribute(key):
                continue
            if self._proxies[key].absorb(schema.attribute(key).type.from_storage(value)):
                changed.append(key)
        return changed

    def _refresh(self, row: Mapping[str, Any]) -> None:
        schema = self._require_schema()
        for key, value in row.items():
            if not schema.has_attribute(key) or key in self._dirty:
                continue
            identity = schema.attribute(key)
            proxy = self._proxies[key]
            previous = proxy.value
            if proxy.absorb(identity.type.from_storage(value)) and identity.type.is_fk:
                reconcile_foreign_key(self, key, previous, proxy.value)
        self.model_did_refresh()

    def _capture(self) -> Dict[str, Any]:
        views = {}
        for name, view in self._relational.views.items():
            state = view.state
            if isinstance(state, Resolved) and isinstance(state.value, list):
                state = Resolved(list(state.value))
            views[name] = (view, state)
        return {
            "values": {name: proxy.value for name, proxy in self._proxies.items()},
            "dirty": dict(self._dirty),
            "writable": self._writable,
            "bound": self._bound,
            "session": self._session,
            "intents": dict(self._relational.intents),
            "intended_by": list(self._relational.intended_by),
            "views": views,
        }

    def _restore(self, memento: Mapping[str, Any]) -> None:
        for name, value in memento["values"].items():
            self._proxies[name].value = value
        self._dirty = dict(memento["dirty"])
        self._writable = memento["writable"]
        self._bound = memento["bound"]
        self._session = memento["session"]
        self._relational.intents = dict(memento["intents"])
        self._relational.intended_by = list(memento["intended_by"])
        views = self._relational.views
        views.clear()
        for name, (view, state) in memento["views"].items():
            if isinstance(state, Resolved) and isinstance(state.value, list):
                state = Resolved(list(state.value))
            view.state = state
            views[name] = view

    # Public state -------------------------------------------------------------
    @property
    def pk(self) -> Any:
        return self._proxies[self._require_schema().pk_attribute].value

    @property
    def bound(self) -> bool:
        return self._bound

    @property
    def writable(self) -> bool:
        return self._writable

    @property
    def session(self) -> Optional["Session"]:
        return self._session

    @property
    def dirty(self) -> Dict[str, Any]:
        """
        Attributes changed since the last reconciliation, mapped to their
        previous values.
        """
        return dict(self._dirty)

    def is_dirty(self) -> bool:
        return bool(self._dirty)

    def update(self, record: Mapping[str, Any], serialized: bool = False) -> "Model":
        """
        Assign several attributes at once.

        Every entry is attempted; valid entries are applied and all failures
        are raised together as :class:`AttributeErrors`.
        """
        schema = self._require_schema()
        errors: Dict[str, EntityAttributeError] = {}
        for key, value in record.items():
            if not schema.has_attribute(key):
                errors[key] = AttributeKeyError(f"Out of schema attribute '{key}' on {schema.collection}")
                continue
            identity = schema.attribute(key)
            try:
                if serialized:
                    value = identity.type.deserialize(value)
                self._proxies[key].set(value)
            except EntityAttributeError as exc:
                if exc.identity is None:
                    exc.identity = identity
                errors[key] = exc
        if errors:
            raise AttributeErrors(errors)
        return self

    # Serialization ------------------------------------------------------------
    def serialize(
        self,
        include: Iterable[Any] | None = None,
        exclude: Iterable[str] | None = None,
        as_json: bool = False,
    ) -> Any:
        """
        Serialize attribute values plus the requested relations.

        ``include`` lists relation names, or ``(name, options)`` pairs to pass
        nested ``include``/``exclude`` options to the related entities. Every
        included relation must already be loaded; see :meth:`serialize_async`.
        """
        payload = self._serialize_attributes(exclude)
        for name, options in self._include_options(include):
            view = self._relational_view(self._require_schema().relation(name))
            if not view.resolved:
                raise ModelStateError(
                    f"Cannot serialize unresolved relation '{name}' synchronously; use serialize_async()"
                )
            value = view.state.value
            if isinstance(value, list):
                payload[name] = [member.serialize(**options) for member in value]
            else:
                payload[name] = value.serialize(**options) if value is not None else None
        return json.dumps(payload) if as_json else payload

    async def serialize_async(
        self,
        include: Iterable[Any] | None = None,
        exclude: Iterable[str] | None = None,
        as_json: bool = False,
    ) -> Any:
        payload = self._serialize_attributes(exclude)
        for name, options in self._include_options(include):
            value = await self._relational_view(self._require_schema().relation(name)).load()
            if isinstance(value, list):
                payload[name] = [await member.serialize_async(**options) for member in value]
            else:
                payload[name] = await value.serialize_async(**options) if value is not None else None
        return json.dumps(payload) if as_json else payload

    def _serialize_attributes(self, exclude: Iterable[str] | None) -> Dict[str, Any]:
        excluded = set(exclude or ())
        schema = self._require_schema()
        return {
            name: identity.type.serialize(self._proxies[name].value)
            for name, identity in schema.attributes.items()
            if name not in excluded
        }

    def _include_options(self, include: Iterable[Any] | None) -> list[tuple[str, Dict[str, Any]]]:
        schema = self._require_schema()
        resolved = []
        for entry in include or ():
            if isinstance(entry, str):
                name, options = entry, {}
            else:
                name, options = entry
                options = dict(options or {})
            if schema.relation(name) is None:
                raise SchemaError(f"Unknown relation '{name}' on {schema.collection}")
            unknown = set(options) - {"include", "exclude"}
            if unknown:
                raise SchemaError(f"Unknown serialize option(s): {', '.join(sorted(unknown))}")
            resolved.append((name, options))
        return resolved

    # Lifecycle hooks ----------------------------------------------------------
    def attribute_will_set(self, name: str, value: Any) -> Any:
        """
        Called before a public attribute write; the returned value is the one
        validated and assigned.
        """
        return value

    def model_did_construct(self) -> None:
        return None

    def model_did_reconstruct(self) -> None:
        return None

    def model_did_refresh(self) -> None:
        return None

    def model_will_store(self) -> None:
        return None

    def model_did_store(self) -> None:
        return None

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{name}={proxy.value!r}" for name, proxy in self._proxies.items() if proxy.value is not None
        ) if "_proxies" in self.__dict__ else ""
        return f"<{self.__class__.__name__} {parts}>"
