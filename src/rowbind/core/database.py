"""
Database handle: model registry, type registry and session factory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Type

from ..adapters.base import ConnectionConfig
from ..adapters.factory import create_adapter
from ..errors import SchemaError
from ..utils import get_logger, split_reference
from .attributes import AttributeIdentity
from .schema import Schema
from .types import AttributeType, TypeRegistry

if TYPE_CHECKING:
    from ..adapters.base import DatabaseAdapter
    from ..persistence.session import Session
    from .model import Model


AdapterFactory = Callable[[], "DatabaseAdapter"]

DEFAULT_ENV_VAR = "ROWBIND_DATABASE_URL"


class Database:
    """
    Explicit handle owning a set of registered models.

    A model class belongs to at most one database. Sessions are created from
    the handle and obtain their adapters from ``adapter_factory`` (by default
    one built from ``config``).
    """

    def __init__(
        self,
        name: str = "default",
        *,
        config: ConnectionConfig | str | None = None,
        models: Iterable[Type["Model"]] = (),
        types: Mapping[str, Type[AttributeType]] | None = None,
        type_aliases: Mapping[str, str] | None = None,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self.name = name
        if isinstance(config, str):
            config = ConnectionConfig.from_dsn(config)
        self.config: ConnectionConfig | None = config
        self.types = TypeRegistry(types, type_aliases)
        self.adapter_factory = adapter_factory
        self.logger = get_logger("database")
        self._models: Dict[str, Type["Model"]] = {}
        self._pending_foreign_keys: List[AttributeIdentity] = []
        for model in models:
            self.register(model)

    @classmethod
    def from_env(cls, env_var: str = DEFAULT_ENV_VAR, **kwargs: Any) -> "Database":
        return cls(config=ConnectionConfig.from_env(env_var), **kwargs)

    # Registration -------------------------------------------------------------
    def register(self, model: Type["Model"]) -> Type["Model"]:
        """
        Compile and attach the schema of ``model``. Usable as a class decorator.
        """
        meta = getattr(model, "_meta", None)
        if meta is None:
            raise SchemaError(f"{model!r} is not a model class")
        if meta.abstract:
            raise SchemaError(f"Abstract model '{model.__name__}' cannot be registered")
        existing = model.__dict__.get("_schema")
        if existing is not None:
            if existing.database is self:
                return model
            raise SchemaError(
                f"Model '{model.__name__}' is already registered on database '{existing.database.name}'"
            )
        if meta.collection in self._models:
            raise SchemaError(f"Collection '{meta.collection}' is already registered on database '{self.name}'")

        schema = Schema.build(self, model)
        model._schema = schema
        self._models[meta.collection] = model
        self._pending_foreign_keys.extend(schema.foreign_keys())
        self._resolve_pending()
        self.logger.debug("Registered model %s as '%s'", model.__name__, meta.collection)
        return model

    model = register

    def _resolve_pending(self) -> None:
        unresolved = []
        for identity in self._pending_foreign_keys:
            collection, attribute = split_reference(identity.type.fk)
            target = self._models.get(collection)
            if target is None:
                unresolved.append(identity)
                continue
            identity.type.destination = target._schema.attribute(attribute)
        self._pending_foreign_keys = unresolved

    @property
    def models(self) -> List[Type["Model"]]:
        return list(self._models.values())

    # Resolution ---------------------------------------------------------------
    def resolve_model(self, reference: "Type[Model] | str") -> Type["Model"]:
        """
        Find a registered model by class, class name or collection name.
        """
        if isinstance(reference, type):
            model = self._models.get(reference._meta.collection) if hasattr(reference, "_meta") else None
            if model is reference:
                return model
            raise SchemaError(f"Model '{reference.__name__}' is not registered on database '{self.name}'")
        if reference in self._models:
            return self._models[reference]
        for model in self._models.values():
            if model.__name__ == reference:
                return model
        raise SchemaError(f"Unknown model or collection '{reference}' on database '{self.name}'")

    def resolve_attribute(self, reference: str) -> AttributeIdentity:
        """
        Resolve a ``"collection.attribute"`` reference.
        """
        try:
            collection, attribute = split_reference(reference)
        except ValueError as exc:
            raise SchemaError(str(exc)) from exc
        return self.resolve_model(collection)._schema.attribute(attribute)

    def schema_for(self, reference: "Type[Model] | str") -> Schema:
        return self.resolve_model(reference)._schema

    # Sessions -----------------------------------------------------------------
    def create_adapter(self) -> "DatabaseAdapter":
        if self.adapter_factory is not None:
            return self.adapter_factory()
        if self.config is None:
            raise SchemaError(f"Database '{self.name}' has neither a connection config nor an adapter factory")
        return create_adapter(self.config)

    def session(self, adapter_factory: Optional[AdapterFactory] = None) -> "Session":
        from ..persistence.session import Session

        return Session(self, adapter_factory or self.create_adapter)

    def __repr__(self) -> str:
        return f"<Database {self.name} ({', '.join(self._models)})>"
