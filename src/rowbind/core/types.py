"""
Attribute type definitions.

An attribute type owns the value contract of one attribute of one schema:
native type checks, format checks, (de)serialization for transport, storage
conversion, in-memory comparison and the metadata (nullability, primary and
foreign key, store default) consumed by the session and the schema builder.

Types are referenced by name in model declarations and instantiated once per
attribute when a model is registered on a :class:`~rowbind.core.database.Database`.
Options are validated at that point and frozen afterwards.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Mapping

from ..errors import AttributeTypeError, AttributeValueError, EntityAttributeError, SchemaError

if TYPE_CHECKING:
    from ..dialects.base import Dialect
    from .attributes import AttributeIdentity


_BASE_OPTIONS: Mapping[str, Any] = {
    "pk": False,
    "nullable": False,
    "fk": None,
    "deferred": True,
    "default": None,
}

_UUID_PATTERN = re.compile(
    r"^(?:[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}|[0-9a-fA-F]{32})$"
)


class AttributeType:
    """
    Base attribute type. Subclasses set ``name``, ``native_types`` and
    ``column_kind`` and override the hooks they need.
    """

    name: ClassVar[str] = "any"
    native_types: ClassVar[tuple[type, ...]] = (object,)
    column_kind: ClassVar[str] = "text"
    extra_options: ClassVar[Mapping[str, Any]] = {}

    def __init__(self, **options: Any) -> None:
        known = {**_BASE_OPTIONS, **self.extra_options}
        unknown = sorted(set(options) - set(known))
        if unknown:
            raise SchemaError(f"Unknown option(s) for {self.name} attribute: {', '.join(unknown)}")
        resolved = {**known, **options}
        self.configure(resolved)
        self.options: Mapping[str, Any] = MappingProxyType(resolved)
        self.identity: "AttributeIdentity | None" = None
        self.destination: "AttributeIdentity | None" = None

    def configure(self, options: dict[str, Any]) -> None:
        """
        Inspect and adjust the resolved options before they are frozen.
        """
        if options["pk"] and options["nullable"]:
            raise SchemaError("A primary key attribute cannot be nullable")
        fk = options["fk"]
        if fk is not None and (not isinstance(fk, str) or fk.count(".") != 1):
            raise SchemaError(f"Foreign key reference must look like 'collection.attribute', got {fk!r}")

    # Option accessors --------------------------------------------------
    @property
    def is_pk(self) -> bool:
        return bool(self.options["pk"])

    @property
    def nullable(self) -> bool:
        return bool(self.options["nullable"])

    @property
    def fk(self) -> str | None:
        return self.options["fk"]

    @property
    def is_fk(self) -> bool:
        return self.options["fk"] is not None

    @property
    def deferred(self) -> bool:
        return bool(self.options["deferred"])

    @property
    def has_store_default(self) -> bool:
        return self.options["default"] is not None

    # Validation --------------------------------------------------------
    def check_native(self, value: Any) -> bool:
        return isinstance(value, self.native_types)

    def check_value(self, value: Any) -> None:
        """
        Raise :class:`AttributeValueError` when a natively typed value is invalid.
        """

    def validate_or_die(self, value: Any) -> None:
        # None is accepted here; non-nullability is only enforced on store
        if value is None:
            return
        if not self.check_native(value):
            raise AttributeTypeError(
                f"expected {self.name}, got {type(value).__name__} ({value!r})",
                identity=self.identity,
            )
        self.check_value(value)

    def validate(self, value: Any) -> bool:
        try:
            self.validate_or_die(value)
        except EntityAttributeError:
            return False
        return True

    # Conversion --------------------------------------------------------
    def coerce(self, value: Any) -> Any:
        """
        Bring an accepted value to the single form kept in memory.
        """
        return value

    def serialize(self, value: Any) -> Any:
        return value

    def deserialize(self, value: Any) -> Any:
        if value is None:
            return None
        self.validate_or_die(value)
        return value

    def to_storage(self, value: Any) -> Any:
        return value

    def from_storage(self, value: Any) -> Any:
        return value

    def compare_values(self, a: Any, b: Any) -> int:
        if a is None or b is None:
            if a is b:
                return 0
            return -1 if a is None else 1
        return (a > b) - (a < b)

    # DDL ---------------------------------------------------------------
    def column_type(self, dialect: "Dialect") -> str:
        return dialect.column_type(self.column_kind)

    def default_sql(self, dialect: "Dialect") -> str | None:
        default = self.options["default"]
        if default is None or isinstance(default, bool):
            return None
        return str(default)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.identity or self.name}>"


class BooleanType(AttributeType):
    name = "boolean"
    native_types = (bool,)
    column_kind = "boolean"

    def from_storage(self, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return bool(value)
        return value


class IntegerType(AttributeType):
    name = "integer"
    native_types = (int,)
    column_kind = "integer"

    def check_native(self, value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    @property
    def has_store_default(self) -> bool:
        # Integer primary keys are generated by the store
        return self.is_pk or super().has_store_default


class FloatType(AttributeType):
    name = "float"
    native_types = (int, float)
    column_kind = "float"

    def check_native(self, value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)


class StringType(AttributeType):
    name = "string"
    native_types = (str,)
    extra_options = {"length": None, "fixed": False}

    def configure(self, options: dict[str, Any]) -> None:
        super().configure(options)
        length = options["length"]
        if length is not None and (not isinstance(length, int) or isinstance(length, bool) or length <= 0):
            raise SchemaError(f"String length must be a positive integer, got {length!r}")
        if options["fixed"] and length is None:
            raise SchemaError("A fixed-width string attribute needs a length")

    def check_value(self, value: str) -> None:
        length = self.options["length"]
        if length is not None and len(value) > length:
            raise AttributeValueError(
                f"expected at most {length} characters, got {len(value)}", identity=self.identity
            )

    def column_type(self, dialect: "Dialect") -> str:
        length = self.options["length"]
        if length is None:
            return dialect.column_type("text")
        return f"{'CHAR' if self.options['fixed'] else 'VARCHAR'}({length})"


class UUIDType(AttributeType):
    """
    UUIDs accept :class:`uuid.UUID` values and strings in either the 36
    character dashed form or the 32 character hex form. Every accepted value
    is kept, serialized and stored as lowercase dashed text.
    """

    name = "uuid"
    native_types = (str, uuid.UUID)
    column_kind = "uuid"

    def check_value(self, value: Any) -> None:
        if isinstance(value, str) and not _UUID_PATTERN.match(value):
            raise AttributeValueError(f"invalid UUID format {value!r}", identity=self.identity)

    def coerce(self, value: Any) -> Any:
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, str) and _UUID_PATTERN.match(value):
            return str(uuid.UUID(value))
        return value

    def deserialize(self, value: Any) -> Any:
        return self.coerce(super().deserialize(value))

    @property
    def generates_default(self) -> bool:
        return self.options["default"] is True or (self.is_pk and self.options["default"] is None)

    @property
    def has_store_default(self) -> bool:
        return self.generates_default or super().has_store_default

    def default_sql(self, dialect: "Dialect") -> str | None:
        if self.generates_default:
            return dialect.uuid_default_sql()
        return super().default_sql(dialect)

    def to_storage(self, value: Any) -> Any:
        return self.coerce(value)

    def from_storage(self, value: Any) -> Any:
        return self.coerce(value)


class DateTimeType(AttributeType):
    """
    Datetimes are native :class:`datetime.datetime` values, serialized as
    ISO 8601 strings.
    """

    name = "datetime"
    native_types = (datetime,)
    column_kind = "datetime"

    def serialize(self, value: Any) -> Any:
        if value is None:
            return None
        return value.isoformat()

    def deserialize(self, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            raise AttributeTypeError(
                f"expected ISO 8601 string, got {type(value).__name__}", identity=self.identity
            )
        return self._parse(value)

    def from_storage(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._parse(value)
        return value

    def _parse(self, value: str) -> datetime:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as exc:
            raise AttributeValueError(
                f"invalid ISO 8601 datetime {value!r}", identity=self.identity
            ) from exc


DEFAULT_TYPES: Mapping[str, type[AttributeType]] = MappingProxyType(
    {
        "boolean": BooleanType,
        "integer": IntegerType,
        "float": FloatType,
        "string": StringType,
        "uuid": UUIDType,
        "datetime": DateTimeType,
    }
)

DEFAULT_TYPE_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "bool": "boolean",
        "int": "integer",
        "str": "string",
        "timestamp": "datetime",
    }
)


class TypeRegistry:
    """
    Name to type class lookup, seeded with the stock types.
    """

    def __init__(
        self,
        types: Mapping[str, type[AttributeType]] | None = None,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self._types: dict[str, type[AttributeType]] = dict(DEFAULT_TYPES)
        self._aliases: dict[str, str] = dict(DEFAULT_TYPE_ALIASES)
        for name, type_cls in (types or {}).items():
            self.register(name, type_cls)
        self._aliases.update(aliases or {})

    def register(self, name: str, type_cls: type[AttributeType]) -> None:
        if not (isinstance(type_cls, type) and issubclass(type_cls, AttributeType)):
            raise SchemaError(f"Custom type '{name}' must subclass AttributeType")
        self._types[name] = type_cls

    def resolve(self, reference: str | type[AttributeType]) -> type[AttributeType]:
        if isinstance(reference, type) and issubclass(reference, AttributeType):
            return reference
        if not isinstance(reference, str):
            raise SchemaError(f"Invalid attribute type reference {reference!r}")
        name = self._aliases.get(reference, reference)
        try:
            return self._types[name]
        except KeyError as exc:
            raise SchemaError(f"Unknown attribute type '{reference}'") from exc

    def create(self, reference: str | type[AttributeType], options: Mapping[str, Any]) -> AttributeType:
        return self.resolve(reference)(**options)
