"""
Attribute declarations, identities, and per-instance proxies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from ..errors import EntityAttributeError
from .types import AttributeType

if TYPE_CHECKING:
    from .model import Model


class Attribute:
    """
    Declares a model attribute: a type reference plus its options.

    The declaration is turned into an :class:`AttributeIdentity` when the model
    is registered on a database. On instances it acts as the accessor for the
    attribute's :class:`AttributeProxy`.
    """

    _creation_counter = 0

    def __init__(self, type_ref: str | type[AttributeType] = "string", **options: Any) -> None:
        self.type_ref = type_ref
        self.options = dict(options)
        self.name: str | None = None
        self.creation_counter = Attribute._creation_counter
        Attribute._creation_counter += 1

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    # Descriptor protocol -------------------------------------------------
    def __get__(self, instance: Optional["Model"], owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance._proxy(self.name).get()

    def __set__(self, instance: "Model", value: Any) -> None:
        instance._proxy(self.name).set(value)

    def __repr__(self) -> str:
        return f"<Attribute {self.name} {self.type_ref!r}>"


class AttributeIdentity:
    """
    Binds an attribute type to a named attribute of one model.
    """

    __slots__ = ("model", "name", "type")

    def __init__(self, model: type["Model"], name: str, type: AttributeType) -> None:
        self.model = model
        self.name = name
        self.type = type
        type.identity = self

    @property
    def collection(self) -> str:
        return self.model._meta.collection

    def context_aware_validate_or_die(self, value: Any) -> None:
        try:
            self.type.validate_or_die(value)
        except EntityAttributeError as exc:
            if exc.identity is None:
                exc.identity = self
            raise

    def __str__(self) -> str:
        return f"{self.collection}.{self.name}"

    def __repr__(self) -> str:
        return f"<AttributeIdentity {self}>"


class AttributeProxy:
    """
    Mediates every read and write of one attribute on one entity.
    """

    __slots__ = ("entity", "identity", "value")

    def __init__(self, entity: "Model", identity: AttributeIdentity, value: Any = None) -> None:
        self.entity = entity
        self.identity = identity
        self.value = value

    def get(self) -> Any:
        return self.value

    def set(self, value: Any) -> None:
        entity = self.entity
        entity._assert_writable()
        value = entity.attribute_will_set(self.identity.name, value)
        previous = self.value
        if self._assign(value):
            if self.identity.type.is_fk:
                from .relations import reconcile_foreign_key

                reconcile_foreign_key(entity, self.identity.name, previous, value)

    def write_as_side_effect(self, value: Any) -> None:
        """
        Privileged write used by relation management: skips the entity hook
        and does not trigger further relation reconciliation.
        """
        self._assign(value)

    def absorb(self, value: Any) -> bool:
        """
        Take a value read back from storage without validation or dirtying.
        """
        if value == self.value and type(value) is type(self.value):
            return False
        self.value = value
        return True

    def _assign(self, value: Any) -> bool:
        self.identity.context_aware_validate_or_die(value)
        value = self.identity.type.coerce(value)
        previous = self.value
        if value == previous and type(value) is type(previous):
            return False
        self.entity._record_dirty(self.identity.name, previous)
        self.value = value
        return True

    def __repr__(self) -> str:
        return f"<AttributeProxy {self.identity} = {self.value!r}>"
