"""
Relation descriptors and the lazily-resolved relation views built from them.

Relations are declared explicitly on models::

    class Ingredient(Model):
        type_id = Attribute("uuid", fk="ingredient_types.id", nullable=True)
        type = OneRelation("ingredient_types")

    class IngredientType(Model):
        members = ManyRelation("Ingredient", order={"name": "asc"})

The *one-side* view lives on the entity holding the foreign key and resolves
to a single entity (or ``None``); the *many-side* view lives on the referenced
entity and resolves to an ordered list. Views on bound entities start
unresolved and must be loaded; views on ephemeral entities start resolved from
in-memory state. Every mutation is propagated to the opposite view when that
view is already resolved.

Links toward entities that do not exist in storage yet are recorded as
relationship intents and turned into foreign key values by the session once the
target has been created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from ..errors import ModelStateError, SchemaError
from ..utils import split_reference

if TYPE_CHECKING:
    from ..persistence.session import Session
    from .model import Model
    from .schema import Schema


# ---------------------------------------------------------------------- #
# View state
# ---------------------------------------------------------------------- #
@dataclass(frozen=True)
class Unresolved:
    """The view has not been loaded."""


@dataclass(frozen=True)
class Resolved:
    value: Any = None


UNRESOLVED = Unresolved()


@dataclass(eq=False)
class RelationshipIntent:
    """
    Deferred assignment of ``host.<source_attribute>`` from
    ``target.<destination_attribute>`` once ``target`` is stored.
    """

    host: "Model"
    target: "Model"
    source_attribute: str
    destination_attribute: str


@dataclass
class RelationalState:
    intents: dict[str, RelationshipIntent] = field(default_factory=dict)
    intended_by: list[RelationshipIntent] = field(default_factory=list)
    views: dict[str, "RelationProxy"] = field(default_factory=dict)


def register_intent(
    host: "Model", target: "Model", source_attribute: str, destination_attribute: str
) -> RelationshipIntent:
    clear_intent(host, source_attribute)
    intent = RelationshipIntent(host, target, source_attribute, destination_attribute)
    host._relational.intents[source_attribute] = intent
    target._relational.intended_by.append(intent)
    return intent


def clear_intent(host: "Model", source_attribute: str) -> Optional[RelationshipIntent]:
    intent = host._relational.intents.pop(source_attribute, None)
    if intent is not None:
        pending = intent.target._relational.intended_by
        for index, candidate in enumerate(pending):
            if candidate is intent:
                del pending[index]
                break
    return intent


def _index_of(items: list, entity: "Model") -> int:
    for index, candidate in enumerate(items):
        if candidate is entity:
            return index
    return -1


# ---------------------------------------------------------------------- #
# Descriptors
# ---------------------------------------------------------------------- #
class RelationDescriptor:
    """
    Declares one side of a foreign key relationship on a model class.

    Resolution of the target model and the foreign key happens lazily on first
    use so that models may reference each other in any registration order.
    """

    kind: ClassVar[str] = ""
    _creation_counter = 0

    def __init__(self, target: "type[Model] | str", *, fk: str | None = None) -> None:
        self.target = target
        self.fk = fk
        self.name: str | None = None
        self.owner: "type[Model] | None" = None
        self.creation_counter = RelationDescriptor._creation_counter
        RelationDescriptor._creation_counter += 1

        self._bound = False
        self.target_model: "type[Model] | None" = None
        self.fk_model: "type[Model] | None" = None
        self.referenced_model: "type[Model] | None" = None
        self.source_attribute: str | None = None
        self.destination_attribute: str | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: Optional["Model"], owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance._relational_view(self)

    def __set__(self, instance: "Model", value: Any) -> None:
        raise ModelStateError(f"Relation '{self.name}' cannot be assigned; use its view methods")

    # Resolution ----------------------------------------------------------
    def _orient(self, owner: "type[Model]", target: "type[Model]") -> tuple["type[Model]", "type[Model]"]:
        raise NotImplementedError

    def _configure(self, fk_schema: "Schema") -> None:
        """
        Hook for side-specific configuration once the link is known.
        """

    def bind(self) -> "RelationDescriptor":
        if self._bound:
            return self
        owner = self.owner
        if owner is None:
            raise SchemaError("Relation descriptor is not attached to a model")
        database = owner._require_schema().database
        target = database.resolve_model(self.target)
        fk_model, referenced = self._orient(owner, target)
        fk_schema = fk_model._require_schema()
        referenced_collection = referenced._meta.collection

        candidates = [
            identity
            for identity in fk_schema.foreign_keys()
            if split_reference(identity.type.fk)[0] == referenced_collection
        ]
        if self.fk is not None:
            candidates = [identity for identity in candidates if identity.name == self.fk]
            if not candidates:
                raise SchemaError(
                    f"'{self.fk}' is not a foreign key from {fk_schema.collection} to {referenced_collection}"
                )
        elif len(candidates) > 1:
            raise SchemaError(
                f"Ambiguous foreign key between {fk_schema.collection} and {referenced_collection}; "
                f"pass fk= to relation '{self.name}'"
            )
        if not candidates:
            raise SchemaError(
                f"Non-existent relation from {fk_schema.collection} (one) to {referenced_collection} (many)"
            )

        source = candidates[0]
        destination = database.resolve_attribute(source.type.fk)
        self.target_model = target
        self.fk_model = fk_model
        self.referenced_model = referenced
        self.source_attribute = source.name
        self.destination_attribute = destination.name
        self._configure(fk_schema)
        self._bound = True
        return self

    def remote_descriptor(self) -> Optional["RelationDescriptor"]:
        """
        The opposite side of this relation, if it is declared.
        """
        self.bind()
        opposite = "many" if self.kind == "one" else "one"
        return self.target_model._require_schema().find_relation(
            opposite, self.owner, self.source_attribute
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name} -> {self.target!r}>"


class OneRelation(RelationDescriptor):
    """
    Declared on the model holding the foreign key.
    """

    kind = "one"

    def _orient(self, owner, target):
        return owner, target

    def __set__(self, instance: "Model", value: Any) -> None:
        instance._relational_view(self).set(value)


class ManyRelation(RelationDescriptor):
    """
    Declared on the referenced model; ``order`` sorts the resolved list.
    """

    kind = "many"

    def __init__(self, target: "type[Model] | str", *, fk: str | None = None, order: Any = None) -> None:
        super().__init__(target, fk=fk)
        self.order = order
        self.order_components: tuple[tuple[str, str], ...] = ()

    def _orient(self, owner, target):
        return target, owner

    def _configure(self, fk_schema: "Schema") -> None:
        from .schema import resolve_order_components

        if self.order:
            self.order_components = resolve_order_components(self.order, fk_schema)


# ---------------------------------------------------------------------- #
# Helpers shared by views and the session
# ---------------------------------------------------------------------- #
def _foreign_key_link(fk_model: "type[Model]", attribute: str) -> tuple["type[Model]", str]:
    schema = fk_model._require_schema()
    destination = schema.database.resolve_attribute(schema.attribute(attribute).type.fk)
    return destination.model, destination.name


def _resolved_view(entity: "Model", descriptor: Optional[RelationDescriptor]) -> Optional["RelationProxy"]:
    if descriptor is None:
        return None
    view = entity._relational.views.get(descriptor.name)
    if view is None or not view.resolved:
        return None
    return view


def _lookup(session: "Session | None", model: "type[Model]", attribute: str, value: Any) -> Optional["Model"]:
    if session is None or value is None:
        return None
    return session.lookup(model, attribute, value)


def current_link(entity: "Model", attribute: str) -> Optional["Model"]:
    """
    Best in-memory knowledge of the entity ``attribute`` currently points at.
    """
    intent = entity._relational.intents.get(attribute)
    if intent is not None:
        return intent.target
    target_model, destination = _foreign_key_link(type(entity), attribute)
    return _lookup(entity._session, target_model, destination, entity._proxy(attribute).value)


def _shared_session(first: "Model", second: "Model") -> "Session | None":
    a, b = first._session, second._session
    if a is not None and b is not None and a is not b:
        raise ModelStateError(f"Relationship between {first!r} and {second!r} spans disjoint sessions")
    return a or b


def link(host: "Model", target: "Model", source_attribute: str, destination_attribute: str) -> None:
    """
    Point ``host.<source_attribute>`` at ``target``: immediately when the
    target is stored, through a relationship intent otherwise.
    """
    session = _shared_session(host, target)
    if session is not None:
        for entity in (host, target):
            if entity._session is None and not entity._bound:
                session.add(entity)
    proxy = host._proxy(source_attribute)
    if target._bound:
        clear_intent(host, source_attribute)
        proxy.write_as_side_effect(target._proxy(destination_attribute).value)
    else:
        register_intent(host, target, source_attribute, destination_attribute)
        proxy.write_as_side_effect(None)


def unlink(host: "Model", source_attribute: str) -> None:
    clear_intent(host, source_attribute)
    host._proxy(source_attribute).write_as_side_effect(None)


def _descriptors_for(fk_model: "type[Model]", attribute: str) -> tuple[
    Optional[RelationDescriptor], Optional[RelationDescriptor], "type[Model]", str
]:
    target_model, destination = _foreign_key_link(fk_model, attribute)
    one = fk_model._require_schema().find_relation("one", target_model, attribute)
    many = target_model._require_schema().find_relation("many", fk_model, attribute)
    return one, many, target_model, destination


def reconcile_foreign_key(entity: "Model", attribute: str, previous: Any, value: Any) -> None:
    """
    Bring relation views in line after a public write to a foreign key.
    """
    intent = clear_intent(entity, attribute)
    one, many, target_model, destination = _descriptors_for(type(entity), attribute)
    view = entity._relational.views.get(one.name) if one is not None else None

    if intent is not None:
        old = intent.target
    elif view is not None and view.resolved:
        old = view.state.value
    else:
        old = _lookup(entity._session, target_model, destination, previous)
    if old is not None:
        remote = _resolved_view(old, many)
        if remote is not None:
            remote._remove_as_side_effect(entity)

    new = _lookup(entity._session, target_model, destination, value)
    if view is not None:
        if value is None:
            view.state = Resolved(None)
        elif new is not None:
            view.state = Resolved(new)
        else:
            view._force_unresolve()
    if new is not None:
        remote = _resolved_view(new, many)
        if remote is not None:
            remote._push_as_side_effect(entity)


def tear_down_relations(entity: "Model") -> list["Model"]:
    """
    Detach ``entity`` from both directions of every relation it takes part in.

    Returns the stored entities whose foreign key was cleared as a result.
    """
    affected: list["Model"] = []
    schema = entity._require_schema()

    for identity in schema.foreign_keys():
        one, many, _, _ = _descriptors_for(type(entity), identity.name)
        old = current_link(entity, identity.name)
        clear_intent(entity, identity.name)
        if old is not None:
            remote = _resolved_view(old, many)
            if remote is not None:
                remote._remove_as_side_effect(entity)
        view = _resolved_view(entity, one)
        if view is not None:
            view.state = Resolved(None)

    for intent in list(entity._relational.intended_by):
        host = intent.host
        clear_intent(host, intent.source_attribute)
        one, _, _, _ = _descriptors_for(type(host), intent.source_attribute)
        view = _resolved_view(host, one)
        if view is not None:
            view.state = Resolved(None)

    for descriptor in schema.relations:
        if descriptor.kind != "many":
            continue
        view = _resolved_view(entity, descriptor)
        if view is None:
            continue
        remote = descriptor.remote_descriptor()
        for member in view.state.value:
            proxy = member._proxy(descriptor.source_attribute)
            if proxy.value is not None:
                proxy.write_as_side_effect(None)
                if member._bound:
                    affected.append(member)
            member_view = _resolved_view(member, remote)
            if member_view is not None:
                member_view.state = Resolved(None)
        view.state.value.clear()
    return affected


# ---------------------------------------------------------------------- #
# Views
# ---------------------------------------------------------------------- #
class RelationProxy:
    """
    Base relation view, cached per (host entity, relation).
    """

    def __init__(self, host: "Model", descriptor: RelationDescriptor) -> None:
        self.host = host
        self.descriptor = descriptor.bind()
        self.state: Unresolved | Resolved = self._initial_state()

    @property
    def resolved(self) -> bool:
        return isinstance(self.state, Resolved)

    @property
    def session(self) -> "Session | None":
        return self.host._session

    def _initial_state(self) -> Unresolved | Resolved:
        raise NotImplementedError

    def _force_unresolve(self) -> None:
        self.state = UNRESOLVED

    def _require_resolved(self) -> Resolved:
        if not isinstance(self.state, Resolved):
            raise ModelStateError(
                f"Relation '{self.descriptor.name}' on {self.host!r} is not loaded; await load() first"
            )
        return self.state

    def _require_session(self) -> "Session":
        session = self.host._session
        if session is None:
            raise ModelStateError(f"{self.host!r} is not attached to a session; cannot load '{self.descriptor.name}'")
        return session

    def _assert_modifiable(self) -> None:
        self.host._assert_writable()
        if not self.resolved:
            if self.host._bound:
                raise ModelStateError(
                    f"Cannot modify unresolved relation '{self.descriptor.name}' on {self.host!r}"
                )
            self.state = self._empty_state()

    def _empty_state(self) -> Resolved:
        raise NotImplementedError

    def _assert_valid_friend(self, entity: "Model") -> None:
        if entity is None:
            raise SchemaError("Null entity involved in relationship")
        if not isinstance(entity, self.descriptor.target_model):
            raise SchemaError(
                f"{type(entity).__name__} cannot join relation '{self.descriptor.name}' "
                f"(expected {self.descriptor.target_model.__name__})"
            )
        entity._assert_writable()
        _shared_session(self.host, entity)

    def __repr__(self) -> str:
        state = "unresolved" if not self.resolved else repr(self.state.value)
        return f"<{self.__class__.__name__} {self.descriptor.name} of {self.host!r}: {state}>"


class OneSideRelationProxy(RelationProxy):
    """
    View from the entity holding the foreign key to the entity it references.
    """

    def _initial_state(self) -> Unresolved | Resolved:
        host = self.host
        if host._bound:
            return UNRESOLVED
        intent = host._relational.intents.get(self.descriptor.source_attribute)
        if intent is not None:
            return Resolved(intent.target)
        value = host._proxy(self.descriptor.source_attribute).value
        if value is None:
            return Resolved(None)
        target = _lookup(host._session, self.descriptor.target_model, self.descriptor.destination_attribute, value)
        return Resolved(target) if target is not None else UNRESOLVED

    def _empty_state(self) -> Resolved:
        return Resolved(None)

    def get(self) -> Optional["Model"]:
        return self._require_resolved().value

    async def load(self) -> Optional["Model"]:
        if isinstance(self.state, Resolved):
            return self.state.value
        session = self._require_session()
        descriptor = self.descriptor
        value = self.host._proxy(descriptor.source_attribute).value
        target = None
        if value is not None:
            target = session.lookup(descriptor.target_model, descriptor.destination_attribute, value)
            if target is None:
                target = await session.query(descriptor.target_model).where(
                    {descriptor.destination_attribute: value}
                ).first()
        self.state = Resolved(target)
        return target

    def set(self, target: Optional["Model"]) -> None:
        self._assert_modifiable()
        descriptor = self.descriptor
        current = self.state.value
        if current is None:
            current = current_link(self.host, descriptor.source_attribute)
        if target is current and target is self.state.value:
            return
        if target is not None:
            self._assert_valid_friend(target)

        remote = descriptor.remote_descriptor()
        if current is not None:
            previous_view = _resolved_view(current, remote)
            if previous_view is not None:
                previous_view._remove_as_side_effect(self.host)

        if target is None:
            unlink(self.host, descriptor.source_attribute)
            self.state = Resolved(None)
            return

        link(self.host, target, descriptor.source_attribute, descriptor.destination_attribute)
        self.state = Resolved(target)
        target_view = _resolved_view(target, remote)
        if target_view is not None:
            target_view._push_as_side_effect(self.host)


class ManySideRelationProxy(RelationProxy):
    """
    View from a referenced entity to the ordered list of entities pointing at it.
    """

    def _initial_state(self) -> Unresolved | Resolved:
        host = self.host
        if host._bound:
            return UNRESOLVED
        descriptor = self.descriptor
        members = [
            intent.host
            for intent in host._relational.intended_by
            if intent.source_attribute == descriptor.source_attribute
            and isinstance(intent.host, descriptor.fk_model)
        ]
        self._sort(members)
        return Resolved(members)

    def _empty_state(self) -> Resolved:
        return Resolved([])

    def get(self) -> list["Model"]:
        return list(self._require_resolved().value)

    async def load(self) -> list["Model"]:
        if isinstance(self.state, Resolved):
            return list(self.state.value)
        session = self._require_session()
        descriptor = self.descriptor
        source = descriptor.source_attribute
        key = self.host._proxy(descriptor.destination_attribute).value

        members: list["Model"] = []
        if key is not None:
            query = session.query(descriptor.fk_model).where({source: key})
            if descriptor.order_components:
                query = query.order([{name: direction} for name, direction in descriptor.order_components])
            for candidate in await query.all():
                if candidate._proxy(source).value == key:
                    members.append(candidate)
            for candidate in session.in_memory_entities(descriptor.fk_model):
                if _index_of(members, candidate) < 0 and candidate._proxy(source).value == key:
                    members.append(candidate)
        self._sort(members)
        self.state = Resolved(members)

        remote = descriptor.remote_descriptor()
        if remote is not None:
            for member in members:
                member_view = member._relational_view(remote)
                if not member_view.resolved:
                    member_view.state = Resolved(self.host)
        return list(members)

    def push(self, member: "Model") -> None:
        self._assert_modifiable()
        self._assert_valid_friend(member)
        items = self.state.value
        if _index_of(items, member) >= 0:
            raise ModelStateError(f"Duplicate entity {member!r} pushed into relation '{self.descriptor.name}'")

        descriptor = self.descriptor
        remote = descriptor.remote_descriptor()
        member_view = member._relational.views.get(remote.name) if remote is not None else None
        if member_view is not None and member_view.resolved:
            previous = member_view.state.value
        else:
            previous = current_link(member, descriptor.source_attribute)
        if previous is not None and previous is not self.host:
            previous_view = _resolved_view(previous, descriptor)
            if previous_view is not None:
                previous_view._remove_as_side_effect(member)

        link(member, self.host, descriptor.source_attribute, descriptor.destination_attribute)
        if _index_of(items, member) < 0:
            items.append(member)
        self._sort(items)
        if member_view is not None and member_view.resolved:
            member_view.state = Resolved(self.host)

    def remove(self, member: "Model") -> None:
        self._assert_modifiable()
        member._assert_writable()
        items = self.state.value
        index = _index_of(items, member)
        if index < 0:
            raise ModelStateError(f"{member!r} is not present in relation '{self.descriptor.name}'")

        unlink(member, self.descriptor.source_attribute)
        del items[index]
        member_view = _resolved_view(member, self.descriptor.remote_descriptor())
        if member_view is not None:
            member_view.state = Resolved(None)

    # Side effects from the opposite view ------------------------------------
    def _push_as_side_effect(self, member: "Model") -> None:
        if not isinstance(self.state, Resolved):
            return
        items = self.state.value
        if _index_of(items, member) < 0:
            items.append(member)
            self._sort(items)

    def _remove_as_side_effect(self, member: "Model") -> None:
        if not isinstance(self.state, Resolved):
            return
        items = self.state.value
        index = _index_of(items, member)
        if index >= 0:
            del items[index]

    def _sort(self, items: list["Model"]) -> None:
        components = self.descriptor.order_components
        if not components:
            return
        schema = self.descriptor.fk_model._require_schema()

        def compare(a: "Model", b: "Model") -> int:
            for name, direction in components:
                result = schema.attribute(name).type.compare_values(
                    a._proxy(name).value, b._proxy(name).value
                )
                if direction == "desc":
                    result = -result
                if result:
                    return result
            return 0

        items.sort(key=cmp_to_key(compare))


OneRelation.view_class = OneSideRelationProxy
ManyRelation.view_class = ManySideRelationProxy
