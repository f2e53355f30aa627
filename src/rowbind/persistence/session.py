"""
Session coordinating the adapter, unit of work and identity map.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type

from ..adapters.base import AdapterExecutionError
from ..core.model import Model
from ..core.relations import clear_intent, tear_down_relations
from ..errors import (
    AttributeValueError,
    ModelStateError,
    NativeQueryError,
    ParameterError,
    RelationalAttributeError,
)
from ..query import Query
from ..security.redaction import redact_params
from ..utils import get_logger, resolve_slow_query_ms, time_call
from .identity_map import IdentityMap
from .transaction import TransactionManager
from .unit_of_work import UnitOfWork

if TYPE_CHECKING:
    from ..adapters.base import DatabaseAdapter, ExecutionResult
    from ..core.database import Database


class Session:
    """
    Identity-mapped unit of work over one adapter connection.

    The connection is opened lazily on the first statement. Only
    :meth:`commit` opens a store transaction; everything else runs in the
    adapter's autocommit mode. A session is meant to be driven by a single
    flow of control.
    """

    def __init__(self, database: "Database", adapter_factory: Callable[[], "DatabaseAdapter"]) -> None:
        self.database = database
        self.adapter = adapter_factory()
        self.dialect = self.adapter.dialect
        self.identity_map = IdentityMap()
        self.unit_of_work = UnitOfWork()
        self.transaction_manager = TransactionManager(self.adapter)
        self.slow_query_ms = resolve_slow_query_ms(override=getattr(self.adapter, "slow_query_ms", None))
        self.logger = get_logger("persistence.session")
        self._connected = False
        self._closed = False

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self.commit()
        finally:
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._connected:
            await self.adapter.close()
            self._connected = False
        self.identity_map.clear()
        self.unit_of_work.clear()
        self.logger.debug("Session closed")

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Statements
    # ------------------------------------------------------------------ #
    async def _ensure_connection(self) -> None:
        if self._closed:
            raise ModelStateError("Session is closed")
        if not self._connected:
            await self.adapter.connect()
            self._connected = True

    async def execute(self, sql: str, params: Iterable[Any] | None = None) -> "ExecutionResult":
        await self._ensure_connection()
        param_list = list(params or [])
        try:
            with time_call(
                "session.execute",
                self.logger,
                sql=sql,
                params=redact_params(param_list),
                threshold_ms=self.slow_query_ms,
            ):
                return await self.adapter.execute(sql, param_list)
        except AdapterExecutionError as exc:
            raise NativeQueryError(str(exc), sql=sql, params=param_list) from exc

    def query(self, reference: "Type[Model] | str") -> Query:
        if isinstance(reference, type) and issubclass(reference, Model):
            schema = reference._require_schema()
            if schema.database is not self.database:
                raise ModelStateError(
                    f"Model '{reference.__name__}' belongs to database '{schema.database.name}', "
                    f"not '{self.database.name}'"
                )
            model = reference
        else:
            model = self.database.resolve_model(reference)
        return Query(self, model)

    async def get(self, model: Type[Model], pk: Any) -> Optional[Model]:
        """
        Return the entity with primary key ``pk``, from memory when mapped.
        """
        cached = self.identity_map.get(model, pk)
        if cached is not None:
            return cached
        return await self.query(model).where({model._require_schema().pk_attribute: pk}).first()

    # ------------------------------------------------------------------ #
    # Identity resolution
    # ------------------------------------------------------------------ #
    def resolve_entity(self, model: Type[Model], row: Mapping[str, Any]) -> Model:
        """
        Map a stored row to its single in-session entity, refreshing the
        non-dirty attributes of an already mapped one.
        """
        schema = model._require_schema()
        pk = schema.pk.type.from_storage(row[schema.pk_attribute])
        entity = self.identity_map.get(model, pk)
        if entity is not None:
            entity._refresh(row)
            return entity
        entity = model._reconstruct(self, row)
        self.identity_map.add(entity)
        return entity

    def lookup(self, model: Type[Model], attribute: str, value: Any) -> Optional[Model]:
        """
        Find an in-session entity of ``model`` by attribute value, without
        touching storage.
        """
        if value is None:
            return None
        value = model._require_schema().attribute(attribute).type.coerce(value)
        found = self.identity_map.lookup(model, attribute, value)
        if found is not None and not self.unit_of_work.is_scheduled_for_deletion(found):
            return found
        for entity in self.unit_of_work.creations:
            if isinstance(entity, model) and entity._proxy(attribute).value == value:
                return entity
        return None

    def in_memory_entities(self, model: Type[Model]) -> List[Model]:
        entities = [
            entity
            for entity in self.identity_map.values()
            if isinstance(entity, model) and not self.unit_of_work.is_scheduled_for_deletion(entity)
        ]
        entities.extend(entity for entity in self.unit_of_work.creations if isinstance(entity, model))
        return entities

    def is_scheduled_for_deletion(self, entity: Model) -> bool:
        return self.unit_of_work.is_scheduled_for_deletion(entity)

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def add(self, *entities: Model) -> Any:
        """
        Schedule ephemeral entities, and every ephemeral entity linked to them
        through relationship intents, for creation in dependency order.

        Adding a deleted entity unlocks it again.
        """
        if not entities:
            raise ParameterError("add() expects at least one entity")
        for entity in entities:
            self._assert_addable(entity)

        ephemeral = [entity for entity in entities if not entity._bound]
        connected = UnitOfWork.expand(ephemeral)
        for entity in connected:
            self._assert_addable(entity)
        # raises on cycles before anything is queued
        UnitOfWork.order_creations(connected)

        for entity in entities:
            if entity._bound and self.unit_of_work.cancel_deletion(entity):
                entity._writable = True
        for entity in connected:
            entity._writable = True
            entity._session = self
            self.unit_of_work.schedule_creation(entity)
        return entities[0] if len(entities) == 1 else list(entities)

    def _assert_addable(self, entity: Model) -> None:
        if not isinstance(entity, Model):
            raise ParameterError(f"Expected a model instance, got {type(entity).__name__}")
        if entity._require_schema().database is not self.database:
            raise ModelStateError(f"{entity!r} belongs to another database")
        if entity._session is not None and entity._session is not self:
            raise ModelStateError(f"{entity!r} is attached to another session")

    async def delete(self, *entities: Model) -> None:
        """
        Detach entities from every relation in memory, write-lock them and
        schedule their deletion. Entities never stored only lose their
        scheduled creation.
        """
        if not entities:
            raise ParameterError("delete() expects at least one entity")
        for entity in entities:
            if entity._session is not None and entity._session is not self:
                raise ModelStateError(f"{entity!r} is attached to another session")
            if entity._bound:
                if entity._session is not self:
                    raise ModelStateError(f"{entity!r} is not attached to this session")
                if self.unit_of_work.is_scheduled_for_deletion(entity):
                    continue
                await self._assert_no_hidden_dependents(entity)
                for member in tear_down_relations(entity):
                    self.unit_of_work.schedule_eager_update(member)
                entity._writable = False
                self.unit_of_work.schedule_deletion(entity)
            else:
                self.unit_of_work.cancel_creation(entity)
                tear_down_relations(entity)
                entity._writable = False
                entity._session = None

    async def _assert_no_hidden_dependents(self, entity: Model) -> None:
        for descriptor in entity._require_schema().relations:
            if descriptor.kind != "many":
                continue
            view = entity._relational_view(descriptor)
            if view.resolved:
                continue
            members = await view.load()
            if members:
                raise ModelStateError(
                    f"Cannot delete {entity!r}: relation '{descriptor.name}' was not loaded and has "
                    f"{len(members)} dependent(s)"
                )

    # ------------------------------------------------------------------ #
    # Commit
    # ------------------------------------------------------------------ #
    async def commit(self) -> None:
        """
        Flush creations, eager foreign key updates, deletions and remaining
        updates in one transaction. On failure the transaction is rolled
        back, in-memory state is restored and the error is re-raised.
        """
        await self._ensure_connection()
        uow = self.unit_of_work
        creations = UnitOfWork.order_creations(UnitOfWork.expand(list(uow.creations)))
        snapshot = self._snapshot(creations)
        counts = {"created": 0, "deleted": 0, "updated": 0}
        try:
            async with self.transaction_manager.transaction():
                for entity in creations:
                    await self._create(entity)
                    counts["created"] += 1
                for entity in list(uow.eager_updates):
                    if await self._update(entity):
                        counts["updated"] += 1
                for entity in list(uow.deletions):
                    await self._delete_row(entity)
                    counts["deleted"] += 1
                for entity in self.identity_map.values():
                    if await self._update(entity):
                        counts["updated"] += 1
        except BaseException:
            self._restore(snapshot)
            self.logger.warning("Commit failed; in-memory state restored")
            raise
        uow.clear()
        self.logger.info(
            "Committed %d creation(s), %d deletion(s), %d update(s)",
            counts["created"],
            counts["deleted"],
            counts["updated"],
        )

    async def _create(self, entity: Model) -> None:
        schema = entity._require_schema()
        entity.model_will_store()
        self._assert_storable(entity, creating=True)

        values: Dict[str, Any] = {}
        returning: List[str] = []
        for name in schema.attributes:
            value = entity._proxies[name].value
            if value is None:
                returning.append(name)
            else:
                values[name] = value
        query = Query(self, type(entity))
        rows = await query._insert_rows(query._payload(values, allow_empty=True), returning)
        if returning:
            if not rows:
                raise ModelStateError(f"Insert of {entity!r} returned no row")
            entity._absorb({name: rows[0][name] for name in returning})

        entity._bound = True
        entity._writable = True
        entity._session = self
        entity._dirty.clear()
        self.identity_map.add(entity)
        self.unit_of_work.cancel_creation(entity)

        for intent in list(entity._relational.intended_by):
            clear_intent(intent.host, intent.source_attribute)
            intent.host._proxy(intent.source_attribute).write_as_side_effect(
                entity._proxy(intent.destination_attribute).value
            )
        entity.model_did_store()

    async def _update(self, entity: Model) -> bool:
        if not entity._dirty or not entity._bound:
            return False
        schema = entity._require_schema()
        entity.model_will_store()
        self._assert_storable(entity, creating=False)

        pk = schema.pk_attribute
        original_pk = entity._dirty.get(pk, entity.pk)
        values = {name: entity._proxies[name].value for name in entity._dirty}
        rows = await Query(self, type(entity)).where({pk: original_pk}).returning(pk).update(values)
        if not rows:
            raise ModelStateError(f"{entity!r} no longer exists in storage")
        if original_pk != entity.pk:
            self.identity_map.rekey(entity, original_pk)
        entity._dirty.clear()
        entity.model_did_store()
        return True

    async def _delete_row(self, entity: Model) -> None:
        pk = entity._require_schema().pk_attribute
        original_pk = entity._dirty.get(pk, entity.pk)
        await Query(self, type(entity)).where({pk: original_pk}).returning(pk).delete(notify=False)
        self._forget(entity)

    def _assert_storable(self, entity: Model, *, creating: bool) -> None:
        for name, identity in entity._require_schema().attributes.items():
            attribute_type = identity.type
            if attribute_type.nullable or entity._proxies[name].value is not None:
                continue
            if attribute_type.is_fk:
                raise RelationalAttributeError(
                    "required foreign key has no value and no pending relationship", identity=identity
                )
            if creating and attribute_type.has_store_default:
                continue
            raise AttributeValueError("required attribute has no value", identity=identity)

    # ------------------------------------------------------------------ #
    # Store-level deletions
    # ------------------------------------------------------------------ #
    def _handle_store_deletion(
        self, model: Type[Model], rows: Sequence[Mapping[str, Any]], *, notify: bool
    ) -> List[Model]:
        schema = model._require_schema()
        entities: List[Model] = []
        for row in rows:
            if schema.pk_attribute not in row:
                continue
            pk = schema.pk.type.from_storage(row[schema.pk_attribute])
            entity = self.identity_map.get(model, pk)
            if entity is None:
                entity = model._reconstruct(self, row)
                entity._bound = False
                entity._session = None
                entity._writable = False
            elif notify:
                for member in tear_down_relations(entity):
                    self.unit_of_work.schedule_eager_update(member)
                self._forget(entity)
            entities.append(entity)
        return entities

    def _forget(self, entity: Model) -> None:
        self.identity_map.remove(entity)
        self.unit_of_work.cancel_deletion(entity)
        entity._bound = False
        entity._session = None
        entity._writable = False
        entity._dirty.clear()
        entity._relational.views.clear()

    # ------------------------------------------------------------------ #
    # Snapshots
    # ------------------------------------------------------------------ #
    def _snapshot(self, creations: Iterable[Model]) -> Dict[str, Any]:
        tracked: Dict[Model, None] = {}
        for group in (
            self.identity_map.values(),
            creations,
            self.unit_of_work.deletions,
            self.unit_of_work.eager_updates,
        ):
            for entity in group:
                tracked.setdefault(entity, None)
        return {
            "identity_map": self.identity_map.snapshot(),
            "unit_of_work": self.unit_of_work.snapshot(),
            "entities": [(entity, entity._capture()) for entity in tracked],
        }

    def _restore(self, snapshot: Mapping[str, Any]) -> None:
        self.identity_map.restore(snapshot["identity_map"])
        self.unit_of_work.restore(snapshot["unit_of_work"])
        for entity, memento in snapshot["entities"]:
            entity._restore(memento)

    def __repr__(self) -> str:
        return (
            f"<Session {self.database.name} mapped={len(self.identity_map)} "
            f"creations={len(self.unit_of_work.creations)} deletions={len(self.unit_of_work.deletions)}>"
        )
