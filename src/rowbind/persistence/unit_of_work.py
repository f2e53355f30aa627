"""
Unit of Work batching scheduled creations and deletions.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from ..core.model import Model
from ..errors import RelationshipCycleError
from ..utils import get_logger

_VISITING = 1
_DONE = 2

logger = get_logger("persistence.unit_of_work")


class UnitOfWork:
    """
    Tracks entities scheduled for creation and deletion within a session,
    plus stored entities whose foreign keys must be cleared before deletions.

    Queues are insertion ordered; entities are compared by identity.
    """

    def __init__(self) -> None:
        self.creations: Dict[Model, None] = {}
        self.deletions: Dict[Model, None] = {}
        self.eager_updates: Dict[Model, None] = {}

    # Registration methods ----------------------------------------------
    def schedule_creation(self, instance: Model) -> None:
        self.creations.setdefault(instance, None)

    def cancel_creation(self, instance: Model) -> bool:
        return self.creations.pop(instance, False) is None

    def schedule_deletion(self, instance: Model) -> None:
        self.eager_updates.pop(instance, None)
        self.deletions.setdefault(instance, None)

    def cancel_deletion(self, instance: Model) -> bool:
        return self.deletions.pop(instance, False) is None

    def schedule_eager_update(self, instance: Model) -> None:
        if instance not in self.deletions:
            self.eager_updates.setdefault(instance, None)

    def is_scheduled_for_creation(self, instance: Model) -> bool:
        return instance in self.creations

    def is_scheduled_for_deletion(self, instance: Model) -> bool:
        return instance in self.deletions

    # Ordering -----------------------------------------------------------
    @staticmethod
    def expand(entities: Iterable[Model]) -> List[Model]:
        """
        Collect the connected set of ephemeral entities reachable through
        relationship intents in either direction.
        """
        seen: Dict[Model, None] = {}
        stack = [entity for entity in entities if not entity._bound]
        while stack:
            entity = stack.pop(0)
            if entity in seen:
                continue
            seen[entity] = None
            relational = entity._relational
            for intent in relational.intents.values():
                if not intent.target._bound and intent.target not in seen:
                    stack.append(intent.target)
            for intent in relational.intended_by:
                if not intent.host._bound and intent.host not in seen:
                    stack.append(intent.host)
        return list(seen)

    @staticmethod
    def order_creations(entities: Iterable[Model]) -> List[Model]:
        """
        Depth-first ordering placing every entity after the entities whose
        primary keys it is waiting for.
        """
        marks: Dict[Model, int] = {}
        ordered: List[Model] = []

        def visit(entity: Model, path: Tuple[Model, ...]) -> None:
            mark = marks.get(entity)
            if mark == _DONE:
                return
            if mark == _VISITING:
                cycle = " -> ".join(repr(item) for item in path + (entity,))
                logger.warning("Relationship cycle between ephemeral entities: %s", cycle)
                raise RelationshipCycleError(f"Cannot order creations, relationship cycle: {cycle}")
            marks[entity] = _VISITING
            for intent in entity._relational.intents.values():
                if not intent.target._bound:
                    visit(intent.target, path + (entity,))
            marks[entity] = _DONE
            ordered.append(entity)

        for entity in entities:
            visit(entity, ())
        return ordered

    # Snapshots ----------------------------------------------------------
    def snapshot(self) -> Tuple[Dict[Model, None], Dict[Model, None], Dict[Model, None]]:
        return dict(self.creations), dict(self.deletions), dict(self.eager_updates)

    def restore(self, snapshot: Tuple[Dict[Model, None], Dict[Model, None], Dict[Model, None]]) -> None:
        creations, deletions, eager_updates = snapshot
        self.creations = dict(creations)
        self.deletions = dict(deletions)
        self.eager_updates = dict(eager_updates)

    def clear(self) -> None:
        self.creations.clear()
        self.deletions.clear()
        self.eager_updates.clear()
