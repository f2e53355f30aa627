"""
Identity map ensuring a single in-memory instance per stored row.
"""

from __future__ import annotations

from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

from ..core.model import Model

IdentityKey = Tuple[str, Any]


class IdentityMap:
    """
    Stores entities keyed by (collection, primary key).
    """

    def __init__(self) -> None:
        self._store: Dict[IdentityKey, Model] = {}
        self._lock = RLock()

    @staticmethod
    def _make_key(instance_or_model, pk) -> IdentityKey:
        if isinstance(instance_or_model, type):
            model = instance_or_model
        else:
            model = instance_or_model.__class__
        return (model._meta.collection, model._require_schema().pk.type.coerce(pk))

    def add(self, instance: Model) -> None:
        pk = instance.pk
        if pk is None:
            return
        key = self._make_key(instance, pk)
        with self._lock:
            self._store[key] = instance

    def get(self, model: Type[Model], pk) -> Optional[Model]:
        key = self._make_key(model, pk)
        with self._lock:
            return self._store.get(key)

    def remove(self, instance: Model) -> None:
        pk = instance.pk
        if pk is None:
            return
        key = self._make_key(instance, pk)
        with self._lock:
            if self._store.get(key) is instance:
                del self._store[key]

    def rekey(self, instance: Model, previous_pk) -> None:
        with self._lock:
            key = self._make_key(instance, previous_pk)
            if self._store.get(key) is instance:
                del self._store[key]
        self.add(instance)

    def lookup(self, model: Type[Model], attribute: str, value: Any) -> Optional[Model]:
        """
        Find a mapped entity of ``model`` whose ``attribute`` equals ``value``.
        """
        if value is None:
            return None
        if attribute == model._require_schema().pk_attribute:
            return self.get(model, value)
        with self._lock:
            for instance in self._store.values():
                if isinstance(instance, model) and instance._proxy(attribute).value == value:
                    return instance
        return None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def values(self) -> List[Model]:
        with self._lock:
            return list(self._store.values())

    def snapshot(self) -> Dict[IdentityKey, Model]:
        with self._lock:
            return dict(self._store)

    def restore(self, snapshot: Dict[IdentityKey, Model]) -> None:
        with self._lock:
            self._store = dict(snapshot)

    def __iter__(self) -> Iterator[Model]:
        return iter(self.values())

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, instance: Model) -> bool:
        pk = instance.pk
        if pk is None:
            return False
        key = self._make_key(instance, pk)
        with self._lock:
            return self._store.get(key) is instance
