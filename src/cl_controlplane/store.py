"""Object store contract and the in-memory implementation.

The real cluster object store is an external collaborator.  The core only
relies on the operations of :class:`ResourceStore`: CRUD with optimistic
concurrency on ``update`` plus change notification through registered
handlers.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple, Type, TypeVar

from .errors import AlreadyExistsError, NotFoundError, StaleWriteError
from .events import EventType, WatchEvent

LOG = logging.getLogger(__name__)

T = TypeVar("T")
WatchHandler = Callable[[WatchEvent], None]


class ResourceStore(ABC):
    """Operations the control plane consumes from the object store."""

    @abstractmethod
    def create(self, obj: T) -> T:
        """Persist a new object and return the stored copy."""

    @abstractmethod
    def get(self, kind: Type[T], namespace: str, name: str) -> Optional[T]:
        """Return a copy of the object or ``None`` if it does not exist."""

    @abstractmethod
    def update(self, obj: T) -> T:
        """Write ``obj`` back; raises StaleWriteError on version mismatch."""

    @abstractmethod
    def delete(self, kind: Type[T], namespace: str, name: str) -> None:
        """Remove the object; raises NotFoundError if it does not exist."""

    @abstractmethod
    def list(self, kind: Type[T], namespace: Optional[str] = None) -> List[T]:
        """Return copies of all objects of ``kind``."""

    @abstractmethod
    def subscribe(self, name: str, handler: WatchHandler) -> None:
        """Register ``handler`` for change notifications."""

    @abstractmethod
    def unsubscribe(self, name: str) -> None:
        """Drop a previously registered handler."""


_Key = Tuple[str, str, str]


class MemoryStore(ResourceStore):
    """Thread-safe in-process store.

    Every successful create, update or delete counts as one write in
    :attr:`write_count`, which makes no-op suppression observable in tests.
    Objects exposing a ``validate()`` method are validated before being
    persisted, mirroring admission checks of a real API server.
    """

    def __init__(self) -> None:
        self._objects: Dict[_Key, object] = {}
        self._handlers: Dict[str, WatchHandler] = {}
        self._lock = threading.RLock()
        self._versions = itertools.count(1)
        self._creations = itertools.count(1)
        self.write_count = 0

    @staticmethod
    def _key(kind: type, namespace: str, name: str) -> _Key:
        return kind.__name__, namespace, name

    def _key_of(self, obj: object) -> _Key:
        meta = obj.meta  # type: ignore[attr-defined]
        return self._key(type(obj), meta.namespace, meta.name)

    # ------------------------------------------------------------------
    # Watch registration
    # ------------------------------------------------------------------
    def subscribe(self, name: str, handler: WatchHandler) -> None:
        with self._lock:
            if name in self._handlers:
                raise ValueError(f"handler '{name}' already registered")
            self._handlers[name] = handler

    def unsubscribe(self, name: str) -> None:
        with self._lock:
            self._handlers.pop(name, None)

    def _notify(self, event_type: EventType, obj: object) -> None:
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            try:
                handler(WatchEvent(event_type, copy.deepcopy(obj)))
            except Exception:  # pragma: no cover - logged for visibility
                LOG.exception("watch handler failed for %s event", event_type.value)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def create(self, obj: T) -> T:
        validate = getattr(obj, "validate", None)
        if validate is not None:
            validate()
        key = self._key_of(obj)
        with self._lock:
            if key in self._objects:
                raise AlreadyExistsError(f"{key[0]} {key[1]}/{key[2]} already exists")
            stored = copy.deepcopy(obj)
            meta = stored.meta  # type: ignore[attr-defined]
            meta.resource_version = next(self._versions)
            meta.creation_index = next(self._creations)
            meta.uid = uuid.uuid4().hex
            self._objects[key] = stored
            self.write_count += 1
            result = copy.deepcopy(stored)
        self._notify(EventType.ADDED, result)
        return result

    def get(self, kind: Type[T], namespace: str, name: str) -> Optional[T]:
        with self._lock:
            stored = self._objects.get(self._key(kind, namespace, name))
            return copy.deepcopy(stored) if stored is not None else None  # type: ignore[return-value]

    def update(self, obj: T) -> T:
        validate = getattr(obj, "validate", None)
        if validate is not None:
            validate()
        key = self._key_of(obj)
        with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFoundError(f"{key[0]} {key[1]}/{key[2]} not found")
            current_meta = current.meta  # type: ignore[attr-defined]
            meta = obj.meta  # type: ignore[attr-defined]
            if meta.resource_version != current_meta.resource_version:
                raise StaleWriteError(
                    key, meta.resource_version, current_meta.resource_version
                )
            stored = copy.deepcopy(obj)
            stored.meta.resource_version = next(self._versions)  # type: ignore[attr-defined]
            stored.meta.uid = current_meta.uid  # type: ignore[attr-defined]
            stored.meta.creation_index = current_meta.creation_index  # type: ignore[attr-defined]
            self._objects[key] = stored
            self.write_count += 1
            result = copy.deepcopy(stored)
        self._notify(EventType.MODIFIED, result)
        return result

    def delete(self, kind: Type[T], namespace: str, name: str) -> None:
        key = self._key(kind, namespace, name)
        with self._lock:
            stored = self._objects.pop(key, None)
            if stored is None:
                raise NotFoundError(f"{key[0]} {namespace}/{name} not found")
            self.write_count += 1
        self._notify(EventType.DELETED, stored)

    def list(self, kind: Type[T], namespace: Optional[str] = None) -> List[T]:
        with self._lock:
            items = [
                copy.deepcopy(obj)
                for (kind_name, ns, _), obj in self._objects.items()
                if kind_name == kind.__name__ and (namespace is None or ns == namespace)
            ]
        items.sort(key=lambda o: o.meta.creation_index)  # type: ignore[attr-defined]
        return items  # type: ignore[return-value]
