"""Target port reservation for Imports."""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import ObjectKey

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Outcome of a reservation attempt.

    ``owner`` is the Import holding ``port`` after the attempt: the caller on
    success, the existing holder on conflict.
    """

    namespace: str
    port: int
    owner: ObjectKey
    ok: bool

    @property
    def conflict_owner(self) -> Optional[ObjectKey]:
        return None if self.ok else self.owner


@dataclass
class _NamespaceTable:
    lock: threading.Lock
    by_port: Dict[int, ObjectKey]
    by_owner: Dict[ObjectKey, int]


class PortAllocator:
    """Namespace-scoped table of target ports held by Imports.

    Explicit ports are reserved as requested.  Imports without an explicit
    target port get one derived from their identity: ``namespace/name`` is
    hashed into ``[port_min, port_max)`` and collisions are resolved by
    linear probing, so the same Import keeps the same port across restarts
    as long as the table is rebuilt in the same order.

    Reservation and release run under a per-namespace lock.  A failed
    reservation leaves the table untouched.

    Parameters
    ----------
    port_min, port_max:
        Half-open range used for derived ports.
    """

    def __init__(self, port_min: int = 20000, port_max: int = 30000) -> None:
        if not 0 < port_min < port_max <= 65536:
            raise ValueError(f"invalid port range [{port_min}, {port_max})")
        self._port_min = port_min
        self._port_max = port_max
        self._tables: Dict[str, _NamespaceTable] = {}
        self._tables_guard = threading.Lock()

    def _table(self, namespace: str) -> _NamespaceTable:
        with self._tables_guard:
            table = self._tables.get(namespace)
            if table is None:
                table = _NamespaceTable(threading.Lock(), {}, {})
                self._tables[namespace] = table
            return table

    def _hash_owner(self, owner: ObjectKey) -> int:
        digest = hashlib.sha256(str(owner).encode("utf-8")).digest()
        span = self._port_max - self._port_min
        return self._port_min + int.from_bytes(digest[:4], "big") % span

    @staticmethod
    def _assign(table: _NamespaceTable, port: int, owner: ObjectKey) -> None:
        previous = table.by_owner.get(owner)
        if previous is not None and previous != port:
            del table.by_port[previous]
        table.by_port[port] = owner
        table.by_owner[owner] = port

    def reserve(self, namespace: str, port: int, owner: ObjectKey) -> Reservation:
        """Reserve an explicit ``port`` for ``owner``.

        Re-reserving the port already held is a no-op.  Reserving a different
        free port moves the owner's reservation to it.
        """

        table = self._table(namespace)
        with table.lock:
            holder = table.by_port.get(port)
            if holder is not None and holder != owner:
                return Reservation(namespace, port, holder, ok=False)
            if holder is None:
                self._assign(table, port, owner)
                LOG.info("Reserved target port %d for import %s", port, owner)
        return Reservation(namespace, port, owner, ok=True)

    def allocate(self, namespace: str, owner: ObjectKey) -> Reservation:
        """Reserve a port derived from ``owner``'s identity.

        An owner already holding a port inside the derived range keeps it.
        """

        table = self._table(namespace)
        with table.lock:
            current = table.by_owner.get(owner)
            if current is not None and self._port_min <= current < self._port_max:
                return Reservation(namespace, current, owner, ok=True)

            candidate = self._hash_owner(owner)
            start = candidate
            while candidate in table.by_port:
                candidate += 1
                if candidate >= self._port_max:
                    candidate = self._port_min
                if candidate == start:
                    raise RuntimeError(
                        f"port range exhausted in namespace '{namespace}'"
                    )
            self._assign(table, candidate, owner)
            LOG.info("Allocated target port %d for import %s", candidate, owner)
        return Reservation(namespace, candidate, owner, ok=True)

    def release(self, namespace: str, owner: ObjectKey) -> Optional[int]:
        """Drop ``owner``'s reservation and return the freed port."""

        table = self._table(namespace)
        with table.lock:
            port = table.by_owner.pop(owner, None)
            if port is not None:
                del table.by_port[port]
                LOG.info("Released target port %d held by import %s", port, owner)
        return port

    def lookup(self, namespace: str, owner: ObjectKey) -> Optional[int]:
        table = self._table(namespace)
        with table.lock:
            return table.by_owner.get(owner)

    def owner_of(self, namespace: str, port: int) -> Optional[ObjectKey]:
        table = self._table(namespace)
        with table.lock:
            return table.by_port.get(port)

    def snapshot(self) -> Dict[str, Dict[int, ObjectKey]]:
        """Return a copy of the reservation table, for introspection."""

        with self._tables_guard:
            tables: Tuple[Tuple[str, _NamespaceTable], ...] = tuple(self._tables.items())
        result: Dict[str, Dict[int, ObjectKey]] = {}
        for namespace, table in tables:
            with table.lock:
                if table.by_port:
                    result[namespace] = dict(table.by_port)
        return result
