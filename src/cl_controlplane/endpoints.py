"""Map Import sources onto live dataplane endpoints."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Sequence

from .models import Dataplane, ImportSource, ObjectKey

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class Endpoint:
    """A dataplane replica able to carry traffic to ``peer``."""

    peer: str
    address: str
    export_name: str = ""
    export_namespace: str = ""

    def __str__(self) -> str:
        return f"{self.peer}/{self.address}"


@dataclass(frozen=True)
class EndpointSliceEntry:
    """Routable endpoints currently derived for one Import.

    ``dataplanes`` records the uids of the registrations the entry was built
    from; ``generation`` increases every time the entry is regenerated.
    """

    import_key: ObjectKey
    endpoints: FrozenSet[Endpoint]
    dataplanes: FrozenSet[str]
    generation: int

    @property
    def routable(self) -> bool:
        return bool(self.endpoints)


def resolve_endpoints(
    sources: Sequence[ImportSource], dataplanes: Iterable[Dataplane]
) -> FrozenSet[Endpoint]:
    """Union of live endpoints serving each source's peer.

    Sources without a peer, or whose dataplanes are all scaled down, add
    nothing.  An empty result is valid: the service exists but has no route.
    """

    dataplanes = list(dataplanes)
    endpoints = set()
    for source in sources:
        for dataplane in dataplanes:
            if not dataplane.serves(source.peer):
                continue
            for address in dataplane.endpoints:
                endpoints.add(
                    Endpoint(
                        peer=source.peer,
                        address=address,
                        export_name=source.export_name,
                        export_namespace=source.export_namespace,
                    )
                )
    return frozenset(endpoints)


class EndpointSynchronizer:
    """Keeps one :class:`EndpointSliceEntry` per valid Import.

    Entries are fully derived state: they are recomputed from the sources and
    the dataplane registrations on every sync and never persisted.  When the
    set of registration uids changes (a dataplane object was deleted and
    re-created) the entry is rebuilt from scratch rather than patched.
    """

    def __init__(self) -> None:
        self._slices: Dict[ObjectKey, EndpointSliceEntry] = {}
        self._lock = threading.Lock()

    def sync(
        self,
        import_key: ObjectKey,
        sources: Sequence[ImportSource],
        dataplanes: Iterable[Dataplane],
    ) -> EndpointSliceEntry:
        dataplanes = list(dataplanes)
        endpoints = resolve_endpoints(sources, dataplanes)
        uids = frozenset(dp.meta.uid for dp in dataplanes)

        with self._lock:
            current = previous = self._slices.get(import_key)
            if current is not None and current.dataplanes != uids:
                LOG.info(
                    "Dataplane registrations changed for import %s, rebuilding endpoints",
                    import_key,
                )
                self._slices.pop(import_key)
                current = None

            if current is not None and current.endpoints == endpoints:
                return current

            generation = previous.generation + 1 if previous is not None else 1
            entry = EndpointSliceEntry(import_key, endpoints, uids, generation)
            self._slices[import_key] = entry

        if endpoints:
            LOG.debug("Import %s routes to %s", import_key, sorted(map(str, endpoints)))
        else:
            LOG.info("Import %s has no reachable endpoints", import_key)
        return entry

    def remove(self, import_key: ObjectKey) -> Optional[EndpointSliceEntry]:
        with self._lock:
            return self._slices.pop(import_key, None)

    def lookup(self, import_key: ObjectKey) -> Optional[EndpointSliceEntry]:
        with self._lock:
            return self._slices.get(import_key)

    def keys(self) -> Sequence[ObjectKey]:
        with self._lock:
            return list(self._slices)
