"""Per-connection routing decisions for imported services."""

from __future__ import annotations

import logging
from typing import Optional

from cl_policy.engine import PolicyEngine

from .endpoints import Endpoint, EndpointSynchronizer
from .errors import ServiceNotFoundError
from .models import Service
from .ownership import owner_of
from .store import ResourceStore

LOG = logging.getLogger(__name__)


class ConnectionRouter:
    """Resolve a connection to a local service into a dataplane endpoint.

    A missing service (or port) raises :class:`ServiceNotFoundError`.  A
    service that exists but has no permitted endpoint, because it has no
    sources, its dataplanes are down, or every gateway is denied, raises
    ``ConnectionResetError``: the name resolves but the connection is
    refused.
    """

    def __init__(
        self,
        store: ResourceStore,
        synchronizer: EndpointSynchronizer,
        engine: PolicyEngine,
    ) -> None:
        self._store = store
        self._synchronizer = synchronizer
        self._engine = engine

    def connect(
        self,
        service_src: str,
        namespace: str,
        name: str,
        port: int,
        key: Optional[str] = None,
    ) -> Endpoint:
        service = self._store.get(Service, namespace, name)
        if service is None or service.port != port:
            raise ServiceNotFoundError(f"service {namespace}/{name}:{port} not found")

        import_key = owner_of(service.meta.labels)
        entry = self._synchronizer.lookup(import_key) if import_key is not None else None
        if entry is None or not entry.routable:
            LOG.debug("No route for %s/%s:%d", namespace, name, port)
            raise ConnectionResetError(f"service {namespace}/{name}:{port} has no backend")

        candidates = sorted(entry.endpoints)
        decision = self._engine.route(service_src, name, candidates, key)
        if not decision.allowed:
            raise ConnectionResetError(
                f"connection from {service_src} to {namespace}/{name}:{port} refused"
            )
        LOG.debug(
            "Routing %s -> %s/%s:%d via %s",
            service_src,
            namespace,
            name,
            port,
            decision.target,
        )
        return decision.target  # type: ignore[return-value]
