"""Import reconciliation.

The reconciler turns one Import into its local services and endpoint slice
and records the outcome in two status conditions:

``TargetPortValid``
    The Import holds its effective target port.
``ServiceValid``
    Every managed service exists, is owned by this Import and endpoints are
    attached.

Reconciliation is level-triggered: :meth:`ImportReconciler.reconcile`
always starts from the current store content and converges towards it, so
it can be invoked any number of times for any reason.  Writes are skipped
when the stored state already matches.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .allocator import PortAllocator, Reservation
from .endpoints import EndpointSynchronizer
from .errors import (
    AlreadyExistsError,
    NotFoundError,
    ReconcileCancelled,
    StoreError,
    TransientStoreError,
)
from .models import (
    CONDITION_SERVICE_VALID,
    CONDITION_TARGET_PORT_VALID,
    DATAPLANE_APP,
    Condition,
    Dataplane,
    Import,
    ObjectKey,
    ObjectMeta,
    Service,
    system_service_name,
)
from .ownership import (
    Ownership,
    classify,
    is_adopted,
    owner_of,
    ownership_labels,
    stamp_ownership,
    strip_ownership,
)
from .store import ResourceStore

LOG = logging.getLogger(__name__)

REASON_PORT_RESERVED = "PortReserved"
REASON_PORT_CONFLICT = "PortConflict"
REASON_SERVICE_READY = "ServiceReady"
REASON_SERVICE_CONFLICT = "ServiceConflict"
REASON_SERVICE_NOT_FOUND = "ServiceNotFound"
REASON_TARGET_PORT_INVALID = "TargetPortInvalid"
REASON_RETRY_EXHAUSTED = "RetryExhausted"

# Races with other writers surface as these; a fresh pass resolves them.
_RETRYABLE = (TransientStoreError, AlreadyExistsError, NotFoundError)


@dataclass(frozen=True)
class ReconcilerSettings:
    """Tunables of the reconciler.

    Attributes
    ----------
    system_namespace:
        Namespace of the control plane.  Dataplane registrations live here,
        and so do the system services of Imports created elsewhere.
    max_retries:
        Number of retried passes after a transient store failure before the
        Import is marked invalid.
    backoff_base, backoff_max:
        Exponential backoff bounds, in seconds, between retried passes.
    """

    system_namespace: str = "clusterlink-system"
    max_retries: int = 5
    backoff_base: float = 0.05
    backoff_max: float = 2.0


@dataclass(frozen=True)
class ReconcileResult:
    key: ObjectKey
    deleted: bool = False
    valid: bool = False
    exhausted: bool = False
    released_port: Optional[int] = None


@dataclass(frozen=True)
class _DesiredService:
    service: Service
    merge: bool


class ImportReconciler:
    """Drive Imports towards their desired local state."""

    def __init__(
        self,
        store: ResourceStore,
        allocator: PortAllocator,
        synchronizer: EndpointSynchronizer,
        settings: Optional[ReconcilerSettings] = None,
    ) -> None:
        self._store = store
        self._allocator = allocator
        self._synchronizer = synchronizer
        self._settings = settings or ReconcilerSettings()
        self._system_index: Dict[ObjectKey, ObjectKey] = {}
        self._lock = threading.Lock()

    @property
    def settings(self) -> ReconcilerSettings:
        return self._settings

    @property
    def synchronizer(self) -> EndpointSynchronizer:
        return self._synchronizer

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def reconcile(
        self, key: ObjectKey, cancel: Optional[threading.Event] = None
    ) -> ReconcileResult:
        """Reconcile the Import ``key`` against the current store content.

        Transient store failures restart the pass from a fresh read, with
        jittered exponential backoff.  Once ``max_retries`` is exceeded the
        Import is marked invalid instead of looping forever.  Raises
        :class:`ReconcileCancelled` when ``cancel`` is set, leaving the
        remaining writes to the next pass.
        """

        attempt = 0
        while True:
            self._check_cancelled(key, cancel)
            try:
                return self._reconcile_once(key, cancel)
            except _RETRYABLE as exc:
                attempt += 1
                if attempt > self._settings.max_retries:
                    LOG.warning(
                        "Giving up on import %s after %d attempts: %s",
                        key,
                        attempt,
                        exc,
                    )
                    self._mark_exhausted(key, exc)
                    return ReconcileResult(key, exhausted=True)
                delay = self._backoff(attempt)
                LOG.warning(
                    "Transient store error reconciling import %s (attempt %d/%d), "
                    "retrying in %.2fs: %s",
                    key,
                    attempt,
                    self._settings.max_retries,
                    delay,
                    exc,
                )
                self._wait(key, cancel, delay)

    def restore(self, imports: Iterable[Import]) -> int:
        """Rebuild port reservations from Imports that held one before.

        Imports are replayed in creation order so derived ports come out
        the same as before the restart.  Returns the number restored.
        """

        restored = 0
        for imp in sorted(imports, key=lambda i: i.meta.creation_index):
            if not imp.is_condition_true(CONDITION_TARGET_PORT_VALID):
                continue
            reservation = self._reserve(imp)
            if reservation.ok:
                restored += 1
            else:
                LOG.warning(
                    "Import %s lost target port %d to %s during restore",
                    imp.key,
                    reservation.port,
                    reservation.owner,
                )
        return restored

    def orphaned_imports(self, imports: Iterable[Import]) -> Set[ObjectKey]:
        """Imports named by service ownership labels that no longer exist.

        These were deleted while nothing was watching; reconciling their keys
        finalizes them.
        """

        live = {imp.key for imp in imports}
        orphans: Set[ObjectKey] = set()
        for service in self._store.list(Service):
            owner = owner_of(service.meta.labels)
            if owner is not None and owner not in live:
                orphans.add(owner)
        return orphans

    def imports_for_service(self, service: Service) -> Set[ObjectKey]:
        """Imports whose state may depend on ``service``."""

        keys: Set[ObjectKey] = set()
        owner = owner_of(service.meta.labels)
        if owner is not None:
            keys.add(owner)
        keys.add(service.key)
        with self._lock:
            system_owner = self._system_index.get(service.key)
        if system_owner is not None:
            keys.add(system_owner)
        return keys

    # ------------------------------------------------------------------
    # Reconciliation pass
    # ------------------------------------------------------------------
    def _reconcile_once(
        self, key: ObjectKey, cancel: Optional[threading.Event]
    ) -> ReconcileResult:
        imp = self._store.get(Import, key.namespace, key.name)
        if imp is None:
            return self._finalize(key, cancel)

        previous_port = self._allocator.lookup(key.namespace, key)
        reservation = self._reserve(imp)
        if not reservation.ok:
            released = self._allocator.release(key.namespace, key)
            self._synchronizer.remove(key)
            # Services still exposing the old port would collide with the
            # next Import reserving it.
            self._release_services(key, cancel)
            LOG.warning(
                "Import %s target port %d is held by import %s",
                key,
                reservation.port,
                reservation.owner,
            )
            changed = imp.set_condition(
                Condition(
                    CONDITION_TARGET_PORT_VALID,
                    False,
                    REASON_PORT_CONFLICT,
                    f"target port {reservation.port} is used by import {reservation.owner}",
                )
            )
            changed |= imp.set_condition(
                Condition(
                    CONDITION_SERVICE_VALID,
                    False,
                    REASON_TARGET_PORT_INVALID,
                    "service is not exposed while the target port is in conflict",
                )
            )
            self._write_status(imp, changed, cancel)
            return ReconcileResult(key, released_port=released)

        released = previous_port if previous_port not in (None, reservation.port) else None
        changed = imp.set_condition(
            Condition(CONDITION_TARGET_PORT_VALID, True, REASON_PORT_RESERVED)
        )

        failure: Optional[Tuple[str, str]] = None
        for desired in self._desired_services(imp, reservation.port):
            failure = self._ensure_service(key, desired, cancel)
            if failure is not None:
                break

        if failure is None:
            dataplanes = self._store.list(Dataplane, self._settings.system_namespace)
            self._synchronizer.sync(key, imp.spec.sources, dataplanes)
            changed |= imp.set_condition(
                Condition(CONDITION_SERVICE_VALID, True, REASON_SERVICE_READY)
            )
        else:
            self._synchronizer.remove(key)
            reason, message = failure
            changed |= imp.set_condition(
                Condition(CONDITION_SERVICE_VALID, False, reason, message)
            )

        self._write_status(imp, changed, cancel)
        return ReconcileResult(key, valid=failure is None, released_port=released)

    def _reserve(self, imp: Import) -> Reservation:
        if imp.spec.target_port:
            return self._allocator.reserve(
                imp.key.namespace, imp.spec.target_port, imp.key
            )
        return self._allocator.allocate(imp.key.namespace, imp.key)

    def _desired_services(self, imp: Import, target_port: int) -> List[_DesiredService]:
        key = imp.key
        system_namespace = self._settings.system_namespace
        selector = {"app": DATAPLANE_APP}
        if key.namespace == system_namespace:
            return [
                _DesiredService(
                    Service(
                        meta=ObjectMeta(name=key.name, namespace=key.namespace),
                        port=imp.spec.port,
                        target_port=target_port,
                        selector=selector,
                    ),
                    merge=imp.merge,
                )
            ]

        system_key = ObjectKey(system_namespace, system_service_name(key))
        with self._lock:
            self._system_index[system_key] = key
        system = Service(
            meta=ObjectMeta(name=system_key.name, namespace=system_key.namespace),
            port=imp.spec.port,
            target_port=target_port,
            selector=selector,
        )
        user = Service(
            meta=ObjectMeta(name=key.name, namespace=key.namespace),
            port=imp.spec.port,
            external_name=f"{system_key.name}.{system_namespace}.svc.cluster.local",
        )
        return [_DesiredService(system, merge=False), _DesiredService(user, merge=imp.merge)]

    def _ensure_service(
        self,
        key: ObjectKey,
        desired: _DesiredService,
        cancel: Optional[threading.Event],
    ) -> Optional[Tuple[str, str]]:
        """Converge one managed service; return (reason, message) on failure."""

        target = desired.service
        existing = self._store.get(Service, target.meta.namespace, target.meta.name)

        if existing is None:
            if desired.merge:
                return (
                    REASON_SERVICE_NOT_FOUND,
                    f"merge import requires existing service {target.key}",
                )
            target.meta.labels.update(ownership_labels(key))
            self._check_cancelled(key, cancel)
            self._store.create(target)
            LOG.info("Created service %s for import %s", target.key, key)
            return None

        state = classify(existing, key, desired.merge)
        if state is Ownership.FOREIGN_CONFLICT:
            if owner_of(existing.meta.labels) == key:
                # Adopted while in merge mode; the Import left merge mode.
                strip_ownership(existing)
                self._check_cancelled(key, cancel)
                self._store.update(existing)
                LOG.info("Released adopted service %s of import %s", target.key, key)
            LOG.warning("Service %s conflicts with import %s", target.key, key)
            return (
                REASON_SERVICE_CONFLICT,
                f"service {target.key} exists and is not owned by this import",
            )

        if state is Ownership.ADOPTABLY_FOREIGN:
            stamp_ownership(existing, key)
            self._check_cancelled(key, cancel)
            self._store.update(existing)
            LOG.info("Adopted service %s for merge import %s", target.key, key)
            return None

        if not is_adopted(existing.meta.labels) and not existing.same_spec(target):
            existing.copy_spec_from(target)
            self._check_cancelled(key, cancel)
            self._store.update(existing)
            LOG.info("Updated service %s for import %s", target.key, key)
        return None

    def _finalize(
        self, key: ObjectKey, cancel: Optional[threading.Event]
    ) -> ReconcileResult:
        """Release everything held by the deleted Import ``key``."""

        released = self._allocator.release(key.namespace, key)
        self._synchronizer.remove(key)
        self._release_services(key, cancel)

        with self._lock:
            for system_key in [k for k, v in self._system_index.items() if v == key]:
                del self._system_index[system_key]
        return ReconcileResult(key, deleted=True, released_port=released)

    def _release_services(
        self, key: ObjectKey, cancel: Optional[threading.Event]
    ) -> None:
        """Delete the services ``key`` created and hand back the ones it adopted.

        How a service was acquired is read from its own labels, so this works
        the same after a restart.
        """

        candidates = [ObjectKey(key.namespace, key.name)]
        if key.namespace != self._settings.system_namespace:
            candidates.insert(
                0, ObjectKey(self._settings.system_namespace, system_service_name(key))
            )

        for service_key in candidates:
            existing = self._store.get(Service, service_key.namespace, service_key.name)
            if existing is None or owner_of(existing.meta.labels) != key:
                continue
            self._check_cancelled(key, cancel)
            if is_adopted(existing.meta.labels):
                strip_ownership(existing)
                self._store.update(existing)
                LOG.info("Released service %s of import %s", service_key, key)
                continue
            try:
                self._store.delete(Service, service_key.namespace, service_key.name)
            except NotFoundError:
                LOG.debug("Service %s already deleted", service_key)
            else:
                LOG.info("Deleted service %s of import %s", service_key, key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _write_status(
        self, imp: Import, changed: bool, cancel: Optional[threading.Event]
    ) -> None:
        if not changed:
            LOG.debug("Import %s status unchanged", imp.key)
            return
        self._check_cancelled(imp.key, cancel)
        self._store.update(imp)
        LOG.info(
            "Import %s status: %s",
            imp.key,
            ", ".join(
                f"{c.type}={c.status} ({c.reason})" for c in imp.conditions.values()
            ),
        )

    def _mark_exhausted(self, key: ObjectKey, exc: Exception) -> None:
        try:
            imp = self._store.get(Import, key.namespace, key.name)
            if imp is None:
                return
            changed = imp.set_condition(
                Condition(
                    CONDITION_SERVICE_VALID,
                    False,
                    REASON_RETRY_EXHAUSTED,
                    f"store kept failing: {exc}",
                )
            )
            if changed:
                self._store.update(imp)
        except StoreError:
            LOG.exception("Unable to record retry exhaustion for import %s", key)

    def _backoff(self, attempt: int) -> float:
        delay = min(
            self._settings.backoff_base * (2 ** (attempt - 1)),
            self._settings.backoff_max,
        )
        return delay * (0.5 + random.random())  # noqa: S311

    def _wait(self, key: ObjectKey, cancel: Optional[threading.Event], delay: float) -> None:
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise ReconcileCancelled(str(key))

    @staticmethod
    def _check_cancelled(key: ObjectKey, cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled(str(key))
