"""Event-driven controller running the Import reconciler."""

from __future__ import annotations

import logging
import time
from threading import Event, Thread
from typing import List, Optional, Set

from .errors import ReconcileCancelled
from .events import WatchEvent
from .models import CONDITION_TARGET_PORT_VALID, Dataplane, Import, ObjectKey, Service
from .reconciler import ImportReconciler, ReconcileResult
from .store import ResourceStore
from .workqueue import ShutDown, WorkQueue

LOG = logging.getLogger(__name__)

HANDLER_NAME = "import-controller"
ERROR_REQUEUE_DELAY = 1.0


class ImportController:
    """Translate store events into reconciliation requests.

    Events are mapped to the Import keys they affect and pushed onto a
    :class:`WorkQueue`; a pool of worker threads drains it.  The queue
    guarantees a single writer per Import while different Imports are
    reconciled in parallel.
    """

    def __init__(
        self,
        store: ResourceStore,
        reconciler: ImportReconciler,
        workers: int = 2,
        stop_event: Optional[Event] = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._workers = workers
        self._stop_event = stop_event or Event()
        self._queue: WorkQueue[ObjectKey] = WorkQueue()
        self._threads: List[_Worker] = []
        self._subscribed = False

    @property
    def queue(self) -> WorkQueue[ObjectKey]:
        return self._queue

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if not self._subscribed:
            self._store.subscribe(HANDLER_NAME, self.handle)
            self._subscribed = True
        self.resync()
        for index in range(self._workers):
            worker = _Worker(self, index, self._stop_event)
            worker.start()
            self._threads.append(worker)
        LOG.info("Import controller started with %d workers", self._workers)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        self._queue.shutdown()
        for worker in self._threads:
            worker.join(timeout)
        self._threads.clear()
        if self._subscribed:
            self._store.unsubscribe(HANDLER_NAME)
            self._subscribed = False
        LOG.info("Import controller stopped")

    def resync(self) -> None:
        """Restore port reservations and enqueue every Import.

        Owners of managed services whose Import is gone are enqueued too, so
        their services are cleaned up.
        """

        imports = self._store.list(Import)
        restored = self._reconciler.restore(imports)
        orphans = self._reconciler.orphaned_imports(imports)
        LOG.info(
            "Resync: %d imports, %d port reservations restored, %d orphaned",
            len(imports),
            restored,
            len(orphans),
        )
        for imp in imports:
            self._queue.add(imp.key)
        for key in sorted(orphans):
            self._queue.add(key)

    # ------------------------------------------------------------------
    # Event mapping
    # ------------------------------------------------------------------
    def handle(self, event: WatchEvent) -> None:
        # Only a change to the Import itself makes an in-flight pass stale.
        supersede = isinstance(event.obj, Import)
        for key in self.keys_for(event):
            self._queue.add(key, supersede=supersede)

    def keys_for(self, event: WatchEvent) -> Set[ObjectKey]:
        obj = event.obj
        if isinstance(obj, Import):
            return {obj.key}
        if isinstance(obj, Service):
            return self._reconciler.imports_for_service(obj)
        if isinstance(obj, Dataplane):
            if obj.meta.namespace != self._reconciler.settings.system_namespace:
                return set()
            return {imp.key for imp in self._store.list(Import)}
        return set()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    def process_next(self, timeout: Optional[float] = None) -> Optional[ReconcileResult]:
        """Reconcile the next queued Import.

        Returns the result, or ``None`` if the pass was cancelled or failed.
        Raises ``TimeoutError`` if nothing is queued within ``timeout`` and
        :class:`ShutDown` once the queue is closed.
        """

        key, cancel = self._queue.get(timeout)
        try:
            result = self._reconciler.reconcile(key, cancel)
        except ReconcileCancelled:
            LOG.debug("Reconciliation of %s superseded, restarting", key)
            return None
        except Exception:
            LOG.exception("Reconciliation of %s failed", key)
            self._queue.add_after(key, ERROR_REQUEUE_DELAY)
            return None
        finally:
            self._queue.done(key)

        if result.released_port is not None:
            self._requeue_conflicted(key)
        return result

    def run_until_idle(self, max_items: int = 1000) -> int:
        """Synchronously drain the queue; returns the number of items processed."""

        processed = 0
        while processed < max_items:
            try:
                self.process_next(timeout=0)
            except TimeoutError:
                break
            processed += 1
        return processed

    def wait_idle(self, timeout: float = 10.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._queue.idle():
                return True
            time.sleep(0.01)
        return self._queue.idle()

    def _requeue_conflicted(self, freed_by: ObjectKey) -> None:
        for imp in self._store.list(Import, freed_by.namespace):
            if imp.key != freed_by and not imp.is_condition_true(
                CONDITION_TARGET_PORT_VALID
            ):
                LOG.debug("Port freed by %s, retrying import %s", freed_by, imp.key)
                self._queue.add(imp.key)


class _Worker(Thread):
    """Drain the controller queue until stopped."""

    def __init__(self, controller: ImportController, index: int, stop_event: Event) -> None:
        super().__init__(name=f"import-worker-{index}", daemon=True)
        self._controller = controller
        self._stop_event = stop_event

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._controller.process_next(timeout=0.5)
            except TimeoutError:
                continue
            except ShutDown:
                break
