"""Deduplicating work queue with per-key serialization."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Dict, Generic, Hashable, Optional, Set, TypeVar

K = TypeVar("K", bound=Hashable)


class ShutDown(Exception):
    """Raised by :meth:`WorkQueue.get` once the queue is shut down."""


class WorkQueue(Generic[K]):
    """Queue of keys where each key is pending at most once.

    * Adding a key that is already pending is a no-op, so bursts of events
      for the same key coalesce into one request.
    * A key handed out by :meth:`get` is not handed out again until
      :meth:`done` is called for it.  Keys added meanwhile are parked and
      re-queued by :meth:`done`, which serializes processing per key while
      different keys are processed in parallel.
    * Every key being processed carries a cancel event that is set when the
      key is added again with ``supersede``, telling the worker its view is
      stale.
    """

    def __init__(self) -> None:
        self._queue: Deque[K] = deque()
        self._dirty: Set[K] = set()
        self._processing: Dict[K, threading.Event] = {}
        self._timers: Set[threading.Timer] = set()
        self._cond = threading.Condition()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: K, supersede: bool = False) -> None:
        """Queue ``key``; with ``supersede`` also cancel its in-flight pass."""

        with self._cond:
            if self._shutting_down:
                return
            cancel = self._processing.get(key)
            if cancel is not None and supersede:
                cancel.set()
            if key in self._dirty:
                return
            self._dirty.add(key)
            if cancel is None:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: K, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have elapsed."""

        if delay <= 0:
            self.add(key)
            return

        def _fire() -> None:
            with self._cond:
                self._timers.discard(timer)
            self.add(key)

        timer = threading.Timer(delay, _fire)
        timer.daemon = True
        with self._cond:
            if self._shutting_down:
                return
            self._timers.add(timer)
        timer.start()

    def get(self, timeout: Optional[float] = None) -> tuple[K, threading.Event]:
        """Block until a key is available and return it with its cancel event.

        Raises :class:`ShutDown` when the queue is shut down, and
        ``TimeoutError`` if ``timeout`` elapses first.
        """

        with self._cond:
            while not self._queue and not self._shutting_down:
                if not self._cond.wait(timeout):
                    raise TimeoutError("no work available")
            if self._shutting_down:
                raise ShutDown()
            key = self._queue.popleft()
            self._dirty.discard(key)
            cancel = threading.Event()
            self._processing[key] = cancel
            return key, cancel

    def done(self, key: K) -> None:
        with self._cond:
            self._processing.pop(key, None)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def idle(self) -> bool:
        """True when nothing is queued, in flight or scheduled."""

        with self._cond:
            return not self._queue and not self._processing and not self._timers

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down
