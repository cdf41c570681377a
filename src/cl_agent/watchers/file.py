"""File-based watchers feeding the store and the policy engine.

Each watcher polls one YAML (or JSON) file, computes the desired state it
describes and applies only the differences to the previous poll.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Event, Thread
from typing import Any, Dict, Hashable, Optional, Tuple

import yaml

from cl_controlplane.errors import StoreError
from cl_controlplane.models import (
    Dataplane,
    Import,
    ImportSource,
    ImportSpec,
    ObjectKey,
    ObjectMeta,
)
from cl_controlplane.store import ResourceStore
from cl_policy.engine import PolicyEngine
from cl_policy.snapshot import apply_snapshot, parse_snapshot

LOG = logging.getLogger(__name__)


class FileWatcher(Thread, ABC):
    """Poll ``path`` every ``interval`` seconds until ``stop_event`` is set."""

    def __init__(self, path: Path, interval: float, stop_event: Event) -> None:
        super().__init__(daemon=True)
        self._path = Path(path)
        self._interval = interval
        self._stop_event = stop_event

    def run(self) -> None:
        LOG.info("Watching %s every %.1fs", self._path, self._interval)
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("file watcher for %s encountered an error", self._path)
            self._stop_event.wait(self._interval)
        LOG.info("Stopped watching %s", self._path)

    def _load(self) -> Optional[Any]:
        if not self._path.exists():
            LOG.debug("watched file %s does not exist yet", self._path)
            return None
        try:
            return yaml.safe_load(self._path.read_text())
        except yaml.YAMLError as exc:
            LOG.warning("failed to parse %s: %s", self._path, exc)
            return None

    @abstractmethod
    def poll(self) -> None:
        """Read the file once and apply what changed since the last poll."""


class _ObjectFileWatcher(FileWatcher):
    """Shared diffing logic for watchers that write objects to the store."""

    section = ""

    def __init__(
        self,
        store: ResourceStore,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(path, interval, stop_event)
        self._store = store
        self._state: Dict[ObjectKey, Hashable] = {}

    def _extract(self, payload: Any) -> Dict[ObjectKey, Hashable]:
        if not isinstance(payload, dict) or not isinstance(payload.get(self.section), list):
            raise ValueError(f"file missing '{self.section}' list")
        desired: Dict[ObjectKey, Hashable] = {}
        for entry in payload[self.section]:
            key, spec = self._parse_entry(entry)
            desired[key] = spec
        return desired

    @abstractmethod
    def _parse_entry(self, entry: dict) -> Tuple[ObjectKey, Hashable]:
        """Return the object key and a comparable spec for one file entry."""

    @abstractmethod
    def _upsert(self, key: ObjectKey, spec: Hashable) -> None:
        """Create or update the object ``key`` in the store."""

    @abstractmethod
    def _delete(self, key: ObjectKey) -> None:
        """Remove the object ``key`` from the store."""

    def poll(self) -> None:
        payload = self._load()
        if payload is None:
            return
        try:
            desired = self._extract(payload)
        except (KeyError, TypeError, ValueError) as exc:
            LOG.warning("invalid %s file %s: %s", self.section, self._path, exc)
            return

        applied = dict(self._state)
        for key, spec in desired.items():
            if self._state.get(key) == spec:
                continue
            try:
                self._upsert(key, spec)
            except (StoreError, ValueError) as exc:
                LOG.warning("failed to apply %s %s: %s", self.section, key, exc)
                continue
            LOG.debug("%s %s updated", self.section, key)
            applied[key] = spec

        for key in set(self._state) - set(desired):
            try:
                self._delete(key)
            except StoreError as exc:
                LOG.warning("failed to delete %s %s: %s", self.section, key, exc)
                continue
            LOG.debug("%s %s removed", self.section, key)
            applied.pop(key, None)

        self._state = applied


class FileImportWatcher(_ObjectFileWatcher):
    """Mirror the ``imports`` list of a manifest file into the store."""

    section = "imports"

    def _parse_entry(self, entry: dict) -> Tuple[ObjectKey, Hashable]:
        sources = tuple(
            ImportSource(
                peer=str(source.get("peer", "")),
                export_name=str(source.get("exportName", "")),
                export_namespace=str(source.get("exportNamespace", "")),
            )
            for source in entry.get("sources", [])
        )
        labels = tuple(sorted((entry.get("labels") or {}).items()))
        spec = (
            int(entry["port"]),
            int(entry.get("targetPort", 0)),
            bool(entry.get("merge", False)),
            sources,
            labels,
        )
        return ObjectKey(str(entry["namespace"]), str(entry["name"])), spec

    def _upsert(self, key: ObjectKey, spec: Hashable) -> None:
        port, target_port, merge, sources, labels = spec  # type: ignore[misc]
        import_spec = ImportSpec(
            port=port, target_port=target_port, merge=merge, sources=sources
        )
        existing = self._store.get(Import, key.namespace, key.name)
        if existing is None:
            self._store.create(
                Import(
                    meta=ObjectMeta(
                        name=key.name, namespace=key.namespace, labels=dict(labels)
                    ),
                    spec=import_spec,
                )
            )
            return
        existing.spec = import_spec
        existing.meta.labels = dict(labels)
        self._store.update(existing)

    def _delete(self, key: ObjectKey) -> None:
        self._store.delete(Import, key.namespace, key.name)


class FileDataplaneWatcher(_ObjectFileWatcher):
    """Mirror dataplane registrations (and their live replicas) into the store."""

    section = "dataplanes"

    def __init__(
        self,
        store: ResourceStore,
        path: Path,
        interval: float,
        stop_event: Event,
        namespace: str,
    ) -> None:
        super().__init__(store, path, interval, stop_event)
        self._namespace = namespace

    def _parse_entry(self, entry: dict) -> Tuple[ObjectKey, Hashable]:
        spec = (
            tuple(str(p) for p in entry.get("peers", [])),
            tuple(str(e) for e in entry.get("endpoints", [])),
        )
        return ObjectKey(self._namespace, str(entry["name"])), spec

    def _upsert(self, key: ObjectKey, spec: Hashable) -> None:
        peers, endpoints = spec  # type: ignore[misc]
        existing = self._store.get(Dataplane, key.namespace, key.name)
        if existing is None:
            self._store.create(
                Dataplane(
                    meta=ObjectMeta(name=key.name, namespace=key.namespace),
                    peers=peers,
                    endpoints=endpoints,
                )
            )
            return
        existing.peers = peers
        existing.endpoints = endpoints
        self._store.update(existing)

    def _delete(self, key: ObjectKey) -> None:
        self._store.delete(Dataplane, key.namespace, key.name)


class FilePolicyWatcher(FileWatcher):
    """Apply an ACL/LB snapshot file to the policy engine when it changes."""

    def __init__(
        self,
        engine: PolicyEngine,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(path, interval, stop_event)
        self._engine = engine
        self._last: Optional[Any] = None

    def poll(self) -> None:
        payload = self._load()
        if payload is None or payload == self._last:
            return
        try:
            rules, policies = parse_snapshot(payload)
        except (TypeError, ValueError) as exc:
            LOG.warning("invalid policy file %s: %s", self._path, exc)
            return
        apply_snapshot(self._engine, rules, policies)
        self._last = payload
        LOG.info(
            "Applied %d ACL rules and %d LB policies from %s",
            len(rules),
            len(policies),
            self._path,
        )
