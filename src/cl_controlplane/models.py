"""Data structures shared by the store, the reconciler and the router.

Objects are plain dataclasses.  The store hands out copies, so callers are
free to mutate what they receive and write it back with ``update``; the
``resource_version`` carried in :class:`ObjectMeta` is the optimistic
concurrency token checked on every write.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

from .errors import ValidationError

# Ownership labels stamped on managed services.
APP_NAME = "clusterlink"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_IMPORT_NAME = "clusterlink.net/import-name"
LABEL_IMPORT_NAMESPACE = "clusterlink.net/import-namespace"
LABEL_IMPORT_MERGE = "import.clusterlink.net/merge"
# How the owning Import got the service: created it, or adopted it in merge mode.
LABEL_ACQUIRED = "clusterlink.net/import-acquired"
ACQUIRED_CREATED = "created"
ACQUIRED_ADOPTED = "adopted"

# Status condition types.
CONDITION_SERVICE_VALID = "ServiceValid"
CONDITION_TARGET_PORT_VALID = "TargetPortValid"

DATAPLANE_APP = "cl-dataplane"
MAX_NAME_LENGTH = 63

_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Namespaced identity of a stored object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ObjectMeta:
    """Metadata common to all stored objects.

    Attributes
    ----------
    name, namespace:
        Identity of the object.
    labels:
        Free-form string labels.  Ownership of managed services is encoded
        here.
    resource_version:
        Optimistic concurrency token.  Zero means "never persisted".
    uid:
        Assigned by the store at creation.  A deleted and re-created object
        gets a new uid even if its content is identical.
    creation_index:
        Monotonic creation counter assigned by the store.
    """

    name: str
    namespace: str
    labels: Dict[str, str] = field(default_factory=dict)
    resource_version: int = 0
    uid: str = ""
    creation_index: int = 0

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)


@dataclass(frozen=True)
class ImportSource:
    """One remote (peer, exported service) pair feeding an Import."""

    peer: str = ""
    export_name: str = ""
    export_namespace: str = ""


@dataclass
class ImportSpec:
    port: int
    target_port: int = 0
    merge: bool = False
    sources: Sequence[ImportSource] = field(default_factory=tuple)


@dataclass(frozen=True)
class Condition:
    """Named boolean status entry with a machine-readable reason."""

    type: str
    status: bool
    reason: str
    message: str = ""


@dataclass
class Import:
    """Declared intent that a remote service be reachable locally."""

    meta: ObjectMeta
    spec: ImportSpec
    conditions: Dict[str, Condition] = field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    @property
    def merge(self) -> bool:
        return self.spec.merge or self.meta.labels.get(LABEL_IMPORT_MERGE) == "true"

    def condition(self, type_: str) -> Optional[Condition]:
        return self.conditions.get(type_)

    def is_condition_true(self, type_: str) -> bool:
        cond = self.conditions.get(type_)
        return cond is not None and cond.status

    def set_condition(self, condition: Condition) -> bool:
        """Record ``condition`` and report whether anything changed.

        A condition is only rewritten when its status or reason differ from
        the stored one, so repeated reconciliations do not churn status.
        """

        current = self.conditions.get(condition.type)
        if (
            current is not None
            and current.status == condition.status
            and current.reason == condition.reason
        ):
            return False
        self.conditions[condition.type] = condition
        return True

    def validate(self) -> None:
        name = self.meta.name
        if not name or len(name) > MAX_NAME_LENGTH or not _DNS_LABEL.match(name):
            raise ValidationError(
                f"import name '{name}' must be a DNS label of at most "
                f"{MAX_NAME_LENGTH} characters"
            )
        if not 0 < self.spec.port < 65536:
            raise ValidationError(f"import port {self.spec.port} out of range")
        if not 0 <= self.spec.target_port < 65536:
            raise ValidationError(
                f"import target port {self.spec.target_port} out of range"
            )


@dataclass
class Service:
    """Local networking object exposing an Import (or anything else).

    A service either selects dataplane pods through ``selector`` or, for
    user-namespace imports, aliases the system service via ``external_name``.
    """

    meta: ObjectMeta
    port: int
    target_port: int = 0
    selector: Dict[str, str] = field(default_factory=dict)
    external_name: Optional[str] = None

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    def same_spec(self, other: "Service") -> bool:
        return (
            self.port == other.port
            and self.target_port == other.target_port
            and self.selector == other.selector
            and self.external_name == other.external_name
        )

    def copy_spec_from(self, other: "Service") -> None:
        self.port = other.port
        self.target_port = other.target_port
        self.selector = dict(other.selector)
        self.external_name = other.external_name


@dataclass
class Dataplane:
    """Registration object of a dataplane deployment.

    Attributes
    ----------
    peers:
        Peers this dataplane can forward to.  Empty means every peer.
    endpoints:
        Network identities of the live dataplane replicas.  Empty when the
        deployment is scaled to zero.
    """

    meta: ObjectMeta
    peers: Tuple[str, ...] = ()
    endpoints: Tuple[str, ...] = ()

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    def serves(self, peer: str) -> bool:
        return bool(peer) and (not self.peers or peer in self.peers)


def system_service_name(key: ObjectKey) -> str:
    """Name of the system-namespace service backing an unprivileged Import."""

    return f"import-{key.name}-{key.namespace}"
