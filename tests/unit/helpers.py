from cl_controlplane.allocator import PortAllocator
from cl_controlplane.endpoints import EndpointSynchronizer
from cl_controlplane.models import (
    Dataplane,
    Import,
    ImportSource,
    ImportSpec,
    ObjectKey,
    ObjectMeta,
    Service,
)
from cl_controlplane.reconciler import ImportReconciler, ReconcilerSettings
from cl_controlplane.store import MemoryStore

SYSTEM_NS = "clusterlink-system"
USER_NS = "team-a"


def build_reconciler(store=None, **overrides):
    store = store if store is not None else MemoryStore()
    settings = ReconcilerSettings(
        system_namespace=SYSTEM_NS,
        backoff_base=0.0,
        backoff_max=0.0,
        **overrides,
    )
    reconciler = ImportReconciler(
        store, PortAllocator(20000, 30000), EndpointSynchronizer(), settings
    )
    return store, reconciler


def make_import(
    name,
    port=80,
    target_port=0,
    merge=False,
    sources=(),
    namespace=SYSTEM_NS,
):
    return Import(
        meta=ObjectMeta(name=name, namespace=namespace),
        spec=ImportSpec(
            port=port,
            target_port=target_port,
            merge=merge,
            sources=tuple(sources),
        ),
    )


def make_service(name, port=80, namespace=SYSTEM_NS, labels=None):
    return Service(
        meta=ObjectMeta(name=name, namespace=namespace, labels=dict(labels or {})),
        port=port,
    )


def make_dataplane(name="cl-dataplane", endpoints=("10.0.0.5",), peers=()):
    return Dataplane(
        meta=ObjectMeta(name=name, namespace=SYSTEM_NS),
        peers=tuple(peers),
        endpoints=tuple(endpoints),
    )


def source(peer, export_name="echo", export_namespace="default"):
    return ImportSource(peer=peer, export_name=export_name, export_namespace=export_namespace)


def key(name, namespace=SYSTEM_NS):
    return ObjectKey(namespace, name)


def get_import(store, name, namespace=SYSTEM_NS):
    imp = store.get(Import, namespace, name)
    assert imp is not None
    return imp
