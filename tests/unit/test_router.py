import pytest

from cl_controlplane.endpoints import Endpoint
from cl_controlplane.errors import ServiceNotFoundError
from cl_controlplane.router import ConnectionRouter
from cl_policy.acl import ACLEvaluator, Action
from cl_policy.engine import PolicyEngine

from helpers import (
    SYSTEM_NS,
    USER_NS,
    build_reconciler,
    key,
    make_dataplane,
    make_import,
    source,
)


def build_router(default_action=Action.ALLOW):
    store, reconciler = build_reconciler()
    engine = PolicyEngine(acl=ACLEvaluator(default_action=default_action))
    router = ConnectionRouter(store, reconciler.synchronizer, engine)
    return store, reconciler, engine, router


def test_connect_routes_to_dataplane_endpoint():
    store, reconciler, _, router = build_router()
    store.create(make_dataplane(endpoints=("10.0.0.5",)))
    store.create(make_import("echo", sources=[source("peer-a")]))
    reconciler.reconcile(key("echo"))

    target = router.connect("client", SYSTEM_NS, "echo", 80)

    assert target == Endpoint("peer-a", "10.0.0.5", "echo", "default")


def test_connect_through_user_namespace_service():
    store, reconciler, _, router = build_router()
    store.create(make_dataplane(endpoints=("10.0.0.5",)))
    store.create(make_import("echo", namespace=USER_NS, sources=[source("peer-a")]))
    reconciler.reconcile(key("echo", USER_NS))

    assert router.connect("client", USER_NS, "echo", 80).peer == "peer-a"


def test_unknown_service_or_port_is_not_found():
    store, reconciler, _, router = build_router()
    store.create(make_import("echo"))
    reconciler.reconcile(key("echo"))

    with pytest.raises(ServiceNotFoundError):
        router.connect("client", SYSTEM_NS, "missing", 80)
    with pytest.raises(ServiceNotFoundError):
        router.connect("client", SYSTEM_NS, "echo", 81)


def test_import_without_sources_resets_connection():
    store, reconciler, _, router = build_router()
    store.create(make_dataplane())
    store.create(make_import("echo"))
    reconciler.reconcile(key("echo"))

    with pytest.raises(ConnectionResetError):
        router.connect("client", SYSTEM_NS, "echo", 80)


def test_denied_connection_is_reset():
    store, reconciler, _, router = build_router(default_action=Action.DENY)
    store.create(make_dataplane())
    store.create(make_import("echo", sources=[source("peer-a")]))
    reconciler.reconcile(key("echo"))

    with pytest.raises(ConnectionResetError):
        router.connect("client", SYSTEM_NS, "echo", 80)


def test_acl_selects_permitted_gateway():
    store, reconciler, engine, router = build_router(default_action=Action.DENY)
    store.create(make_dataplane(endpoints=("10.0.0.5",)))
    store.create(
        make_import("echo", sources=[source("peer-a"), source("peer-b")])
    )
    reconciler.reconcile(key("echo"))
    engine.add_acl_rule(gw_dest="peer-b", priority=1, action="allow")

    for _ in range(10):
        assert router.connect("client", SYSTEM_NS, "echo", 80).peer == "peer-b"
