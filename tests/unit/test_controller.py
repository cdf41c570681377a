from cl_controlplane.controller import ImportController
from cl_controlplane.events import EventType, WatchEvent
from cl_controlplane.models import (
    CONDITION_SERVICE_VALID,
    CONDITION_TARGET_PORT_VALID,
    Dataplane,
    Import,
    ObjectMeta,
    Service,
)

from helpers import (
    SYSTEM_NS,
    build_reconciler,
    get_import,
    key,
    make_dataplane,
    make_import,
)


def build_controller(workers=0, store=None):
    store, reconciler = build_reconciler(store)
    controller = ImportController(store, reconciler, workers=workers)
    return store, reconciler, controller


def test_resync_reconciles_existing_imports():
    store, _, controller = build_controller()
    store.create(make_import("imp1"))
    store.create(make_import("imp2"))

    controller.start()
    controller.run_until_idle()

    for name in ("imp1", "imp2"):
        assert get_import(store, name).is_condition_true(CONDITION_SERVICE_VALID)
    assert controller.queue.idle()
    controller.stop()


def test_freed_port_requeues_conflicting_import():
    store, _, controller = build_controller()
    controller.start()

    store.create(make_import("imp1", target_port=1234))
    controller.run_until_idle()
    store.create(make_import("imp2", target_port=1234))
    controller.run_until_idle()
    assert not get_import(store, "imp2").is_condition_true(CONDITION_TARGET_PORT_VALID)

    store.delete(Import, SYSTEM_NS, "imp1")
    controller.run_until_idle()

    imp2 = get_import(store, "imp2")
    assert imp2.is_condition_true(CONDITION_TARGET_PORT_VALID)
    assert imp2.is_condition_true(CONDITION_SERVICE_VALID)
    assert store.get(Service, SYSTEM_NS, "imp1") is None
    controller.stop()


def test_deleted_service_is_recreated_by_events():
    store, _, controller = build_controller()
    controller.start()
    store.create(make_import("imp1"))
    controller.run_until_idle()

    store.delete(Service, SYSTEM_NS, "imp1")
    controller.run_until_idle()

    assert store.get(Service, SYSTEM_NS, "imp1") is not None
    controller.stop()


def test_resync_collects_services_of_imports_deleted_while_stopped():
    store, _, controller = build_controller()
    controller.start()
    store.create(make_import("imp1"))
    store.create(make_import("imp2"))
    controller.run_until_idle()
    controller.stop()

    store.delete(Import, SYSTEM_NS, "imp1")
    assert store.get(Service, SYSTEM_NS, "imp1") is not None

    _, _, restarted = build_controller(store=store)
    restarted.start()
    restarted.run_until_idle()

    assert store.get(Service, SYSTEM_NS, "imp1") is None
    assert store.get(Service, SYSTEM_NS, "imp2") is not None
    restarted.stop()


def test_event_mapping():
    store, _, controller = build_controller()
    store.create(make_import("imp1"))
    store.create(make_import("imp2"))

    dataplane_event = WatchEvent(EventType.MODIFIED, make_dataplane())
    assert controller.keys_for(dataplane_event) == {key("imp1"), key("imp2")}

    foreign = Dataplane(meta=ObjectMeta(name="cl-dataplane", namespace="other"))
    assert controller.keys_for(WatchEvent(EventType.ADDED, foreign)) == set()

    imp_event = WatchEvent(EventType.DELETED, make_import("imp3"))
    assert controller.keys_for(imp_event) == {key("imp3")}


def test_workers_converge_in_background():
    store, _, controller = build_controller(workers=2)
    controller.start()
    try:
        store.create(make_dataplane())
        for index in range(5):
            store.create(make_import(f"imp{index}"))

        assert controller.wait_idle(timeout=10.0)
        for index in range(5):
            imp = get_import(store, f"imp{index}")
            assert imp.is_condition_true(CONDITION_SERVICE_VALID)
    finally:
        controller.stop()
