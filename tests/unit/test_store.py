import pytest

from cl_controlplane.errors import (
    AlreadyExistsError,
    NotFoundError,
    StaleWriteError,
    ValidationError,
)
from cl_controlplane.events import EventType
from cl_controlplane.models import Import, Service
from cl_controlplane.store import MemoryStore

from helpers import SYSTEM_NS, make_import, make_service


def test_create_assigns_identity():
    store = MemoryStore()

    stored = store.create(make_import("imp1"))

    assert stored.meta.uid
    assert stored.meta.resource_version > 0
    assert store.write_count == 1
    with pytest.raises(AlreadyExistsError):
        store.create(make_import("imp1"))


def test_get_returns_copies():
    store = MemoryStore()
    store.create(make_service("svc"))

    service = store.get(Service, SYSTEM_NS, "svc")
    service.meta.labels["touched"] = "yes"

    assert store.get(Service, SYSTEM_NS, "svc").meta.labels == {}
    assert store.get(Service, SYSTEM_NS, "missing") is None


def test_update_rejects_stale_version():
    store = MemoryStore()
    store.create(make_service("svc"))
    first = store.get(Service, SYSTEM_NS, "svc")
    second = store.get(Service, SYSTEM_NS, "svc")

    first.port = 81
    store.update(first)
    second.port = 82

    with pytest.raises(StaleWriteError):
        store.update(second)
    assert store.get(Service, SYSTEM_NS, "svc").port == 81


def test_update_and_delete_missing_object():
    store = MemoryStore()

    with pytest.raises(NotFoundError):
        store.update(make_service("svc"))
    with pytest.raises(NotFoundError):
        store.delete(Service, SYSTEM_NS, "svc")


def test_import_name_length_is_validated():
    store = MemoryStore()

    store.create(make_import("a" * 63))
    with pytest.raises(ValidationError):
        store.create(make_import("a" * 64))
    with pytest.raises(ValidationError):
        store.create(make_import("Not_A_Label"))


def test_import_ports_are_validated():
    store = MemoryStore()

    with pytest.raises(ValidationError):
        store.create(make_import("imp1", port=0))
    with pytest.raises(ValidationError):
        store.create(make_import("imp1", target_port=70000))


def test_subscribers_receive_events():
    store = MemoryStore()
    events = []
    store.subscribe("recorder", events.append)

    with pytest.raises(ValueError):
        store.subscribe("recorder", events.append)

    store.create(make_import("imp1"))
    imp = store.get(Import, SYSTEM_NS, "imp1")
    store.update(imp)
    store.delete(Import, SYSTEM_NS, "imp1")

    assert [e.type for e in events] == [
        EventType.ADDED,
        EventType.MODIFIED,
        EventType.DELETED,
    ]
    assert all(e.kind == "Import" for e in events)

    store.unsubscribe("recorder")
    store.create(make_import("imp2"))
    assert len(events) == 3


def test_list_in_creation_order():
    store = MemoryStore()
    store.create(make_import("zeta"))
    store.create(make_import("alpha"))
    store.create(make_import("other", namespace="team-a"))

    names = [imp.meta.name for imp in store.list(Import, SYSTEM_NS)]

    assert names == ["zeta", "alpha"]
    assert len(store.list(Import)) == 3
