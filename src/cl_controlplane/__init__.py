"""Import reconciliation core of the multi-cluster control plane.

Imports declare that a service exported by a remote peer should be
reachable locally.  This package turns them into local services and keeps
the set of dataplane endpoints that can carry their traffic up to date:

* :mod:`~cl_controlplane.allocator` reserves target ports per namespace;
* :mod:`~cl_controlplane.ownership` decides whether an existing service may
  be created, adopted or must be left alone;
* :mod:`~cl_controlplane.endpoints` derives routable endpoints from the
  Import sources and the live dataplane registrations;
* :mod:`~cl_controlplane.reconciler` drives the Import status conditions;
* :mod:`~cl_controlplane.controller` feeds it from store events through a
  deduplicating work queue.

The object store itself is an external collaborator;
:class:`~cl_controlplane.store.MemoryStore` implements its contract in
process.
"""

from .controller import ImportController  # noqa: F401
from .reconciler import ImportReconciler, ReconcilerSettings  # noqa: F401
from .store import MemoryStore, ResourceStore  # noqa: F401

__all__ = [
    "ImportController",
    "ImportReconciler",
    "MemoryStore",
    "ReconcilerSettings",
    "ResourceStore",
]
