"""Classify existing services relative to the Import that wants them."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from .models import (
    ACQUIRED_ADOPTED,
    ACQUIRED_CREATED,
    APP_NAME,
    LABEL_ACQUIRED,
    LABEL_IMPORT_NAME,
    LABEL_IMPORT_NAMESPACE,
    LABEL_MANAGED_BY,
    ObjectKey,
    Service,
)

OWNERSHIP_LABELS = (
    LABEL_MANAGED_BY,
    LABEL_IMPORT_NAME,
    LABEL_IMPORT_NAMESPACE,
    LABEL_ACQUIRED,
)


class Ownership(Enum):
    """Relationship between an existing service and an Import."""

    ABSENT = "absent"
    FOREIGN_CONFLICT = "foreign-conflict"
    OWNED_BY_THIS = "owned-by-this"
    ADOPTABLY_FOREIGN = "adoptably-foreign"


def owner_of(labels: Dict[str, str]) -> Optional[ObjectKey]:
    """Return the Import named by ``labels`` if they carry our marker."""

    if labels.get(LABEL_MANAGED_BY) != APP_NAME:
        return None
    name = labels.get(LABEL_IMPORT_NAME)
    namespace = labels.get(LABEL_IMPORT_NAMESPACE)
    if not name or not namespace:
        return None
    return ObjectKey(namespace, name)


def is_adopted(labels: Dict[str, str]) -> bool:
    """True when the owning Import adopted the service instead of creating it.

    Services labelled before the acquisition marker existed count as created.
    """

    return labels.get(LABEL_ACQUIRED) == ACQUIRED_ADOPTED


def classify(existing: Optional[Service], import_key: ObjectKey, merge: bool) -> Ownership:
    """Decide how the reconciler may treat ``existing``.

    Objects labelled with our marker belong to whichever Import the labels
    name.  Objects without a managed-by label may be adopted by a merge
    Import only, and an adopted object stays owned only while the Import is
    in merge mode.  Objects whose managed-by label names another manager are
    never touched, whatever the mode.
    """

    if existing is None:
        return Ownership.ABSENT

    labels = existing.meta.labels
    managed_by = labels.get(LABEL_MANAGED_BY)
    if managed_by == APP_NAME:
        if owner_of(labels) != import_key:
            return Ownership.FOREIGN_CONFLICT
        if is_adopted(labels) and not merge:
            return Ownership.FOREIGN_CONFLICT
        return Ownership.OWNED_BY_THIS

    if merge and not managed_by:
        return Ownership.ADOPTABLY_FOREIGN
    return Ownership.FOREIGN_CONFLICT


def ownership_labels(import_key: ObjectKey, adopted: bool = False) -> Dict[str, str]:
    return {
        LABEL_MANAGED_BY: APP_NAME,
        LABEL_IMPORT_NAME: import_key.name,
        LABEL_IMPORT_NAMESPACE: import_key.namespace,
        LABEL_ACQUIRED: ACQUIRED_ADOPTED if adopted else ACQUIRED_CREATED,
    }


def stamp_ownership(service: Service, import_key: ObjectKey) -> bool:
    """Mark ``service`` as adopted by ``import_key``; return True if anything changed."""

    desired = ownership_labels(import_key, adopted=True)
    if all(service.meta.labels.get(k) == v for k, v in desired.items()):
        return False
    service.meta.labels.update(desired)
    return True


def strip_ownership(service: Service) -> bool:
    """Remove ownership labels from ``service``; return True if any were set."""

    changed = False
    for label in OWNERSHIP_LABELS:
        if service.meta.labels.pop(label, None) is not None:
            changed = True
    return changed
