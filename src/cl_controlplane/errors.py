"""Exceptions raised by the object store and the reconciler."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for object store failures."""


class NotFoundError(StoreError):
    """The addressed object does not exist."""


class AlreadyExistsError(StoreError):
    """An object with the same kind, namespace and name already exists."""


class ValidationError(StoreError, ValueError):
    """The object was rejected before being persisted."""


class TransientStoreError(StoreError):
    """A failure that is expected to clear up when retried."""


class StaleWriteError(TransientStoreError):
    """The written object carried an outdated resource version."""

    def __init__(self, key, expected: int, actual: int) -> None:
        super().__init__(
            f"stale write for {key}: resource version {expected} != {actual}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class StoreUnavailableError(TransientStoreError):
    """The store could not be reached."""


class ReconcileCancelled(Exception):
    """An in-flight reconciliation was superseded by a newer event."""


class ServiceNotFoundError(LookupError):
    """No local service answers on the requested name and port."""
