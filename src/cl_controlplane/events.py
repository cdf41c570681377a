"""Watch event primitives emitted by the object store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventType(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class WatchEvent:
    """A change observed on a stored object.

    ``obj`` is a copy of the object after the change, or of the last
    persisted state for ``DELETED`` events.
    """

    type: EventType
    obj: Any

    @property
    def kind(self) -> str:
        return type(self.obj).__name__
