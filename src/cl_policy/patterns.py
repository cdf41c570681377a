"""Wildcard pattern tables shared by the ACL and load-balancing policies."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generic, Iterable, Iterator, Optional, Tuple, TypeVar

WILDCARD = "*"


class FieldMatch(Enum):
    """How one pattern field relates to the corresponding input value."""

    EXACT = "exact"
    WILDCARD = "wildcard"
    MISS = "miss"


def match_field(pattern: str, value: str) -> FieldMatch:
    if pattern == WILDCARD:
        return FieldMatch.WILDCARD
    if pattern == value:
        return FieldMatch.EXACT
    return FieldMatch.MISS


@dataclass(frozen=True, order=True)
class RuleKey:
    """Identity of a rule: the (source, destination, gateway) patterns."""

    service_src: str = WILDCARD
    service_dst: str = WILDCARD
    gw_dest: str = WILDCARD

    def match(self, service_src: str, service_dst: str, gw_dest: str) -> Optional[int]:
        """Return the specificity (number of exact fields) or None on a miss."""

        fields = (
            match_field(self.service_src, service_src),
            match_field(self.service_dst, service_dst),
            match_field(self.gw_dest, gw_dest),
        )
        if FieldMatch.MISS in fields:
            return None
        return sum(1 for f in fields if f is FieldMatch.EXACT)

    @property
    def specificity(self) -> int:
        return sum(
            1
            for pattern in (self.service_src, self.service_dst, self.gw_dest)
            if pattern != WILDCARD
        )

    def __str__(self) -> str:
        return f"{self.service_src} -> {self.service_dst} via {self.gw_dest}"


V = TypeVar("V")


@dataclass(frozen=True)
class _Entry(Generic[V]):
    key: RuleKey
    value: V
    priority: int
    sequence: int

    def rank(self, specificity: int) -> Tuple[int, int, int]:
        # Lower sorts first: priority, then more exact fields, then newest.
        return (self.priority, -specificity, -self.sequence)


class PatternTable(Generic[V]):
    """Mutable set of rules keyed by :class:`RuleKey`.

    Lookups pick, among rules whose three patterns all match, the one with
    the lowest priority value; ties go to the rule with more exact fields,
    then to the most recently inserted rule.  Re-adding an existing key
    replaces it and counts as a new insertion.

    Writers serialise on a lock and publish a new immutable snapshot;
    readers only dereference the current snapshot and never block, so a
    lookup sees the table either before or after a mutation, never halfway.
    """

    def __init__(self) -> None:
        self._snapshot: Dict[RuleKey, _Entry[V]] = {}
        self._sequence = itertools.count(1)
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, key: object) -> bool:
        return key in self._snapshot

    def add(self, key: RuleKey, value: V, priority: int = 0) -> None:
        if priority < 0:
            raise ValueError(f"priority must be non-negative, got {priority}")
        with self._write_lock:
            updated = dict(self._snapshot)
            updated[key] = _Entry(key, value, priority, next(self._sequence))
            self._snapshot = updated

    def delete(self, key: RuleKey) -> bool:
        """Remove ``key``; deleting an unknown key is not an error."""

        with self._write_lock:
            if key not in self._snapshot:
                return False
            updated = dict(self._snapshot)
            del updated[key]
            self._snapshot = updated
            return True

    def clear(self) -> None:
        with self._write_lock:
            self._snapshot = {}

    def replace(self, entries: Iterable[Tuple[RuleKey, V, int]]) -> None:
        """Swap the whole table for ``entries`` in a single publish.

        Entries are (key, value, priority) and count as inserted in the given
        order; a repeated key keeps its last occurrence.
        """

        entries = list(entries)
        for _, _, priority in entries:
            if priority < 0:
                raise ValueError(f"priority must be non-negative, got {priority}")
        with self._write_lock:
            updated: Dict[RuleKey, _Entry[V]] = {}
            for key, value, priority in entries:
                updated.pop(key, None)
                updated[key] = _Entry(key, value, priority, next(self._sequence))
            self._snapshot = updated

    def lookup(self, service_src: str, service_dst: str, gw_dest: str) -> Optional[V]:
        snapshot = self._snapshot
        best: Optional[Tuple[Tuple[int, int, int], V]] = None
        for entry in snapshot.values():
            specificity = entry.key.match(service_src, service_dst, gw_dest)
            if specificity is None:
                continue
            rank = entry.rank(specificity)
            if best is None or rank < best[0]:
                best = (rank, entry.value)
        return best[1] if best is not None else None

    def items(
        self, insertion_order: bool = False
    ) -> Iterator[Tuple[RuleKey, V, int]]:
        """Yield (key, value, priority) in evaluation or insertion order."""

        snapshot = self._snapshot
        if insertion_order:
            ordered = sorted(snapshot.values(), key=lambda e: e.sequence)
        else:
            ordered = sorted(
                snapshot.values(), key=lambda e: e.rank(e.key.specificity)
            )
        for entry in ordered:
            yield entry.key, entry.value, entry.priority
