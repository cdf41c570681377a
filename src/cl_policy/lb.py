"""Endpoint selection strategies for allowed connections."""

from __future__ import annotations

import hashlib
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Iterable, List, Optional, Sequence, TypeVar, Union

from .patterns import WILDCARD, PatternTable, RuleKey

LOG = logging.getLogger(__name__)

C = TypeVar("C", bound=Hashable)


class Strategy(Enum):
    RANDOM = "random"
    CONSISTENT_HASH = "consistent-hash"
    STATIC = "static"

    @classmethod
    def parse(cls, value: Union[str, "Strategy", None]) -> "Strategy":
        """Accept strategy names, with ``ecmp`` as an alias of consistent-hash."""

        if isinstance(value, Strategy):
            return value
        if value is None or value == "":
            return cls.RANDOM
        normalized = str(value).strip().lower()
        if normalized == "ecmp":
            return cls.CONSISTENT_HASH
        for strategy in cls:
            if strategy.value == normalized:
                return strategy
        raise ValueError(f"Unsupported load-balancing strategy '{value}'")


@dataclass(frozen=True)
class LBPolicy:
    """Strategy selection for a (source, destination, gateway) pattern.

    Attributes
    ----------
    order:
        Preference list for :attr:`Strategy.STATIC`.  Entries name either a
        candidate (its string form) or a gateway (a candidate's ``peer``).
        When empty, the caller's candidate order is the preference list.
    """

    service_src: str = WILDCARD
    service_dst: str = WILDCARD
    gw_dest: str = WILDCARD
    strategy: Strategy = Strategy.RANDOM
    priority: int = 0
    order: Sequence[str] = ()

    @property
    def key(self) -> RuleKey:
        return RuleKey(self.service_src, self.service_dst, self.gw_dest)


DEFAULT_POLICY = LBPolicy()


def _identity(candidate: object) -> str:
    return str(candidate)


def _rendezvous_weight(key: str, candidate: object) -> int:
    digest = hashlib.sha256(f"{key}|{_identity(candidate)}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


class LoadBalancer:
    """Pick one endpoint among candidates according to the matching policy.

    Policy lookup follows the ACL precedence rules (priority, then
    specificity, then recency).  Without a matching policy the strategy is
    random.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._table: PatternTable[LBPolicy] = PatternTable()
        self._rng = rng or random.SystemRandom()

    def __len__(self) -> int:
        return len(self._table)

    def add(self, policy: LBPolicy) -> None:
        self._table.add(policy.key, policy, policy.priority)
        LOG.info(
            "Added LB policy [%s] strategy=%s", policy.key, policy.strategy.value
        )

    def delete(
        self,
        service_src: str = WILDCARD,
        service_dst: str = WILDCARD,
        gw_dest: str = WILDCARD,
    ) -> bool:
        key = RuleKey(service_src, service_dst, gw_dest)
        removed = self._table.delete(key)
        if removed:
            LOG.info("Deleted LB policy [%s]", key)
        return removed

    def clear(self) -> None:
        self._table.clear()

    def replace(self, policies: Iterable[LBPolicy]) -> None:
        """Install exactly ``policies``, in order, as one atomic update."""

        policies = list(policies)
        self._table.replace((p.key, p, p.priority) for p in policies)
        LOG.info("Replaced LB policy set with %d policies", len(policies))

    def policy_for(self, service_src: str, service_dst: str, gw_dest: str) -> LBPolicy:
        policy = self._table.lookup(service_src, service_dst, gw_dest)
        return policy if policy is not None else DEFAULT_POLICY

    def select(
        self,
        service_src: str,
        service_dst: str,
        gw_dest: str,
        candidates: Sequence[C],
        key: Optional[str] = None,
    ) -> Optional[C]:
        """Return the chosen candidate, or ``None`` if there are none.

        ``key`` identifies the connection (for example the client address)
        for the consistent-hash strategy; it defaults to the service pair.
        """

        if not candidates:
            return None
        policy = self.policy_for(service_src, service_dst, gw_dest)

        if policy.strategy is Strategy.STATIC:
            return self._select_static(policy, candidates)
        if policy.strategy is Strategy.CONSISTENT_HASH:
            hash_key = key if key is not None else f"{service_src}|{service_dst}"
            return max(candidates, key=lambda c: _rendezvous_weight(hash_key, c))
        return self._rng.choice(list(candidates))

    @staticmethod
    def _select_static(policy: LBPolicy, candidates: Sequence[C]) -> C:
        for preferred in policy.order:
            for candidate in candidates:
                if _identity(candidate) == preferred:
                    return candidate
                if getattr(candidate, "peer", None) == preferred:
                    return candidate
        return candidates[0]

    def policies(self, insertion_order: bool = False) -> List[LBPolicy]:
        """Policies in evaluation order, or in the order they were added."""

        return [policy for _, policy, _ in self._table.items(insertion_order)]
