"""Access-control rules for connection attempts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Union

from .patterns import WILDCARD, PatternTable, RuleKey

LOG = logging.getLogger(__name__)


class Action(Enum):
    ALLOW = "allow"
    DENY = "deny"

    @classmethod
    def parse(cls, value: Union[str, int, "Action"]) -> "Action":
        """Accept ``allow``/``deny`` or the numeric wire values 0/1."""

        if isinstance(value, Action):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if value == 0:
                return cls.ALLOW
            if value == 1:
                return cls.DENY
        elif isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in ("0", "1"):
                return cls.parse(int(normalized))
            for action in cls:
                if action.value == normalized:
                    return action
        raise ValueError(f"Unsupported ACL action '{value}'")


@dataclass(frozen=True)
class ACLRule:
    """One access-control entry; priority 0 is evaluated first."""

    service_src: str = WILDCARD
    service_dst: str = WILDCARD
    gw_dest: str = WILDCARD
    priority: int = 0
    action: Action = Action.ALLOW

    @property
    def key(self) -> RuleKey:
        return RuleKey(self.service_src, self.service_dst, self.gw_dest)


class ACLEvaluator:
    """Allow/Deny decisions over a mutable rule set.

    When no rule matches, ``default_action`` applies.  It defaults to
    :attr:`Action.DENY`, so a connection is refused unless some rule
    explicitly allows it.
    """

    def __init__(self, default_action: Action = Action.DENY) -> None:
        self._table: PatternTable[ACLRule] = PatternTable()
        self._default = default_action

    def __len__(self) -> int:
        return len(self._table)

    @property
    def default_action(self) -> Action:
        return self._default

    def add(self, rule: ACLRule) -> None:
        self._table.add(rule.key, rule, rule.priority)
        LOG.info(
            "Added ACL rule [%s] priority=%d action=%s",
            rule.key,
            rule.priority,
            rule.action.value,
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
            LOG.info("Deleted ACL rule [%s]", key)
        else:
            LOG.debug("ACL rule [%s] not present, nothing to delete", key)
        return removed

    def clear(self) -> None:
        self._table.clear()

    def replace(self, rules: Iterable[ACLRule]) -> None:
        """Install exactly ``rules``, in order, as one atomic update."""

        rules = list(rules)
        self._table.replace((rule.key, rule, rule.priority) for rule in rules)
        LOG.info("Replaced ACL rule set with %d rules", len(rules))

    def evaluate(self, service_src: str, service_dst: str, gw_dest: str) -> Action:
        rule = self._table.lookup(service_src, service_dst, gw_dest)
        if rule is None:
            return self._default
        return rule.action

    def rules(self, insertion_order: bool = False) -> List[ACLRule]:
        """Rules in evaluation order, or in the order they were added."""

        return [rule for _, rule, _ in self._table.items(insertion_order)]
