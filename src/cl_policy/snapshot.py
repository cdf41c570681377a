"""YAML snapshot of ACL rules and LB policies.

The snapshot format is::

    acl:
      - serviceSrc: frontend
        serviceDst: backend
        gwDest: "*"
        priority: 1
        action: allow
    lb:
      - serviceDst: backend
        policy: static
        order: [peer-a, peer-b]

Missing pattern fields default to the wildcard.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from .acl import ACLRule, Action
from .engine import PolicyEngine
from .lb import LBPolicy, Strategy
from .patterns import WILDCARD


def _pattern(entry: dict, field: str) -> str:
    value = entry.get(field, WILDCARD)
    return WILDCARD if value is None else str(value)


def _parse_acl(entry: Any) -> ACLRule:
    if not isinstance(entry, dict):
        raise ValueError("ACL entries must be mappings")
    return ACLRule(
        service_src=_pattern(entry, "serviceSrc"),
        service_dst=_pattern(entry, "serviceDst"),
        gw_dest=_pattern(entry, "gwDest"),
        priority=int(entry.get("priority", 0)),
        action=Action.parse(entry.get("action", Action.ALLOW)),
    )


def _parse_lb(entry: Any) -> LBPolicy:
    if not isinstance(entry, dict):
        raise ValueError("LB entries must be mappings")
    order = entry.get("order", [])
    if not isinstance(order, list):
        raise ValueError("LB 'order' must be a list if provided")
    return LBPolicy(
        service_src=_pattern(entry, "serviceSrc"),
        service_dst=_pattern(entry, "serviceDst"),
        gw_dest=_pattern(entry, "gwDest"),
        strategy=Strategy.parse(entry.get("policy")),
        priority=int(entry.get("priority", 0)),
        order=tuple(str(o) for o in order),
    )


def parse_snapshot(data: Any) -> Tuple[List[ACLRule], List[LBPolicy]]:
    if data is None:
        return [], []
    if not isinstance(data, dict):
        raise ValueError("Policy snapshot must be a mapping")
    acl_section = data.get("acl") or []
    lb_section = data.get("lb") or []
    if not isinstance(acl_section, list) or not isinstance(lb_section, list):
        raise ValueError("'acl' and 'lb' sections must be lists")
    return [_parse_acl(e) for e in acl_section], [_parse_lb(e) for e in lb_section]


def load_snapshot(path: Path) -> Tuple[List[ACLRule], List[LBPolicy]]:
    return parse_snapshot(yaml.safe_load(Path(path).read_text()))


def apply_snapshot(
    engine: PolicyEngine, rules: List[ACLRule], policies: List[LBPolicy]
) -> None:
    """Replace the engine's rule sets with the snapshot content.

    Rules are inserted in file order, so later entries win ties.  Each rule
    set is swapped in one step: concurrent lookups see either the old set or
    the new one, never a mix.
    """

    engine.acl.replace(rules)
    engine.lb.replace(policies)

def dump_snapshot(engine: PolicyEngine) -> str:
    data: Dict[str, List[Dict[str, Any]]] = {
        "acl": [
            {
                "serviceSrc": rule.service_src,
                "serviceDst": rule.service_dst,
                "gwDest": rule.gw_dest,
                "priority": rule.priority,
                "action": rule.action.value,
            }
            for rule in engine.acl.rules(insertion_order=True)
        ],
        "lb": [
            {
                "serviceSrc": policy.service_src,
                "serviceDst": policy.service_dst,
                "gwDest": policy.gw_dest,
                "policy": policy.strategy.value,
                "priority": policy.priority,
                "order": list(policy.order),
            }
            for policy in engine.lb.policies(insertion_order=True)
        ],
    }
    return yaml.safe_dump(data, sort_keys=False)
