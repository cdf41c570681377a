"""Connection policy engine: ACL rules and load-balancing policies."""

from .acl import ACLEvaluator, ACLRule, Action  # noqa: F401
from .engine import Decision, PolicyEngine  # noqa: F401
from .lb import LBPolicy, LoadBalancer, Strategy  # noqa: F401
from .patterns import WILDCARD  # noqa: F401

__all__ = [
    "ACLEvaluator",
    "ACLRule",
    "Action",
    "Decision",
    "LBPolicy",
    "LoadBalancer",
    "PolicyEngine",
    "Strategy",
    "WILDCARD",
]
