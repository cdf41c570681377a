"""Single decision point consulted for every new connection attempt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Generic, Hashable, List, Optional, Sequence, TypeVar, Union

from .acl import ACLEvaluator, ACLRule, Action
from .lb import LBPolicy, LoadBalancer, Strategy
from .patterns import WILDCARD

LOG = logging.getLogger(__name__)

C = TypeVar("C", bound=Hashable)


@dataclass(frozen=True)
class Decision(Generic[C]):
    action: Action
    target: Optional[C] = None

    @property
    def allowed(self) -> bool:
        return self.action is Action.ALLOW and self.target is not None


class PolicyEngine:
    """Compose the ACL evaluator and the load balancer.

    Administrative operations mirror the gateway CLI: Add/Delete on ACL
    rules and LB policies, keyed by the (source, destination, gateway)
    patterns.  Deleting a rule that does not exist is not an error.
    """

    def __init__(
        self,
        acl: Optional[ACLEvaluator] = None,
        lb: Optional[LoadBalancer] = None,
    ) -> None:
        self.acl = acl or ACLEvaluator()
        self.lb = lb or LoadBalancer()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def add_acl_rule(
        self,
        service_src: str = WILDCARD,
        service_dst: str = WILDCARD,
        gw_dest: str = WILDCARD,
        priority: int = 0,
        action: Union[Action, str, int] = Action.ALLOW,
    ) -> ACLRule:
        rule = ACLRule(service_src, service_dst, gw_dest, priority, Action.parse(action))
        self.acl.add(rule)
        return rule

    def delete_acl_rule(
        self,
        service_src: str = WILDCARD,
        service_dst: str = WILDCARD,
        gw_dest: str = WILDCARD,
    ) -> bool:
        return self.acl.delete(service_src, service_dst, gw_dest)

    def add_lb_policy(
        self,
        service_src: str = WILDCARD,
        service_dst: str = WILDCARD,
        gw_dest: str = WILDCARD,
        strategy: Union[Strategy, str, None] = Strategy.RANDOM,
        priority: int = 0,
        order: Sequence[str] = (),
    ) -> LBPolicy:
        policy = LBPolicy(
            service_src,
            service_dst,
            gw_dest,
            Strategy.parse(strategy),
            priority,
            tuple(order),
        )
        self.lb.add(policy)
        return policy

    def delete_lb_policy(
        self,
        service_src: str = WILDCARD,
        service_dst: str = WILDCARD,
        gw_dest: str = WILDCARD,
    ) -> bool:
        return self.lb.delete(service_src, service_dst, gw_dest)

    def list_rules(self) -> Dict[str, List[Union[ACLRule, LBPolicy]]]:
        """All rules grouped for display, each group in evaluation order."""

        return {"acl": list(self.acl.rules()), "lb": list(self.lb.policies())}

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, service_src: str, service_dst: str, gw_dest: str) -> Action:
        return self.acl.evaluate(service_src, service_dst, gw_dest)

    def decide(
        self,
        service_src: str,
        service_dst: str,
        gw_dest: str,
        candidates: Sequence[C],
        key: Optional[str] = None,
    ) -> Decision[C]:
        """ACL check for one gateway, then endpoint selection among candidates."""

        action = self.acl.evaluate(service_src, service_dst, gw_dest)
        if action is Action.DENY:
            LOG.debug("Denied %s -> %s via %s", service_src, service_dst, gw_dest)
            return Decision(action)
        target = self.lb.select(service_src, service_dst, gw_dest, candidates, key)
        return Decision(action, target)

    def route(
        self,
        service_src: str,
        service_dst: str,
        candidates: Sequence[C],
        key: Optional[str] = None,
    ) -> Decision[C]:
        """Pick a target among candidates spanning several gateways.

        Each candidate's gateway is its ``peer`` attribute.  Candidates whose
        gateway is denied are dropped, then the load balancer chooses among
        the rest.  The gateway is the outcome of the selection, so the LB
        policy is looked up with the wildcard gateway.
        """

        verdicts: Dict[str, Action] = {}
        allowed: List[C] = []
        for candidate in candidates:
            gateway = getattr(candidate, "peer", WILDCARD)
            if gateway not in verdicts:
                verdicts[gateway] = self.acl.evaluate(service_src, service_dst, gateway)
            if verdicts[gateway] is Action.ALLOW:
                allowed.append(candidate)

        if not allowed:
            LOG.debug(
                "No permitted target for %s -> %s (%d candidates)",
                service_src,
                service_dst,
                len(candidates),
            )
            return Decision(Action.DENY)
        target = self.lb.select(service_src, service_dst, WILDCARD, allowed, key)
        return Decision(Action.ALLOW, target)
