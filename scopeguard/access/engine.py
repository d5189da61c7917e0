"""
Access Decision Engine.

decide() evaluates every clause of the resource's collection policy and
returns Allow if any applicable clause with an allow effect matches
(permissive union across role tiers). Deny effects never veto an allow;
they exist so explain() can show which restriction matched. Unknown
collections and unknown operations are denied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import AccessDenied, UnknownOperation
from ..models import Operation, Principal, Resource
from .policy import Effect, Policy, default_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClauseOutcome:
    predicate: str
    effect: Effect
    applicable: bool
    matched: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicate": self.predicate,
            "effect": self.effect.value,
            "applicable": self.applicable,
            "matched": self.matched,
        }


@dataclass(frozen=True)
class Explanation:
    decision: Effect
    reason: str
    clauses: tuple[ClauseOutcome, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "clauses": [c.to_dict() for c in self.clauses],
        }


class AccessDecisionEngine:
    """Stateless evaluator; safe to share across threads."""

    def __init__(self, policy: Policy | None = None, *, strict: bool = False):
        self.policy = policy or default_policy()
        self.strict = strict

    def _operation(self, operation: Operation | str) -> Operation | None:
        op = Operation.parse(operation)
        if op is None:
            if self.strict:
                raise UnknownOperation(f"unknown operation {operation!r}")
            logger.warning("Denying unknown operation %r", operation)
        return op

    def decide(self, principal: Principal, operation: Operation | str, resource: Resource) -> Effect:
        """
        Allow or Deny for (principal, operation, resource).

        Raises:
            UnknownOperation: only in strict mode, for an operation outside the closed set
        """
        op = self._operation(operation)
        if op is None:
            return Effect.DENY
        collection_policy = self.policy.get(resource.collection)
        if collection_policy is None:
            return Effect.DENY
        allowed = False
        for clause in collection_policy.clauses:
            if op not in clause.operations:
                continue
            if clause.fn(principal, resource) and clause.effect is Effect.ALLOW:
                allowed = True
        return Effect.ALLOW if allowed else Effect.DENY

    def is_allowed(self, principal: Principal, operation: Operation | str, resource: Resource) -> bool:
        return self.decide(principal, operation, resource) is Effect.ALLOW

    def require(self, principal: Principal, operation: Operation | str, resource: Resource) -> None:
        """Raise AccessDenied (generic message) unless the decision is Allow."""
        if self.decide(principal, operation, resource) is not Effect.ALLOW:
            raise AccessDenied()

    def explain(self, principal: Principal, operation: Operation | str, resource: Resource) -> Explanation:
        """Same decision as decide(), with the outcome of every clause."""
        op = self._operation(operation)
        if op is None:
            return Explanation(Effect.DENY, f"unknown operation {operation!r}")
        collection_policy = self.policy.get(resource.collection)
        if collection_policy is None:
            return Explanation(Effect.DENY, f"no policy for collection {resource.collection!r}")

        outcomes = []
        for clause in collection_policy.clauses:
            applicable = op in clause.operations
            matched = applicable and clause.fn(principal, resource)
            outcomes.append(ClauseOutcome(clause.predicate, clause.effect, applicable, matched))
        allowing = [o.predicate for o in outcomes if o.matched and o.effect is Effect.ALLOW]
        if allowing:
            return Explanation(Effect.ALLOW, f"allowed by {', '.join(allowing)}", tuple(outcomes))
        return Explanation(Effect.DENY, "no allow clause matched", tuple(outcomes))
