"""Access decisions: per-collection (predicate, effect) clauses, allow wins."""

from .engine import AccessDecisionEngine, ClauseOutcome, Explanation
from .policy import Clause, CollectionPolicy, Effect, Policy, default_policy, load_policy, parse_policy
from .predicates import PREDICATES

__all__ = [
    "AccessDecisionEngine",
    "Clause",
    "ClauseOutcome",
    "CollectionPolicy",
    "Effect",
    "Explanation",
    "PREDICATES",
    "Policy",
    "default_policy",
    "load_policy",
    "parse_policy",
]
