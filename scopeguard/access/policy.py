from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError
from ..models import Operation
from .predicates import PREDICATES, PredicateFn


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


READ_OPS = frozenset({Operation.READ, Operation.LIST})
WRITE_OPS = frozenset({Operation.CREATE, Operation.UPDATE, Operation.DELETE})
ALL_OPS = READ_OPS | WRITE_OPS


@dataclass(frozen=True)
class Clause:
    """One (predicate, effect) pair, limited to a set of operations."""

    predicate: str
    effect: Effect = Effect.ALLOW
    operations: frozenset[Operation] = ALL_OPS
    fn: PredicateFn = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        fn = PREDICATES.get(self.predicate)
        if fn is None:
            raise ConfigurationError(f"Unknown access predicate '{self.predicate}'")
        object.__setattr__(self, "fn", fn)

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicate": self.predicate,
            "effect": self.effect.value,
            "operations": sorted(op.value for op in self.operations),
        }


@dataclass(frozen=True)
class CollectionPolicy:
    collection: str
    clauses: tuple[Clause, ...] = ()


@dataclass(frozen=True)
class Policy:
    collections: dict[str, CollectionPolicy] = field(default_factory=dict)

    def get(self, collection: str) -> CollectionPolicy | None:
        return self.collections.get(collection)

    def to_dict(self) -> dict[str, Any]:
        return {
            name: [c.to_dict() for c in cp.clauses]
            for name, cp in sorted(self.collections.items())
        }


_TOP = Clause("is_top_tier")
_SCOPED_READ = Clause("scoped_in_scope", operations=READ_OPS)
_SCOPED_EDIT = Clause("in_scope", operations=frozenset({Operation.CREATE, Operation.UPDATE}))
_ADMIN_WRITE = Clause("scoped_admin_in_scope", operations=WRITE_OPS)
_CLIENT_READ = Clause("client_owns", operations=READ_OPS)

_BUSINESS = (_TOP, _SCOPED_READ, _SCOPED_EDIT, _ADMIN_WRITE, _CLIENT_READ)


def default_policy() -> Policy:
    """Role-tier rules for the platform's collections.

    Top tier may do anything. Scoped roles read and edit within their scope,
    and only scoped admins delete. External clients read what they own.

    One exception to scope isolation: any principal may read and update its
    own user record (is_self), whatever branchId that record carries, so a
    principal whose profile scope is wrong can still see and correct it.
    """
    rules: dict[str, tuple[Clause, ...]] = {
        "users": (
            _TOP,
            _SCOPED_READ,
            _ADMIN_WRITE,
            Clause("is_self", operations=frozenset({Operation.READ, Operation.UPDATE})),
        ),
        "branches": (
            _TOP,
            Clause("scope_record", operations=READ_OPS),
            Clause("scope_record", operations=frozenset({Operation.UPDATE})),
        ),
        "customers": (
            _TOP,
            _SCOPED_READ,
            _SCOPED_EDIT,
            _ADMIN_WRITE,
            Clause("client_is_subject", operations=READ_OPS),
        ),
        "companies": (
            _TOP,
            _SCOPED_READ,
            _ADMIN_WRITE,
            Clause("client_is_subject", operations=READ_OPS),
        ),
        "buildings": _BUSINESS,
        "reports": _BUSINESS,
        "offers": _BUSINESS,
        "appointments": _BUSINESS,
        "scheduledVisits": _BUSINESS,
        "serviceAgreements": _BUSINESS,
        # Violation detail is for the top tier only.
        "validation_errors": (Clause("is_top_tier", operations=READ_OPS),),
    }
    return Policy({name: CollectionPolicy(name, clauses) for name, clauses in rules.items()})


def _operations(raw: Any, where: str) -> frozenset[Operation]:
    if raw is None:
        return ALL_OPS
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError(f"{where}: operations must be a non-empty list")
    ops = set()
    for name in raw:
        op = Operation.parse(name)
        if op is None:
            raise ConfigurationError(f"{where}: unknown operation {name!r}")
        ops.add(op)
    return frozenset(ops)


def parse_policy(data: dict[str, Any]) -> Policy:
    collections: dict[str, CollectionPolicy] = {}
    for i, raw in enumerate(data.get("collections", [])):
        where = f"collections[{i}]"
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{where} must be a table")
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"{where}: 'name' is required")
        if name in collections:
            raise ConfigurationError(f"{where}: duplicate policy for '{name}'")
        clauses = []
        for j, clause_raw in enumerate(raw.get("clauses", [])):
            cwhere = f"{where}.clauses[{j}]"
            if not isinstance(clause_raw, dict):
                raise ConfigurationError(f"{cwhere} must be a table")
            try:
                effect = Effect(str(clause_raw.get("effect", "allow")).strip().lower())
            except ValueError as e:
                raise ConfigurationError(f"{cwhere}: effect must be allow or deny") from e
            clauses.append(
                Clause(
                    predicate=str(clause_raw.get("predicate", "")).strip(),
                    effect=effect,
                    operations=_operations(clause_raw.get("operations"), cwhere),
                )
            )
        collections[name] = CollectionPolicy(name, tuple(clauses))
    return Policy(collections)


def load_policy(path: Path | None = None) -> Policy:
    """
    Load an access policy from TOML, or the built-in one when no path is given.

    Rules are data; predicates are code and referenced by name.
    """
    if path is None:
        return default_policy()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read policy {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed policy {path}: {e}") from e
    return parse_policy(data)
