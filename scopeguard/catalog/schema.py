from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from ..errors import ConfigurationError
from ..models import Role


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


class ViolationType(str, Enum):
    """Closed set of integrity defects the checks can report."""

    INVALID_REFERENCE = "invalid-reference"  # set, but the target does not exist
    MISSING_REFERENCE = "missing-reference"  # required reference absent
    AMBIGUOUS_REFERENCE = "ambiguous-reference"  # both sides of an exactly-one-of pair set
    MISSING_EXCLUSIVE_REFERENCE = "missing-exclusive-reference"  # neither side set
    MISSING_SCOPE = "missing-scope"
    INVALID_SCOPE_REFERENCE = "invalid-scope-reference"
    UNEXPECTED_TARGET_ROLE = "unexpected-target-role"

    @property
    def severity(self) -> Severity:
        return SEVERITY_BY_TYPE[self]


SEVERITY_BY_TYPE: dict[ViolationType, Severity] = {
    ViolationType.INVALID_REFERENCE: Severity.CRITICAL,
    ViolationType.MISSING_REFERENCE: Severity.CRITICAL,
    ViolationType.AMBIGUOUS_REFERENCE: Severity.CRITICAL,
    ViolationType.MISSING_EXCLUSIVE_REFERENCE: Severity.CRITICAL,
    ViolationType.MISSING_SCOPE: Severity.WARNING,
    ViolationType.INVALID_SCOPE_REFERENCE: Severity.CRITICAL,
    ViolationType.UNEXPECTED_TARGET_ROLE: Severity.WARNING,
}


@dataclass(frozen=True)
class Required:
    kind = "required"


@dataclass(frozen=True)
class Optional:
    kind = "optional"


@dataclass(frozen=True)
class ExactlyOneOf:
    """Exactly one of the two fields must be set on the record."""

    field_a: str
    field_b: str
    kind = "exactly-one-of"

    @property
    def fields(self) -> tuple[str, str]:
        return (self.field_a, self.field_b)

    @property
    def label(self) -> str:
        return f"{self.field_a},{self.field_b}"


Cardinality = Union[Required, Optional, ExactlyOneOf]


@dataclass(frozen=True)
class RelationshipRule:
    source: str
    field: str
    target: str
    cardinality: Cardinality = field(default_factory=Required)
    target_roles: frozenset[Role] | None = None
    description: str | None = None

    @property
    def id(self) -> str:
        return f"{self.source}.{self.field}->{self.target}"

    def to_dict(self) -> dict:
        d: dict = {
            "id": self.id,
            "source": self.source,
            "field": self.field,
            "target": self.target,
            "cardinality": self.cardinality.kind,
        }
        if isinstance(self.cardinality, ExactlyOneOf):
            d["pair"] = list(self.cardinality.fields)
        if self.target_roles:
            d["target_roles"] = sorted(r.value for r in self.target_roles)
        if self.description:
            d["description"] = self.description
        return d


@dataclass(frozen=True)
class ScopeRule:
    """Scope-id requirement for one collection."""

    collection: str
    field: str = "branchId"
    required: bool = True
    exclude_roles: frozenset[Role] = frozenset()
    allowed_values: frozenset[str] = frozenset()

    def to_dict(self) -> dict:
        return {
            "collection": self.collection,
            "field": self.field,
            "required": self.required,
            "exclude_roles": sorted(r.value for r in self.exclude_roles),
            "allowed_values": sorted(self.allowed_values),
        }


@dataclass(frozen=True)
class Catalog:
    collections: tuple[str, ...]
    relationships: tuple[RelationshipRule, ...] = ()
    scoping: tuple[ScopeRule, ...] = ()
    scope_collection: str = "branches"
    role_field: str = "role"

    def validate(self) -> Catalog:
        """
        Check every reference against the declared collections.

        Raises:
            ConfigurationError: on the first inconsistency found
        """
        declared = set(self.collections)
        if len(declared) != len(self.collections):
            raise ConfigurationError("Catalog declares a collection more than once")
        if self.scoping and self.scope_collection not in declared:
            raise ConfigurationError(f"Scope collection '{self.scope_collection}' is not declared")

        seen: set[str] = set()
        for rule in self.relationships:
            for name in (rule.source, rule.target):
                if name not in declared:
                    raise ConfigurationError(f"Relationship {rule.id} references unknown collection '{name}'")
            if not rule.field:
                raise ConfigurationError(f"Relationship from '{rule.source}' has an empty field name")
            if rule.id in seen:
                raise ConfigurationError(f"Duplicate relationship {rule.id}")
            seen.add(rule.id)
            if isinstance(rule.cardinality, ExactlyOneOf):
                if rule.field not in rule.cardinality.fields or rule.cardinality.field_a == rule.cardinality.field_b:
                    raise ConfigurationError(
                        f"Relationship {rule.id}: exactly-one-of pair must name two fields including '{rule.field}'"
                    )

        scoped: set[str] = set()
        for scope_rule in self.scoping:
            if scope_rule.collection not in declared:
                raise ConfigurationError(f"Scope rule references unknown collection '{scope_rule.collection}'")
            if scope_rule.collection in scoped:
                raise ConfigurationError(f"Duplicate scope rule for '{scope_rule.collection}'")
            scoped.add(scope_rule.collection)
        return self

    def rules_for(self, collection: str) -> list[RelationshipRule]:
        return [r for r in self.relationships if r.source == collection]

    def scope_rule_for(self, collection: str) -> ScopeRule | None:
        for rule in self.scoping:
            if rule.collection == collection:
                return rule
        return None

    def checked_collections(self) -> list[str]:
        """Collections that carry at least one relationship or scope rule, in declaration order."""
        wanted = {r.source for r in self.relationships} | {s.collection for s in self.scoping}
        return [c for c in self.collections if c in wanted]

    def targets_for(self, collections: list[str]) -> set[str]:
        """Collections whose ids must be indexed to check `collections`."""
        targets = {r.target for r in self.relationships if r.source in collections}
        if any(self.scope_rule_for(c) for c in collections):
            targets.add(self.scope_collection)
        return targets

    def to_dict(self) -> dict:
        return {
            "collections": list(self.collections),
            "scope_collection": self.scope_collection,
            "relationships": [r.to_dict() for r in self.relationships],
            "scoping": [s.to_dict() for s in self.scoping],
        }
