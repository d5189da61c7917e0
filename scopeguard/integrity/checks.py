"""
Catalog checks for a single record.

The same RecordChecker backs the batch auditor (with an id index built in
one pass per target collection) and the live validator (with direct store
lookups), so both classify a record identically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from ..catalog.schema import Catalog, ExactlyOneOf, RelationshipRule, Required, ViolationType
from ..models import Record, Role, is_set
from ..store.base import DocumentStore
from ..violations import SOURCE_AUDIT, Violation

# Defects that make a record count as invalid for its relationship.
REFERENCE_DEFECTS = frozenset(
    {
        ViolationType.INVALID_REFERENCE,
        ViolationType.MISSING_REFERENCE,
        ViolationType.AMBIGUOUS_REFERENCE,
        ViolationType.MISSING_EXCLUSIVE_REFERENCE,
    }
)

_MISSING = object()


class TargetLookup(Protocol):
    def exists(self, collection: str, record_id: Any) -> bool:
        ...

    def role_of(self, collection: str, record_id: Any) -> Any:
        """Raw role field of the target record (None if absent)."""
        ...


class IndexLookup:
    """Preloaded {collection: {id: role}} index; one streaming pass per collection."""

    def __init__(self, index: dict[str, dict[str, Any]]):
        self.index = index

    @classmethod
    def build(cls, store: DocumentStore, collections: Iterable[str], role_field: str = "role") -> "IndexLookup":
        index: dict[str, dict[str, Any]] = {}
        for collection in sorted(set(collections)):
            index[collection] = {r.id: r.data.get(role_field) for r in store.iter_records(collection)}
        return cls(index)

    def exists(self, collection: str, record_id: Any) -> bool:
        return isinstance(record_id, str) and record_id in self.index.get(collection, {})

    def role_of(self, collection: str, record_id: Any) -> Any:
        if not isinstance(record_id, str):
            return None
        return self.index.get(collection, {}).get(record_id)


class StoreLookup:
    """Direct lookups against the store, memoized for the lifetime of the object."""

    def __init__(self, store: DocumentStore, role_field: str = "role"):
        self.store = store
        self.role_field = role_field
        self._cache: dict[tuple[str, str], Any] = {}

    def _fetch(self, collection: str, record_id: Any) -> Any:
        if not isinstance(record_id, str):
            return _MISSING
        key = (collection, record_id)
        if key not in self._cache:
            record = self.store.get(collection, record_id)
            self._cache[key] = _MISSING if record is None else record.data.get(self.role_field)
        return self._cache[key]

    def exists(self, collection: str, record_id: Any) -> bool:
        return self._fetch(collection, record_id) is not _MISSING

    def role_of(self, collection: str, record_id: Any) -> Any:
        value = self._fetch(collection, record_id)
        return None if value is _MISSING else value


@dataclass
class CheckResult:
    record: Record
    violations: list[Violation] = field(default_factory=list)
    checked_rules: list[str] = field(default_factory=list)
    invalid_rules: set[str] = field(default_factory=set)
    scope_value: str | None = None
    scope_checked: bool = False

    @property
    def valid(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.record.collection,
            "documentId": self.record.id,
            "valid": self.valid,
            "issues": [v.to_dict() for v in self.violations],
        }


class RecordChecker:
    def __init__(self, catalog: Catalog, lookup: TargetLookup, *, source: str = SOURCE_AUDIT):
        self.catalog = catalog
        self.lookup = lookup
        self.source = source

    def _violation(
        self,
        kind: ViolationType,
        record: Record,
        invalid_field: str,
        value: Any,
        rule: str | None,
        message: str,
    ) -> Violation:
        return Violation(
            type=kind,
            collection=record.collection,
            document_id=record.id,
            invalid_field=invalid_field,
            invalid_value=value,
            source=self.source,
            rule=rule,
            message=message,
        )

    def check(self, record: Record) -> CheckResult:
        result = CheckResult(record=record)
        pairs_seen: set[ExactlyOneOf] = set()
        pair_rules: dict[ExactlyOneOf, list[str]] = {}
        for rule in self.catalog.rules_for(record.collection):
            if isinstance(rule.cardinality, ExactlyOneOf):
                pair_rules.setdefault(rule.cardinality, []).append(rule.id)

        for rule in self.catalog.rules_for(record.collection):
            result.checked_rules.append(rule.id)
            cardinality = rule.cardinality
            if isinstance(cardinality, ExactlyOneOf) and cardinality not in pairs_seen:
                pairs_seen.add(cardinality)
                self._check_pair(record, rule, cardinality, pair_rules[cardinality], result)
            self._check_reference(record, rule, result)

        self._check_scope(record, result)
        return result

    def _check_pair(
        self,
        record: Record,
        rule: RelationshipRule,
        pair: ExactlyOneOf,
        rule_ids: list[str],
        result: CheckResult,
    ) -> None:
        a_set, b_set = record.has(pair.field_a), record.has(pair.field_b)
        if a_set and b_set:
            kind = ViolationType.AMBIGUOUS_REFERENCE
            message = f"both {pair.field_a} and {pair.field_b} are set; exactly one is allowed"
            value: Any = {pair.field_a: record.get(pair.field_a), pair.field_b: record.get(pair.field_b)}
        elif not a_set and not b_set:
            kind = ViolationType.MISSING_EXCLUSIVE_REFERENCE
            message = f"neither {pair.field_a} nor {pair.field_b} is set; exactly one is required"
            value = None
        else:
            return
        result.violations.append(self._violation(kind, record, pair.label, value, rule.id, message))
        result.invalid_rules.update(rule_ids)

    def _check_reference(self, record: Record, rule: RelationshipRule, result: CheckResult) -> None:
        raw = record.data.get(rule.field)
        if not is_set(raw):
            if isinstance(rule.cardinality, Required):
                result.violations.append(
                    self._violation(
                        ViolationType.MISSING_REFERENCE, record, rule.field, raw, rule.id,
                        f"required reference {rule.field} is not set",
                    )
                )
                result.invalid_rules.add(rule.id)
            return

        if not self.lookup.exists(rule.target, raw):
            result.violations.append(
                self._violation(
                    ViolationType.INVALID_REFERENCE, record, rule.field, raw, rule.id,
                    f"{rule.field} references non-existent {rule.target} record",
                )
            )
            result.invalid_rules.add(rule.id)
            return

        if rule.target_roles:
            role = Role.parse(self.lookup.role_of(rule.target, raw))
            if role not in rule.target_roles:
                shown = role.value if role is not None else None
                result.violations.append(
                    self._violation(
                        ViolationType.UNEXPECTED_TARGET_ROLE, record, rule.field, raw, rule.id,
                        f"{rule.field} target has role {shown!r}, expected one of "
                        f"{sorted(r.value for r in rule.target_roles)}",
                    )
                )

    def _check_scope(self, record: Record, result: CheckResult) -> None:
        scope_rule = self.catalog.scope_rule_for(record.collection)
        if scope_rule is None:
            return
        if scope_rule.exclude_roles:
            role = Role.parse(record.get(self.catalog.role_field))
            if role in scope_rule.exclude_roles:
                return
        result.scope_checked = True
        raw = record.data.get(scope_rule.field)
        if not is_set(raw):
            if scope_rule.required:
                result.violations.append(
                    self._violation(
                        ViolationType.MISSING_SCOPE, record, scope_rule.field, raw, None,
                        f"required scope field {scope_rule.field} is not set",
                    )
                )
            return
        if isinstance(raw, str):
            result.scope_value = raw
            if raw in scope_rule.allowed_values:
                return
        if not self.lookup.exists(self.catalog.scope_collection, raw):
            result.violations.append(
                self._violation(
                    ViolationType.INVALID_SCOPE_REFERENCE, record, scope_rule.field, raw, None,
                    f"{scope_rule.field} references non-existent {self.catalog.scope_collection} record",
                )
            )
