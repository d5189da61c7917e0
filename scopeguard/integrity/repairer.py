"""
Integrity Repairer.

Only a closed set of repairs exists, one tagged variant per repairable
violation type:

- ClearOrphanedReference: an optional reference, or one side of an
  exactly-one-of pair whose other side is valid, points at a missing record.
- AssignScope: a required scope-id is absent and the record's references
  (and its creator) agree on exactly one scope.

Everything else is skipped with a reason. Dry-run is the default; execute
waits out a cancellable countdown, then writes one record at a time,
re-checking each precondition first and journaling every outcome.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Union

from ..audit_log import log_operation
from ..catalog.schema import Catalog, ExactlyOneOf, Optional, RelationshipRule, ViolationType
from ..errors import RepairCancelled, StoreError
from ..models import Record, is_set
from ..store.base import DocumentStore
from ..violations import Violation, ViolationLog
from .checks import StoreLookup

logger = logging.getLogger(__name__)

NO_SAFE_REPAIR = "no safe auto-repair"


class RepairMode(str, Enum):
    DRY_RUN = "dry-run"
    EXECUTE = "execute"


@dataclass(frozen=True)
class ClearOrphanedReference:
    collection: str
    document_id: str
    field: str
    expected_value: Any
    kind = "clear-reference"

    def describe(self, executed: bool) -> str:
        verb = "cleared reference" if executed else "would clear reference"
        return f"{verb} {self.field}={self.expected_value!r}"


@dataclass(frozen=True)
class AssignScope:
    collection: str
    document_id: str
    field: str
    scope_id: str
    kind = "assign-scope"

    def describe(self, executed: bool) -> str:
        verb = "assigned scope" if executed else "would assign scope"
        return f"{verb} {self.field}={self.scope_id!r}"


RepairAction = Union[ClearOrphanedReference, AssignScope]


@dataclass
class RepairOutcome:
    action: RepairAction
    violations: list[Violation]
    executed: bool

    @property
    def message(self) -> str:
        return self.action.describe(self.executed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "repair": self.action.kind,
            "collection": self.action.collection,
            "documentId": self.action.document_id,
            "field": self.action.field,
            "message": self.message,
            "executed": self.executed,
            "violationIds": [v.id for v in self.violations],
        }


@dataclass
class SkippedRepair:
    violation: Violation
    reason: str
    detail: str | None = None
    error: bool = False

    @property
    def message(self) -> str:
        text = f"skipped: {self.reason}"
        return f"{text} ({self.detail})" if self.detail else text

    def to_dict(self) -> dict[str, Any]:
        return {
            "violationId": self.violation.id,
            "type": self.violation.type.value,
            "collection": self.violation.collection,
            "documentId": self.violation.document_id,
            "field": self.violation.invalid_field,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class RepairResult:
    mode: RepairMode
    applied: list[RepairOutcome] = field(default_factory=list)
    skipped: list[SkippedRepair] = field(default_factory=list)

    @property
    def errors(self) -> list[SkippedRepair]:
        return [s for s in self.skipped if s.error]

    @property
    def exit_code(self) -> int:
        return 1 if self.errors else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "applied": [o.to_dict() for o in self.applied],
            "skipped": [s.to_dict() for s in self.skipped],
            "errors": len(self.errors),
        }


@dataclass(frozen=True)
class _Skip:
    reason: str
    detail: str | None = None


Plan = Union[RepairAction, _Skip]


class IntegrityRepairer:
    def __init__(
        self,
        catalog: Catalog,
        store: DocumentStore,
        *,
        log: ViolationLog | None = None,
        journal_path: Path | None = None,
        countdown_seconds: float = 5.0,
        on_tick: Callable[[int], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel: threading.Event | None = None,
        creator_field: str = "createdBy",
        creator_collection: str = "users",
    ):
        self.catalog = catalog
        self.store = store
        self.log = log
        self.journal_path = journal_path
        self.countdown_seconds = countdown_seconds
        self.on_tick = on_tick
        self.sleep = sleep
        self.cancel = cancel or threading.Event()
        self.creator_field = creator_field
        self.creator_collection = creator_collection
        self._rules = {r.id: r for r in catalog.relationships}

    # Planning

    def _rule_for(self, violation: Violation) -> RelationshipRule | None:
        rule = self._rules.get(violation.rule or "")
        if rule is not None:
            return rule
        for candidate in self.catalog.rules_for(violation.collection):
            if candidate.field == violation.invalid_field:
                return candidate
        return None

    def _plan_invalid_reference(self, violation: Violation, record: Record, lookup: StoreLookup) -> Plan:
        rule = self._rule_for(violation)
        if rule is None:
            return _Skip(NO_SAFE_REPAIR, "reference is not catalogued")
        cardinality = rule.cardinality
        if isinstance(cardinality, ExactlyOneOf):
            other = cardinality.field_b if rule.field == cardinality.field_a else cardinality.field_a
            other_rule = next((r for r in self.catalog.rules_for(rule.source) if r.field == other), None)
            other_value = record.get(other)
            if other_rule is None or not is_set(other_value) or not lookup.exists(other_rule.target, other_value):
                return _Skip(NO_SAFE_REPAIR, f"{other} does not hold a valid reference")
        elif not isinstance(cardinality, Optional):
            return _Skip(NO_SAFE_REPAIR, f"{rule.field} is required")
        return ClearOrphanedReference(record.collection, record.id, rule.field, record.get(rule.field))

    def _scope_candidates(self, record: Record, scope_field: str, lookup: StoreLookup) -> set[str]:
        candidates: set[str] = set()
        refs: list[tuple[str, Any]] = [(r.target, record.get(r.field)) for r in self.catalog.rules_for(record.collection)]
        refs.append((self.creator_collection, record.get(self.creator_field)))
        for target, ref in refs:
            if not isinstance(ref, str) or not is_set(ref):
                continue
            referenced = self.store.get(target, ref)
            if referenced is None:
                continue
            target_rule = self.catalog.scope_rule_for(target)
            value = referenced.get(target_rule.field if target_rule else scope_field)
            if isinstance(value, str) and is_set(value):
                candidates.add(value)
        scope_rule = self.catalog.scope_rule_for(record.collection)
        allowed = scope_rule.allowed_values if scope_rule else frozenset()
        return {c for c in candidates if c in allowed or lookup.exists(self.catalog.scope_collection, c)}

    def _plan_missing_scope(self, violation: Violation, record: Record, lookup: StoreLookup) -> Plan:
        scope_rule = self.catalog.scope_rule_for(record.collection)
        if scope_rule is None:
            return _Skip(NO_SAFE_REPAIR, "collection has no scope rule")
        candidates = self._scope_candidates(record, scope_rule.field, lookup)
        if len(candidates) != 1:
            detail = "no candidate scope" if not candidates else f"{len(candidates)} candidate scopes"
            return _Skip(NO_SAFE_REPAIR, detail)
        return AssignScope(record.collection, record.id, scope_rule.field, candidates.pop())

    def plan(self, violation: Violation) -> Plan:
        if violation.type in _NOT_REPAIRABLE:
            return _Skip(NO_SAFE_REPAIR)
        record = self.store.get(violation.collection, violation.document_id)
        if record is None:
            return _Skip("record no longer exists")
        return _PLANNERS[violation.type](self, violation, record, StoreLookup(self.store, self.catalog.role_field))

    # Execution

    def _countdown(self) -> None:
        remaining = int(math.ceil(self.countdown_seconds))
        try:
            while remaining > 0:
                if self.cancel.is_set():
                    raise RepairCancelled("repair cancelled before any write")
                if self.on_tick is not None:
                    self.on_tick(remaining)
                self.sleep(1)
                remaining -= 1
        except KeyboardInterrupt as e:
            raise RepairCancelled("repair cancelled before any write") from e
        if self.cancel.is_set():
            raise RepairCancelled("repair cancelled before any write")

    def _precondition(self, action: RepairAction, record: Record | None, violation: Violation) -> str | None:
        """Why the action no longer applies to the current record, or None when it still does."""
        if record is None:
            return "record no longer exists"
        if isinstance(action, ClearOrphanedReference):
            if record.get(action.field) != action.expected_value:
                return f"{action.field} changed since planning"
            lookup = StoreLookup(self.store, self.catalog.role_field)
            plan = self._plan_invalid_reference(violation, record, lookup)
            if isinstance(plan, _Skip):
                return plan.detail or plan.reason
            rule = self._rule_for(violation)
            if rule is not None and lookup.exists(rule.target, action.expected_value):
                return "reference target now exists"
            return None
        if is_set(record.get(action.field)):
            return f"{action.field} is already set"
        return None

    def _apply(self, action: RepairAction) -> dict[str, Any]:
        if isinstance(action, ClearOrphanedReference):
            self.store.update(action.collection, action.document_id, unset_fields=[action.field])
            return {action.field: None}
        self.store.update(action.collection, action.document_id, set_fields={action.field: action.scope_id})
        return {action.field: action.scope_id}

    def _journal(self, action: RepairAction, outcome: str, before: dict, after: dict, metadata: dict) -> None:
        if self.journal_path is None:
            return
        log_operation(
            self.journal_path,
            action.kind,
            action.collection,
            action.document_id,
            outcome,
            before=before,
            after=after,
            metadata=metadata,
        )

    def _journal_failure(self, action: RepairAction, metadata: dict) -> None:
        try:
            self._journal(action, "failed", {}, {}, metadata)
        except StoreError as e:
            logger.error("Cannot journal failed %s on %s/%s: %s", action.kind, action.collection, action.document_id, e)

    def repair(self, violations: list[Violation], mode: RepairMode = RepairMode.DRY_RUN) -> RepairResult:
        """
        Plan (and in execute mode apply) repairs for the given violations.

        Each write is preceded by a "pending" journal entry; a record whose
        pending entry cannot be journaled is not written. Failures of a write,
        or of recording it afterwards, are reported per record as skipped with
        an error and never stop the batch.

        Raises:
            RepairCancelled: the countdown was interrupted; nothing was written
        """
        result = RepairResult(mode=mode)
        # One write per (record, field), however many violations it addresses.
        grouped: dict[tuple[str, str, str, str], tuple[RepairAction, list[Violation]]] = {}
        for violation in violations:
            if not violation.is_open:
                continue
            try:
                plan = self.plan(violation)
            except StoreError as e:
                logger.error("Cannot plan repair for %s/%s: %s", violation.collection, violation.document_id, e)
                result.skipped.append(SkippedRepair(violation, "store error", str(e), error=True))
                continue
            if isinstance(plan, _Skip):
                result.skipped.append(SkippedRepair(violation, plan.reason, plan.detail))
                continue
            key = (plan.kind, plan.collection, plan.document_id, plan.field)
            grouped.setdefault(key, (plan, []))[1].append(violation)

        if mode is RepairMode.DRY_RUN or not grouped:
            result.applied = [RepairOutcome(a, vs, executed=False) for a, vs in grouped.values()]
            return result

        self._countdown()
        for action, addressed in grouped.values():
            ids = [v.id for v in addressed]
            try:
                record = self.store.get(action.collection, action.document_id)
                stale = self._precondition(action, record, addressed[0])
                if stale is not None:
                    for v in addressed:
                        result.skipped.append(SkippedRepair(v, "precondition no longer holds", stale))
                    continue
                before = {action.field: record.get(action.field)}
                self._journal(action, "pending", before, {}, {"violationIds": ids})
            except StoreError as e:
                logger.error("Repair %s on %s/%s not attempted: %s", action.kind, action.collection, action.document_id, e)
                for v in addressed:
                    result.skipped.append(SkippedRepair(v, "not attempted", str(e), error=True))
                continue

            try:
                after = self._apply(action)
            except StoreError as e:
                logger.error("Repair %s on %s/%s failed: %s", action.kind, action.collection, action.document_id, e)
                self._journal_failure(action, {"violationIds": ids, "error": str(e)})
                for v in addressed:
                    result.skipped.append(SkippedRepair(v, "write failed", str(e), error=True))
                continue

            try:
                self._journal(action, "applied", before, after, {"violationIds": ids})
                if self.log is not None:
                    self.log.resolve(ids, f"repaired: {action.kind}")
            except StoreError as e:
                # The write landed; its pending entry is the only trace in the journal.
                logger.error(
                    "Repair %s on %s/%s applied but not recorded: %s", action.kind, action.collection, action.document_id, e
                )
                for v in addressed:
                    result.skipped.append(SkippedRepair(v, "applied but not recorded", str(e), error=True))
                continue
            logger.info("Repaired %s/%s: %s", action.collection, action.document_id, action.describe(True))
            result.applied.append(RepairOutcome(action, addressed, executed=True))
        return result


_PLANNERS: dict[ViolationType, Callable[[IntegrityRepairer, Violation, Record, StoreLookup], Plan]] = {
    ViolationType.INVALID_REFERENCE: IntegrityRepairer._plan_invalid_reference,
    ViolationType.MISSING_SCOPE: IntegrityRepairer._plan_missing_scope,
}

_NOT_REPAIRABLE = frozenset(
    {
        ViolationType.MISSING_REFERENCE,
        ViolationType.AMBIGUOUS_REFERENCE,
        ViolationType.MISSING_EXCLUSIVE_REFERENCE,
        ViolationType.INVALID_SCOPE_REFERENCE,
        ViolationType.UNEXPECTED_TARGET_ROLE,
    }
)

_unhandled = set(ViolationType) - set(_PLANNERS) - _NOT_REPAIRABLE
if _unhandled or set(_PLANNERS) & _NOT_REPAIRABLE:
    raise RuntimeError(f"Repair table is not exhaustive: {sorted(t.value for t in _unhandled)}")
