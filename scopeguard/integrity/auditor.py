"""
Integrity Auditor: batch pass over every catalogued collection.

The auditor never writes. Target ids are indexed with one streaming pass per
target collection, then each source collection is streamed once, so a run is
linear in the number of records. Recording results to the violation log is a
separate step (record_results) that callers run only after a run finishes.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from ..catalog.schema import Catalog, Severity
from ..errors import ConfigurationError, StoreError
from ..store.base import DocumentStore
from ..util import utc_now_iso
from ..violations import SOURCE_AUDIT, Violation, ViolationLog
from .checks import IndexLookup, RecordChecker

logger = logging.getLogger(__name__)

MISSING_SCOPE_KEY = "(none)"


@dataclass
class RelationshipStats:
    rule: str
    source: str
    field: str
    target: str
    total: int = 0
    valid: int = 0
    invalid: int = 0

    @property
    def validity_percent(self) -> float:
        if self.total == 0:
            return 100.0
        return round(100.0 * self.valid / self.total, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "source": self.source,
            "field": self.field,
            "target": self.target,
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "validityPercent": self.validity_percent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipStats":
        return cls(
            rule=data["rule"],
            source=data["source"],
            field=data["field"],
            target=data["target"],
            total=int(data.get("total", 0)),
            valid=int(data.get("valid", 0)),
            invalid=int(data.get("invalid", 0)),
        )


@dataclass
class AuditReport:
    started_at: str
    finished_at: str | None = None
    duration_seconds: float = 0.0
    scope: str | None = None
    interrupted: bool = False
    interrupt_reason: str | None = None
    collections: list[str] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)
    relationships: dict[str, RelationshipStats] = field(default_factory=dict)
    scope_distribution: dict[str, dict[str, int]] = field(default_factory=dict)
    collection_counts: dict[str, int] = field(default_factory=dict)

    @property
    def critical(self) -> list[Violation]:
        return [v for v in self.violations if v.severity is Severity.CRITICAL]

    @property
    def warnings(self) -> list[Violation]:
        return [v for v in self.violations if v.severity is Severity.WARNING]

    @property
    def records_checked(self) -> int:
        return sum(self.collection_counts.values())

    @property
    def exit_code(self) -> int:
        return 1 if self.critical or self.interrupted else 0

    def violation_keys(self) -> set[tuple]:
        return {v.key for v in self.violations}

    def counts_by_type(self) -> dict[str, int]:
        return dict(sorted(Counter(v.type.value for v in self.violations).items()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "durationSeconds": round(self.duration_seconds, 3),
            "scope": self.scope,
            "interrupted": self.interrupted,
            "interruptReason": self.interrupt_reason,
            "collections": self.collections,
            "summary": {
                "recordsChecked": self.records_checked,
                "critical": len(self.critical),
                "warning": len(self.warnings),
                "byType": self.counts_by_type(),
            },
            "relationships": [s.to_dict() for s in self.relationships.values()],
            "scopeDistribution": self.scope_distribution,
            "collectionCounts": self.collection_counts,
            "violations": [v.to_dict() for v in self.violations],
            "exitCode": self.exit_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditReport":
        relationships = [RelationshipStats.from_dict(r) for r in data.get("relationships", [])]
        return cls(
            started_at=data["startedAt"],
            finished_at=data.get("finishedAt"),
            duration_seconds=float(data.get("durationSeconds", 0.0)),
            scope=data.get("scope"),
            interrupted=bool(data.get("interrupted", False)),
            interrupt_reason=data.get("interruptReason"),
            collections=list(data.get("collections", [])),
            violations=[Violation.from_dict(v) for v in data.get("violations", [])],
            relationships={r.rule: r for r in relationships},
            scope_distribution=data.get("scopeDistribution", {}),
            collection_counts=data.get("collectionCounts", {}),
        )


class IntegrityAuditor:
    def __init__(
        self,
        catalog: Catalog,
        store: DocumentStore,
        *,
        scope: str | None = None,
        collections: list[str] | None = None,
        max_seconds: float | None = None,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.catalog = catalog
        self.store = store
        self.scope = scope
        self.max_seconds = max_seconds
        self.cancel = cancel or threading.Event()
        self.clock = clock
        checked = catalog.checked_collections()
        if collections is not None:
            unknown = sorted(set(collections) - set(catalog.collections))
            if unknown:
                raise ConfigurationError(f"Unknown collection(s): {', '.join(unknown)}")
            checked = [c for c in checked if c in collections]
        self.collections = checked

    def _interrupt_reason(self, started: float) -> str | None:
        if self.cancel.is_set():
            return "cancelled"
        if self.max_seconds is not None and self.clock() - started > self.max_seconds:
            return f"time limit of {self.max_seconds:g}s reached"
        return None

    def _in_scope(self, collection: str, data: dict[str, Any]) -> bool:
        if self.scope is None:
            return True
        scope_rule = self.catalog.scope_rule_for(collection)
        scope_field = scope_rule.field if scope_rule else "branchId"
        return data.get(scope_field) == self.scope

    def run(self) -> AuditReport:
        """
        Audit every catalogued collection.

        Raises:
            StoreError: the store could not be read; no partial report is returned
        """
        started = self.clock()
        report = AuditReport(started_at=utc_now_iso(), scope=self.scope, collections=list(self.collections))
        for rule in self.catalog.relationships:
            if rule.source in self.collections:
                report.relationships[rule.id] = RelationshipStats(rule.id, rule.source, rule.field, rule.target)

        lookup = IndexLookup.build(
            self.store, self.catalog.targets_for(self.collections), role_field=self.catalog.role_field
        )
        checker = RecordChecker(self.catalog, lookup, source=SOURCE_AUDIT)

        for collection in self.collections:
            seen = 0
            distribution: Counter[str] = Counter()
            for record in self.store.iter_records(collection):
                reason = self._interrupt_reason(started)
                if reason is not None:
                    report.interrupted = True
                    report.interrupt_reason = reason
                    break
                if not self._in_scope(collection, record.data):
                    continue
                seen += 1
                result = checker.check(record)
                report.violations.extend(result.violations)
                for rule_id in result.checked_rules:
                    stats = report.relationships[rule_id]
                    stats.total += 1
                    if rule_id in result.invalid_rules:
                        stats.invalid += 1
                    else:
                        stats.valid += 1
                if result.scope_checked:
                    distribution[result.scope_value or MISSING_SCOPE_KEY] += 1
            report.collection_counts[collection] = seen
            if distribution:
                report.scope_distribution[collection] = dict(sorted(distribution.items()))
            logger.info("Audited %s: %d record(s)", collection, seen)
            if report.interrupted:
                logger.warning("Audit interrupted in %s: %s", collection, report.interrupt_reason)
                break

        report.finished_at = utc_now_iso()
        report.duration_seconds = self.clock() - started
        return report


def record_results(report: AuditReport, log: ViolationLog) -> list[Violation]:
    """
    Append a finished audit's findings to the violation log.

    Findings already logged and still open are not written again. Nothing is
    resolved here; only the Repairer sets resolved-at. Returns the violations
    written.
    """
    return log.append_many_if_new(report.violations)


def write_cached_report(path: Path, report: AuditReport) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(report.to_dict(), indent=2, default=str) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        raise StoreError(f"Cannot write cached audit {path}: {e}") from e


def read_cached_report(path: Path) -> AuditReport | None:
    """Last recorded audit, or None when no usable cache exists."""
    if not path.exists():
        return None
    try:
        return AuditReport.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
        logger.warning("Ignoring unreadable cached audit %s: %s", path, e)
        return None
