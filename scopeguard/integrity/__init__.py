"""Relationship integrity: batch audit, safe repair, and creation-time checks."""

from .auditor import AuditReport, IntegrityAuditor, RelationshipStats, read_cached_report, record_results, write_cached_report
from .checks import CheckResult, IndexLookup, RecordChecker, StoreLookup
from .live import LiveValidator
from .repairer import (
    AssignScope,
    ClearOrphanedReference,
    IntegrityRepairer,
    RepairMode,
    RepairOutcome,
    RepairResult,
    SkippedRepair,
)

__all__ = [
    "AssignScope",
    "AuditReport",
    "CheckResult",
    "ClearOrphanedReference",
    "IndexLookup",
    "IntegrityAuditor",
    "IntegrityRepairer",
    "LiveValidator",
    "RecordChecker",
    "RelationshipStats",
    "RepairMode",
    "RepairOutcome",
    "RepairResult",
    "SkippedRepair",
    "StoreLookup",
    "read_cached_report",
    "record_results",
    "write_cached_report",
]
