"""Tests for the append-only violation log."""

from __future__ import annotations

import json

from scopeguard.catalog import ViolationType
from scopeguard.violations import Violation, ViolationLog


def violation(doc: str = "r-1", value="b-gone", kind=ViolationType.INVALID_REFERENCE) -> Violation:
    return Violation(type=kind, collection="reports", document_id=doc, invalid_field="buildingId", invalid_value=value)


def test_shared_schema_fields(violation_log: ViolationLog) -> None:
    violation_log.append(violation())
    line = json.loads(violation_log.path.read_text(encoding="utf-8").splitlines()[0])
    for key in ("type", "collection", "documentId", "invalidField", "invalidValue", "timestamp"):
        assert key in line
    assert line["severity"] == "critical"


def test_append_if_new_deduplicates_open_entries(violation_log: ViolationLog) -> None:
    assert violation_log.append_if_new(violation())
    assert not violation_log.append_if_new(violation())
    assert violation_log.append_if_new(violation(value="b-other"))
    assert len(violation_log.entries()) == 2


def test_resolved_defect_can_recur(violation_log: ViolationLog) -> None:
    first = violation_log.append(violation())
    assert violation_log.resolve([first.id], "fixed") == 1
    assert violation_log.append_if_new(violation())
    assert len(violation_log.open_violations()) == 1


def test_resolve_is_append_only(violation_log: ViolationLog) -> None:
    v = violation_log.append(violation())
    before = violation_log.path.read_text(encoding="utf-8")

    violation_log.resolve([v.id, v.id, "unknown-id"], "fixed", resolved_at="2026-05-01T00:00:00+00:00")

    after = violation_log.path.read_text(encoding="utf-8")
    assert after.startswith(before)
    entry = violation_log.entries()[0]
    assert entry.resolved_at == "2026-05-01T00:00:00+00:00"
    assert entry.resolution_note == "fixed"
    # Already resolved: nothing more to write.
    assert violation_log.resolve([v.id], "again") == 0


def test_malformed_lines_are_skipped(violation_log: ViolationLog) -> None:
    violation_log.append(violation("r-1"))
    with violation_log.path.open("a", encoding="utf-8") as f:
        f.write("{broken json\n")
        f.write(json.dumps({"type": "not-a-type", "collection": "x", "documentId": "y", "invalidField": "z"}) + "\n")
    violation_log.append(violation("r-2"))

    assert [v.document_id for v in violation_log.entries()] == ["r-1", "r-2"]


def test_batch_append_skips_known_and_repeated(violation_log: ViolationLog) -> None:
    violation_log.append(violation("r-1"))
    written = violation_log.append_many_if_new([violation("r-1"), violation("r-2"), violation("r-2")])
    assert [v.document_id for v in written] == ["r-2"]


def test_find_open_and_last(violation_log: ViolationLog) -> None:
    violation_log.append(violation("r-1"))
    violation_log.append(violation("r-2", kind=ViolationType.MISSING_SCOPE))
    violation_log.append(violation("r-3"))

    assert [v.type for v in violation_log.find_open("reports", "r-2")] == [ViolationType.MISSING_SCOPE]
    assert violation_log.find_open("reports", "r-2", "branchId") == []
    assert [v.document_id for v in violation_log.last(2)] == ["r-2", "r-3"]
    assert violation_log.last(0) == []


def test_round_trip_keeps_identity() -> None:
    v = violation(value={"customerId": "c", "companyId": "d"})
    restored = Violation.from_dict(v.to_dict())
    assert restored.id == v.id
    assert restored.key == v.key
    assert restored.severity is v.severity


def test_missing_log_reads_empty(violation_log: ViolationLog) -> None:
    assert violation_log.entries() == []
    assert violation_log.in_window(30) == []
