"""Tests for creation-time validation."""

from __future__ import annotations

from scopeguard.catalog import Severity, ViolationType
from scopeguard.errors import StoreError
from scopeguard.integrity import IntegrityAuditor, LiveValidator
from scopeguard.models import Record
from scopeguard.store import MemoryStore
from scopeguard.violations import SOURCE_LIVE, ViolationLog


class BrokenLog(ViolationLog):
    def append_if_new(self, violation):
        raise StoreError("log volume is read-only")


def test_valid_record_logs_nothing(memory_store: MemoryStore, catalog, violation_log: ViolationLog) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("reports", "r-2", {"branchId": "north", "buildingId": "b-1"})

    assert validator.on_created("reports", record) == []
    assert violation_log.entries() == []


def test_invalid_record_is_logged_with_live_source(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("reports", "r-2", {"branchId": "north", "buildingId": "b-gone"})

    written = validator.on_created("reports", record)

    assert [v.type for v in written] == [ViolationType.INVALID_REFERENCE]
    logged = violation_log.entries()
    assert len(logged) == 1
    assert logged[0].source == SOURCE_LIVE
    assert logged[0].invalid_value == "b-gone"


def test_redelivered_event_is_not_logged_twice(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("reports", "r-2", {"branchId": "north", "buildingId": "b-gone"})

    validator.on_created("reports", record)
    assert validator.on_created("reports", record) == []
    assert validator.on_created_id("reports", "r-2") == []
    assert len(violation_log.entries()) == 1


def test_changed_value_is_logged_again(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    validator.on_created("reports", memory_store.put("reports", "r-2", {"branchId": "north", "buildingId": "b-gone"}))
    validator.on_created("reports", memory_store.put("reports", "r-2", {"branchId": "north", "buildingId": "b-lost"}))

    assert [v.invalid_value for v in violation_log.entries()] == ["b-gone", "b-lost"]


def test_optional_reference_may_be_absent(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("scheduledVisits", "v-2", {"branchId": "north", "assignedInspectorId": "agent-n"})
    assert validator.on_created("scheduledVisits", record) == []


def test_required_reference_must_be_present(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("scheduledVisits", "v-2", {"branchId": "north"})
    written = validator.on_created("scheduledVisits", record)
    assert [v.type for v in written] == [ViolationType.MISSING_REFERENCE]


def test_uncatalogued_collection_is_ignored(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("companies", "co-2", {"anything": True})
    assert validator.on_created("companies", record) == []


def test_log_failure_never_reaches_caller(memory_store: MemoryStore, catalog, tmp_path) -> None:
    validator = LiveValidator(catalog, memory_store, BrokenLog(tmp_path / "violations.jsonl"))
    record = memory_store.put("reports", "r-2", {"branchId": "north", "buildingId": "b-gone"})
    assert validator.on_created("reports", record) == []


def test_deleted_before_delivery(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    assert validator.on_created_id("reports", "never-written") == []


def test_validate_does_not_log(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    memory_store.put("offers", "o-2", {"branchId": "north", "reportId": "r-gone"})

    result = validator.validate("offers", "o-2")

    assert result is not None
    assert not result.valid
    assert result.to_dict()["issues"][0]["type"] == "invalid-reference"
    assert validator.validate("offers", "o-404") is None
    assert not violation_log.path.exists()


def test_live_and_batch_classify_alike(memory_store: MemoryStore, catalog, violation_log) -> None:
    samples = [
        Record("buildings", "b-7", {"customerId": "cust-1", "companyId": "co-1"}),
        Record("appointments", "a-7", {"branchId": "north", "assignedInspectorId": "client-1"}),
        Record("offers", "o-7", {"branchId": "atlantis"}),
    ]
    for record in samples:
        memory_store.put(record.collection, record.id, record.data)

    validator = LiveValidator(catalog, memory_store, violation_log)
    live = {(v.document_id, v.type) for r in samples for v in validator.check(r).violations}
    batch = {(v.document_id, v.type) for v in IntegrityAuditor(catalog, memory_store).run().violations}
    assert live == batch


def test_building_with_neither_owner_is_critical(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("buildings", "b-3", {"branchId": "north"})

    validator.on_created("buildings", record)

    logged = violation_log.entries()
    assert [v.type for v in logged] == [ViolationType.MISSING_EXCLUSIVE_REFERENCE]
    assert logged[0].severity is Severity.CRITICAL
    assert logged[0].source == SOURCE_LIVE
    assert logged[0].to_dict()["severity"] == "critical"


def test_building_with_both_owners_is_critical(memory_store: MemoryStore, catalog, violation_log) -> None:
    validator = LiveValidator(catalog, memory_store, violation_log)
    record = memory_store.put("buildings", "b-3", {"branchId": "north", "customerId": "cust-1", "companyId": "co-1"})

    validator.on_created("buildings", record)

    logged = violation_log.entries()
    assert [v.type for v in logged] == [ViolationType.AMBIGUOUS_REFERENCE]
    assert logged[0].severity is Severity.CRITICAL
    assert logged[0].source == SOURCE_LIVE
    assert logged[0].invalid_field == "customerId,companyId"
