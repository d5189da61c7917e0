"""Tests for the store watcher feeding live validation."""

from __future__ import annotations

import json

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileDeletedEvent, FileMovedEvent

from scopeguard.integrity import LiveValidator
from scopeguard.store import DirectoryStore
from scopeguard.violations import ViolationLog
from scopeguard.watcher import StoreEventHandler


class Clock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def results() -> list:
    return []


@pytest.fixture
def handler(directory_store: DirectoryStore, catalog, violation_log: ViolationLog, clock: Clock, results: list):
    validator = LiveValidator(catalog, directory_store, violation_log)
    return StoreEventHandler(
        directory_store,
        validator,
        lambda collection, record_id, written: results.append((collection, record_id, len(written))),
        debounce_seconds=0.5,
        clock=clock,
    )


def write_record(store: DirectoryStore, collection: str, record_id: str, data: dict) -> str:
    path = store.root / collection / f"{record_id}.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_creation_is_validated_after_debounce(handler, directory_store, clock, results, violation_log) -> None:
    path = write_record(directory_store, "reports", "r-2", {"branchId": "north", "buildingId": "b-gone"})
    handler.on_created(FileCreatedEvent(path))

    assert handler.flush_pending() == 0
    clock.now += 1
    assert handler.flush_pending() == 1

    assert results == [("reports", "r-2", 1)]
    assert [v.document_id for v in violation_log.entries()] == ["r-2"]


def test_valid_creation_logs_nothing(handler, directory_store, clock, results, violation_log) -> None:
    path = write_record(directory_store, "reports", "r-2", {"branchId": "north", "buildingId": "b-1"})
    handler.on_created(FileCreatedEvent(path))
    clock.now += 1
    handler.flush_pending()

    assert results == [("reports", "r-2", 0)]
    assert violation_log.entries() == []


def test_atomic_write_counts_as_creation(handler, directory_store, clock, results) -> None:
    tmp = directory_store.root / "reports" / ".tmp123.tmp"
    tmp.write_text(json.dumps({"branchId": "north"}), encoding="utf-8")
    handler.on_created(FileCreatedEvent(str(tmp)))
    final = directory_store.root / "reports" / "r-2.json"
    tmp.replace(final)
    handler.on_moved(FileMovedEvent(str(tmp), str(final)))

    clock.now += 1
    assert handler.flush_pending() == 1
    assert results == [("reports", "r-2", 1)]


def test_updates_are_not_creations(handler, directory_store, clock, results) -> None:
    existing = directory_store.root / "reports" / "r-1.json"
    handler.on_created(FileCreatedEvent(str(existing)))
    handler.on_moved(FileMovedEvent(str(directory_store.root / "reports" / ".tmp9.tmp"), str(existing)))

    clock.now += 1
    assert handler.flush_pending() == 0
    assert results == []


def test_repeated_events_validate_once(handler, directory_store, clock, results) -> None:
    path = write_record(directory_store, "offers", "o-2", {"branchId": "north", "reportId": "r-1"})
    handler.on_created(FileCreatedEvent(path))
    handler.on_created(FileCreatedEvent(path))
    clock.now += 1
    handler.flush_pending()
    handler.flush_pending()
    assert results == [("offers", "o-2", 0)]


def test_deleted_before_flush(handler, directory_store, clock, results) -> None:
    path = write_record(directory_store, "reports", "r-2", {"branchId": "north"})
    handler.on_created(FileCreatedEvent(path))
    (directory_store.root / "reports" / "r-2.json").unlink()
    handler.on_deleted(FileDeletedEvent(path))

    clock.now += 1
    assert handler.flush_pending() == 0
    assert results == []


def test_recreated_record_is_a_creation(handler, directory_store, clock, results) -> None:
    path = str(directory_store.root / "reports" / "r-1.json")
    (directory_store.root / "reports" / "r-1.json").unlink()
    handler.on_deleted(FileDeletedEvent(path))
    write_record(directory_store, "reports", "r-1", {"branchId": "north", "buildingId": "b-gone"})
    handler.on_created(FileCreatedEvent(path))

    clock.now += 1
    assert handler.flush_pending() == 1
    assert results == [("reports", "r-1", 1)]


def test_ignores_directories_and_foreign_files(handler, directory_store, clock) -> None:
    handler.on_created(DirCreatedEvent(str(directory_store.root / "newcollection")))
    handler.on_created(FileCreatedEvent(str(directory_store.root / "README.md")))
    handler.on_created(FileCreatedEvent(str(directory_store.root / "reports" / "notes.txt")))
    assert handler.pending == {}


def test_events_during_flush_are_safe(directory_store, catalog, violation_log, clock) -> None:
    validator = LiveValidator(catalog, directory_store, violation_log)
    seen: list[tuple[str, int]] = []
    paths: dict[str, str] = {}

    def on_result(collection: str, record_id: str, written: list) -> None:
        seen.append((record_id, len(written)))
        if record_id == "r-8":
            # The observer thread reports a delete and a new record mid-flush.
            (directory_store.root / "reports" / "r-9.json").unlink()
            handler.on_deleted(FileDeletedEvent(paths["r-9"]))
            paths["r-10"] = write_record(directory_store, "reports", "r-10", {"branchId": "north", "buildingId": "b-gone"})
            handler.on_created(FileCreatedEvent(paths["r-10"]))

    handler = StoreEventHandler(directory_store, validator, on_result, debounce_seconds=0.5, clock=clock)
    for record_id in ("r-8", "r-9"):
        paths[record_id] = write_record(directory_store, "reports", record_id, {"branchId": "north", "buildingId": "b-gone"})
        handler.on_created(FileCreatedEvent(paths[record_id]))
    clock.now += 1

    assert handler.flush_pending() == 2
    assert seen == [("r-8", 1), ("r-9", 0)]
    assert [v.document_id for v in violation_log.entries()] == ["r-8"]

    clock.now += 1
    assert handler.flush_pending() == 1
    assert seen[-1] == ("r-10", 1)
