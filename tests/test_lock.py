"""Tests for the batch run lock."""

from __future__ import annotations

from pathlib import Path

import pytest

from scopeguard.errors import RunLocked
from scopeguard.lock import RunLock


def test_same_scope_is_exclusive(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit", "north"):
        with pytest.raises(RunLocked, match="audit already running"):
            RunLock(tmp_path, "audit", "north").acquire()


def test_lock_released_on_exit(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit") as lock:
        assert lock.path.exists()
    assert not lock.path.exists()
    RunLock(tmp_path, "audit").acquire().release()


def test_different_scopes_run_together(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit", "north"), RunLock(tmp_path, "audit", "south"):
        pass


def test_unscoped_run_blocks_scoped(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit"):
        with pytest.raises(RunLocked):
            RunLock(tmp_path, "audit", "north").acquire()
    assert list(tmp_path.iterdir()) == []


def test_scoped_run_blocks_unscoped(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit", "north"):
        with pytest.raises(RunLocked, match="north"):
            RunLock(tmp_path, "audit").acquire()
        # The refused run left no lockfile of its own behind.
        assert [p.name for p in tmp_path.iterdir()] == ["audit@north.lock"]


def test_other_jobs_do_not_conflict(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit"), RunLock(tmp_path, "repair", "north"):
        pass


def test_scope_named_all_is_not_the_unscoped_run(tmp_path: Path) -> None:
    with RunLock(tmp_path, "audit", "all") as scoped:
        assert scoped.path.name == "audit@all.lock"
        with pytest.raises(RunLocked):
            RunLock(tmp_path, "audit").acquire()
