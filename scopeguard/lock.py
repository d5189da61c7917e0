"""Run lock preventing overlapping batch jobs against the same scope."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path

from .errors import RunLocked, StoreError
from .util import utc_now_iso


def _lock_name(job: str, scope: str | None) -> str:
    if scope is None:
        return f"{job}.lock"
    return f"{job}@" + re.sub(r"[^A-Za-z0-9_.-]", "_", scope) + ".lock"


class RunLock:
    """Exclusive lockfile under <state_dir>/locks, created with O_EXCL.

    An unscoped run covers every scope, so it conflicts with any scoped run
    of the same job and the reverse. Two different scopes do not conflict.

    A lock left behind by a crashed run must be removed by hand; the error
    names the file and the holder recorded in it.
    """

    def __init__(self, lock_dir: Path, job: str, scope: str | None = None):
        self.lock_dir = lock_dir
        self.path = lock_dir / _lock_name(job, scope)
        self.job = job
        self.scope = scope
        self._held = False

    def _locked(self, path: Path) -> RunLocked:
        holder = ""
        try:
            holder = path.read_text(encoding="utf-8").strip()
        except OSError:
            pass
        return RunLocked(f"{self.job} already running ({path}: {holder})")

    def _overlapping(self) -> list[Path]:
        if self.scope is None:
            return sorted(p for p in self.lock_dir.glob(f"{self.job}@*.lock") if p != self.path)
        unscoped = self.lock_dir / _lock_name(self.job, None)
        return [unscoped] if unscoped.exists() else []

    def acquire(self) -> "RunLock":
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as e:
            raise self._locked(self.path) from e
        except OSError as e:
            raise StoreError(f"Cannot create lock {self.path}: {e}") from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps({"pid": os.getpid(), "started": utc_now_iso()}))

        # Checked after our own file exists, so two overlapping runs starting
        # together both back off rather than both proceeding.
        overlapping = self._overlapping()
        if overlapping:
            self.path.unlink(missing_ok=True)
            raise self._locked(overlapping[0])
        self._held = True
        return self

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def __enter__(self) -> "RunLock":
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()
