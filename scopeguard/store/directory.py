"""
Directory-backed document store.

Layout: <root>/<collection>/<id>.json, one JSON object per record.
Writes go to a hidden temp file in the collection directory and are renamed
into place, so readers and the watcher never observe half-written records.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator

from ..errors import StoreError
from ..models import Record
from .base import is_valid_id

RECORD_SUFFIX = ".json"


class DirectoryStore:
    def __init__(self, root: Path):
        self.root = root.resolve()

    def __repr__(self) -> str:
        return f"DirectoryStore({str(self.root)!r})"

    def _collection_dir(self, collection: str) -> Path | None:
        if not is_valid_id(collection):
            return None
        return self.root / collection

    def _record_path(self, collection: str, record_id: Any) -> Path | None:
        directory = self._collection_dir(collection)
        if directory is None or not is_valid_id(record_id):
            return None
        return directory / f"{record_id}{RECORD_SUFFIX}"

    def _load(self, collection: str, path: Path) -> Record:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError) as e:
            raise StoreError(f"Cannot read {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreError(f"Malformed record {path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Malformed record {path}: top-level value is not an object")
        return Record(collection=collection, id=path.name[: -len(RECORD_SUFFIX)], data=data)

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True, default=str)
                    f.write("\n")
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"Cannot write {path}: {e}") from e

    def collections(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir() and not p.name.startswith("."))

    def iter_records(self, collection: str) -> Iterator[Record]:
        directory = self._collection_dir(collection)
        if directory is None or not directory.is_dir():
            return
        try:
            paths = sorted(directory.glob(f"*{RECORD_SUFFIX}"))
        except OSError as e:
            raise StoreError(f"Cannot list {directory}: {e}") from e
        for path in paths:
            if path.name.startswith("."):
                continue
            try:
                yield self._load(collection, path)
            except FileNotFoundError:
                # Deleted between listing and reading.
                continue

    def get(self, collection: str, record_id: Any) -> Record | None:
        path = self._record_path(collection, record_id)
        if path is None:
            return None
        try:
            return self._load(collection, path)
        except FileNotFoundError:
            return None

    def count(self, collection: str) -> int:
        directory = self._collection_dir(collection)
        if directory is None or not directory.is_dir():
            return 0
        return sum(1 for p in directory.glob(f"*{RECORD_SUFFIX}") if not p.name.startswith("."))

    def create(self, record: Record) -> Record:
        path = self._record_path(record.collection, record.id)
        if path is None:
            raise StoreError(f"Invalid record address {record.collection}/{record.id}")
        if path.exists():
            raise StoreError(f"Record already exists: {record.collection}/{record.id}")
        self._write(path, record.data)
        return record

    def update(
        self,
        collection: str,
        record_id: str,
        set_fields: dict[str, Any] | None = None,
        unset_fields: list[str] | None = None,
    ) -> Record:
        path = self._record_path(collection, record_id)
        if path is None:
            raise StoreError(f"Invalid record address {collection}/{record_id}")
        try:
            record = self._load(collection, path)
        except FileNotFoundError as e:
            raise StoreError(f"Record not found: {collection}/{record_id}") from e
        for name in unset_fields or []:
            record.data.pop(name, None)
        record.data.update(set_fields or {})
        self._write(path, record.data)
        return record

    def collection_of(self, path: Path) -> tuple[str, str] | None:
        """Map a record file path back to (collection, id), or None if outside the layout."""
        try:
            rel = path.resolve().relative_to(self.root)
        except ValueError:
            return None
        if len(rel.parts) != 2 or not rel.name.endswith(RECORD_SUFFIX) or rel.name.startswith("."):
            return None
        collection, record_id = rel.parts[0], rel.name[: -len(RECORD_SUFFIX)]
        if not (is_valid_id(collection) and is_valid_id(record_id)):
            return None
        return collection, record_id
