"""In-process store, used when embedding the engine and in tests."""

from __future__ import annotations

import copy
import threading
from typing import Any, Iterator

from ..errors import StoreError
from ..models import Record


class MemoryStore:
    def __init__(self, data: dict[str, dict[str, dict[str, Any]]] | None = None):
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, dict[str, Any]]] = {
            collection: {rid: dict(doc) for rid, doc in docs.items()}
            for collection, docs in (data or {}).items()
        }

    def collections(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def iter_records(self, collection: str) -> Iterator[Record]:
        with self._lock:
            snapshot = sorted(self._data.get(collection, {}).items())
        for record_id, doc in snapshot:
            yield Record(collection=collection, id=record_id, data=copy.deepcopy(doc))

    def get(self, collection: str, record_id: Any) -> Record | None:
        if not isinstance(record_id, str):
            return None
        with self._lock:
            doc = self._data.get(collection, {}).get(record_id)
            if doc is None:
                return None
            return Record(collection=collection, id=record_id, data=copy.deepcopy(doc))

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._data.get(collection, {}))

    def put(self, collection: str, record_id: str, data: dict[str, Any]) -> Record:
        """Insert or replace a record (fixture helper)."""
        with self._lock:
            self._data.setdefault(collection, {})[record_id] = dict(data)
        return Record(collection=collection, id=record_id, data=dict(data))

    def create(self, record: Record) -> Record:
        with self._lock:
            docs = self._data.setdefault(record.collection, {})
            if record.id in docs:
                raise StoreError(f"Record already exists: {record.collection}/{record.id}")
            docs[record.id] = dict(record.data)
        return record

    def update(
        self,
        collection: str,
        record_id: str,
        set_fields: dict[str, Any] | None = None,
        unset_fields: list[str] | None = None,
    ) -> Record:
        with self._lock:
            doc = self._data.get(collection, {}).get(record_id)
            if doc is None:
                raise StoreError(f"Record not found: {collection}/{record_id}")
            for name in unset_fields or []:
                doc.pop(name, None)
            doc.update(set_fields or {})
            return Record(collection=collection, id=record_id, data=copy.deepcopy(doc))
