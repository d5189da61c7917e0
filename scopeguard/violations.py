"""
Append-only violation log.

Violations are JSON Lines in <state_dir>/violations.jsonl. Each violation line
follows the shared schema {type, collection, documentId, invalidField,
invalidValue, timestamp} plus id, severity, source and rule. Resolving a
violation appends a separate resolution line; readers fold those into
`resolved_at`. Nothing is rewritten or deleted.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

from .catalog.schema import Severity, ViolationType
from .errors import StoreError
from .util import new_ulid, parse_timestamp, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

SOURCE_AUDIT = "audit"
SOURCE_LIVE = "live"


def value_key(value: Any) -> str:
    """Stable comparison key for an offending value of any JSON type."""
    return json.dumps(value, sort_keys=True, default=str)


@dataclass
class Violation:
    type: ViolationType
    collection: str
    document_id: str
    invalid_field: str
    invalid_value: Any = None
    timestamp: str = field(default_factory=utc_now_iso)
    source: str = SOURCE_AUDIT
    rule: str | None = None
    message: str | None = None
    id: str = field(default_factory=new_ulid)
    resolved_at: str | None = None
    resolution_note: str | None = None

    @property
    def severity(self) -> Severity:
        return self.type.severity

    @property
    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    @property
    def slot(self) -> tuple[str, str, str, str]:
        """Where the defect lives: same record, field and kind of defect."""
        return (self.collection, self.document_id, self.invalid_field, self.type.value)

    @property
    def key(self) -> tuple[str, str, str, str, str]:
        return (*self.slot, value_key(self.invalid_value))

    def detected_at(self) -> datetime | None:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        d = {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "collection": self.collection,
            "documentId": self.document_id,
            "invalidField": self.invalid_field,
            "invalidValue": self.invalid_value,
            "timestamp": self.timestamp,
            "source": self.source,
            "rule": self.rule,
        }
        if self.message:
            d["message"] = self.message
        if self.resolved_at:
            d["resolvedAt"] = self.resolved_at
            d["resolutionNote"] = self.resolution_note
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Violation":
        return cls(
            id=str(data.get("id") or new_ulid()),
            type=ViolationType(data["type"]),
            collection=str(data["collection"]),
            document_id=str(data["documentId"]),
            invalid_field=str(data["invalidField"]),
            invalid_value=data.get("invalidValue"),
            timestamp=str(data.get("timestamp") or ""),
            source=str(data.get("source") or SOURCE_AUDIT),
            rule=data.get("rule"),
            message=data.get("message"),
            resolved_at=data.get("resolvedAt"),
            resolution_note=data.get("resolutionNote"),
        )


class ViolationLog:
    """JSON Lines violation log. Appends are serialized per process."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def _write_lines(self, rows: Iterable[dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                for row in rows:
                    f.write(json.dumps(row, default=str) + "\n")
        except OSError as e:
            raise StoreError(f"Cannot append to violation log {self.path}: {e}") from e

    def _read(self) -> list[Violation]:
        if not self.path.exists():
            return []
        by_id: dict[str, Violation] = {}
        skipped = 0
        try:
            with self.path.open("r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                        if data.get("kind") == "resolution":
                            target = by_id.get(str(data.get("violationId")))
                            if target is not None and target.resolved_at is None:
                                target.resolved_at = data.get("resolvedAt")
                                target.resolution_note = data.get("note")
                            continue
                        violation = Violation.from_dict(data)
                    except (json.JSONDecodeError, KeyError, ValueError, AttributeError):
                        skipped += 1
                        continue
                    by_id[violation.id] = violation
        except OSError as e:
            raise StoreError(f"Cannot read violation log {self.path}: {e}") from e
        if skipped:
            logger.warning("Skipped %d malformed line(s) in %s", skipped, self.path)
        return list(by_id.values())

    def entries(self) -> list[Violation]:
        """All violations, oldest first, with resolutions folded in."""
        with self._lock:
            return self._read()

    def open_violations(self) -> list[Violation]:
        return [v for v in self.entries() if v.is_open]

    def in_window(self, days: int, *, now: datetime | None = None, source: str | None = None) -> list[Violation]:
        """Violations detected within the trailing window."""
        cutoff = (now or utc_now()) - timedelta(days=days)
        out = []
        for v in self.entries():
            detected = v.detected_at()
            if detected is None or detected < cutoff:
                continue
            if source is not None and v.source != source:
                continue
            out.append(v)
        return out

    def last(self, n: int) -> list[Violation]:
        return self.entries()[-n:] if n > 0 else []

    def append(self, violation: Violation) -> Violation:
        with self._lock:
            self._write_lines([violation.to_dict()])
        return violation

    def append_if_new(self, violation: Violation) -> bool:
        """
        Append unless the most recent entry for the same record, field and
        defect type is still open with the same offending value.

        Returns True when a line was written.
        """
        with self._lock:
            latest: Violation | None = None
            for existing in self._read():
                if existing.slot == violation.slot:
                    latest = existing
            if latest is not None and latest.is_open and latest.key == violation.key:
                return False
            self._write_lines([violation.to_dict()])
            return True

    def append_many_if_new(self, violations: Iterable[Violation]) -> list[Violation]:
        """Batch form of append_if_new; returns the violations actually written."""
        with self._lock:
            latest: dict[tuple, Violation] = {}
            for existing in self._read():
                latest[existing.slot] = existing
            written = []
            for v in violations:
                prev = latest.get(v.slot)
                if prev is not None and prev.is_open and prev.key == v.key:
                    continue
                written.append(v)
                latest[v.slot] = v
            self._write_lines(v.to_dict() for v in written)
            return written

    def resolve(self, violation_ids: Iterable[str], note: str, *, resolved_at: str | None = None) -> int:
        """Append resolution lines for open violations; returns how many were resolved."""
        stamp = resolved_at or utc_now_iso()
        with self._lock:
            open_ids = {v.id for v in self._read() if v.is_open}
            rows = [
                {"kind": "resolution", "violationId": vid, "resolvedAt": stamp, "note": note}
                for vid in dict.fromkeys(violation_ids)
                if vid in open_ids
            ]
            self._write_lines(rows)
            return len(rows)

    def find_open(self, collection: str, document_id: str, invalid_field: str | None = None) -> list[Violation]:
        return [
            v
            for v in self.open_violations()
            if v.collection == collection
            and v.document_id == document_id
            and (invalid_field is None or v.invalid_field == invalid_field)
        ]

