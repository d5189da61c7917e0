"""
Operations journal for repair writes.

Every write the repairer attempts is recorded, whether it succeeded or not,
so a batch never leaves an unlogged change behind. The journal is append-only
JSON Lines at <state_dir>/operations.log.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import StoreError
from .util import utc_now_iso


@dataclass
class JournalEntry:
    """A single journaled write."""

    timestamp: str
    operation: str  # e.g. "clear-reference", "assign-scope"
    collection: str
    document_id: str
    outcome: str  # "pending", "applied" or "failed"
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "collection": self.collection,
            "documentId": self.document_id,
            "outcome": self.outcome,
            "before": self.before,
            "after": self.after,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JournalEntry":
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            collection=data["collection"],
            document_id=data["documentId"],
            outcome=data["outcome"],
            before=data.get("before", {}),
            after=data.get("after", {}),
            metadata=data.get("metadata", {}),
        )


def log_operation(
    journal_path: Path,
    operation: str,
    collection: str,
    document_id: str,
    outcome: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> JournalEntry:
    """
    Append one write outcome to the journal.

    Args:
        journal_path: Path of operations.log
        operation: Repair kind
        collection, document_id: Address of the written record
        outcome: "pending" (before the write), "applied" or "failed"
        before/after: Field values around the write
        metadata: Additional context (violation ids, error text)

    Raises:
        StoreError: if the journal cannot be appended to
    """
    entry = JournalEntry(
        timestamp=utc_now_iso(),
        operation=operation,
        collection=collection,
        document_id=document_id,
        outcome=outcome,
        before=before or {},
        after=after or {},
        metadata=metadata or {},
    )
    try:
        journal_path.parent.mkdir(parents=True, exist_ok=True)
        with journal_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")
    except OSError as e:
        raise StoreError(f"Cannot append to operations journal {journal_path}: {e}") from e
    return entry


def read_journal(journal_path: Path, last_n: int | None = None) -> list[JournalEntry]:
    """
    Read entries from the journal (oldest first).

    Args:
        journal_path: Path of operations.log
        last_n: If specified, return only the last N entries
    """
    if not journal_path.exists():
        return []

    entries = []
    with journal_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    entries.append(JournalEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError):
                    continue  # Skip malformed lines

    if last_n is not None:
        return entries[-last_n:]
    return entries


def format_journal_entry(entry: JournalEntry) -> str:
    """Format a journal entry for human-readable display."""
    lines = [f"[{entry.timestamp}] {entry.operation} {entry.collection}/{entry.document_id}: {entry.outcome}"]
    for name in sorted(set(entry.before) | set(entry.after)):
        lines.append(f"  {name}: {entry.before.get(name)!r} -> {entry.after.get(name)!r}")
    if entry.metadata:
        for key, value in entry.metadata.items():
            lines.append(f"  {key}: {value}")
    return "\n".join(lines)
