"""
Structured telemetry events.

This module provides:
- EventEnvelope dataclass for telemetry events (identity fallback)
- Append-only event logging to <state_dir>/events.log
- EventLogSink, the default sink handed to the identity resolver
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from .errors import StoreError
from .util import utc_now_iso

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    IDENTITY_FALLBACK = "identity.fallback"


@dataclass
class EventEnvelope:
    """A single telemetry event."""

    kind: EventKind
    subject: str  # principal id or record address
    timestamp: str = field(default_factory=utc_now_iso)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "subject": self.subject,
        }
        if self.details:
            d["details"] = self.details
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "EventEnvelope":
        return cls(
            kind=EventKind(data["kind"]),
            subject=data.get("subject", ""),
            timestamp=data["timestamp"],
            details=data.get("details", {}),
        )


class EventSink(Protocol):
    def emit(self, event: EventEnvelope) -> None:
        ...


_write_lock = threading.Lock()


def log_event(log_path: Path, event: EventEnvelope) -> EventEnvelope:
    """Append one event as a JSON line."""
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with _write_lock, log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), default=str) + "\n")
    except OSError as e:
        raise StoreError(f"Cannot append to event log {log_path}: {e}") from e
    return event


def read_events(log_path: Path, last_n: int | None = None, kind: EventKind | None = None) -> list[EventEnvelope]:
    if not log_path.exists():
        return []
    events = []
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = EventEnvelope.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue  # Skip malformed lines
            if kind is None or event.kind is kind:
                events.append(event)
    if last_n is not None:
        return events[-last_n:]
    return events


class EventLogSink:
    """Write events to the JSON Lines event log and mirror them as WARNINGs."""

    def __init__(self, log_path: Path):
        self.log_path = log_path

    def emit(self, event: EventEnvelope) -> None:
        logger.warning("%s %s %s", event.kind.value, event.subject, json.dumps(event.details, sort_keys=True))
        log_event(self.log_path, event)


class MemorySink:
    """Collect events in memory (embedding and tests)."""

    def __init__(self) -> None:
        self.events: list[EventEnvelope] = []

    def emit(self, event: EventEnvelope) -> None:
        self.events.append(event)
