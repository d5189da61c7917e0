"""
File system watcher feeding the Live Validator.

This module provides:
- Watchdog-based monitoring of a DirectoryStore
- Creation detection, including records written by atomic rename
- Debounced delivery to LiveValidator.on_created

Writes to records that already exist (including atomic-rename updates) are
not creations and are ignored.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileMovedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .integrity.live import LiveValidator
from .store.directory import RECORD_SUFFIX, DirectoryStore
from .violations import Violation

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str, str, list[Violation]], None]


class StoreEventHandler(FileSystemEventHandler):
    """
    Turns record-file creations into live validation calls.

    Key behaviors:
    - Debounces bursts (a create followed by the writer's own modifications)
    - Treats a move into a record path that did not exist before as a creation
    - Remembers known record paths so updates are never mistaken for creations
    """

    DEBOUNCE_SECONDS = 0.5

    def __init__(
        self,
        store: DirectoryStore,
        validator: LiveValidator,
        on_result: ResultCallback | None = None,
        *,
        debounce_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.store = store
        self.validator = validator
        self.on_result = on_result
        self.debounce_seconds = self.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.clock = clock

        # Observer thread and the flush loop both touch pending and known.
        self._lock = threading.Lock()
        # Pending creations, path -> first-seen time
        self.pending: dict[str, float] = {}
        self.known: set[str] = set()
        for collection in store.collections():
            for path in (store.root / collection).glob(f"*{RECORD_SUFFIX}"):
                self.known.add(str(path.resolve()))

    def _address(self, path: str) -> tuple[str, str] | None:
        return self.store.collection_of(Path(path))

    def _note_creation(self, path: str) -> None:
        if self._address(path) is None:
            return
        key = str(Path(path).resolve())
        with self._lock:
            if key in self.known:
                return
            self.known.add(key)
            self.pending.setdefault(key, self.clock())

    def on_created(self, event: FileCreatedEvent) -> None:
        if event.is_directory:
            return
        self._note_creation(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:
        if event.is_directory:
            return
        src = str(Path(event.src_path).resolve())
        with self._lock:
            if src in self.known:
                # A record renamed away from its old address.
                self.known.discard(src)
                self.pending.pop(src, None)
        self._note_creation(event.dest_path)

    def on_deleted(self, event: FileDeletedEvent) -> None:
        if event.is_directory:
            return
        key = str(Path(event.src_path).resolve())
        with self._lock:
            self.known.discard(key)
            # Created then deleted before flush: nothing to validate.
            self.pending.pop(key, None)

    def flush_pending(self) -> int:
        """Validate creations that have passed the debounce window. Returns how many ran."""
        now = self.clock()
        with self._lock:
            ready = [p for p, seen in list(self.pending.items()) if now - seen >= self.debounce_seconds]
            for path in ready:
                self.pending.pop(path, None)
        # Validate outside the lock; a record deleted meanwhile is skipped by on_created_id.
        for path in ready:
            address = self._address(path)
            if address is None:
                continue
            collection, record_id = address
            written = self.validator.on_created_id(collection, record_id)
            if self.on_result:
                self.on_result(collection, record_id, written)
        return len(ready)


def watch_store(
    store: DirectoryStore,
    validator: LiveValidator,
    on_result: ResultCallback | None = None,
) -> tuple[Observer, StoreEventHandler]:
    """
    Start watching a directory store for record creations.

    Returns:
        Tuple of (observer, handler) - caller should call observer.stop() to stop watching
    """
    handler = StoreEventHandler(store, validator, on_result)
    store.root.mkdir(parents=True, exist_ok=True)
    observer = Observer()
    observer.schedule(handler, str(store.root), recursive=True)
    observer.start()
    logger.info("Watching %s for new records", store.root)
    return observer, handler


def run_watch_loop(
    store: DirectoryStore,
    validator: LiveValidator,
    on_result: ResultCallback | None = None,
) -> None:
    """
    Run the watch loop until interrupted.

    Blocks, flushing debounced creations periodically.
    """
    observer, handler = watch_store(store, validator, on_result)
    try:
        while True:
            time.sleep(0.25)
            handler.flush_pending()
    except KeyboardInterrupt:
        observer.stop()
    observer.join()
