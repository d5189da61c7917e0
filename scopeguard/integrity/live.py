"""
Live Validator: catalog checks for a single record at creation time.

Runs after the write it observes has committed, so it can neither block nor
roll it back; findings go to the violation log with source=live. Delivery is
at-least-once, and append_if_new keeps redelivered events from duplicating a
violation unless the offending value changed.

Only creations are checked. Updates that break a reference are not seen until
the next batch audit.
"""

from __future__ import annotations

import logging

from ..catalog.schema import Catalog
from ..errors import ScopeguardError
from ..models import Record
from ..store.base import DocumentStore
from ..violations import SOURCE_LIVE, Violation, ViolationLog
from .checks import CheckResult, RecordChecker, StoreLookup

logger = logging.getLogger(__name__)


class LiveValidator:
    def __init__(self, catalog: Catalog, store: DocumentStore, log: ViolationLog):
        self.catalog = catalog
        self.store = store
        self.log = log
        self._checked = set(catalog.checked_collections())

    def check(self, record: Record) -> CheckResult:
        """Run the catalog checks against one record without recording anything."""
        checker = RecordChecker(self.catalog, StoreLookup(self.store, self.catalog.role_field), source=SOURCE_LIVE)
        return checker.check(record)

    def validate(self, collection: str, record_id: str) -> CheckResult | None:
        """On-demand check of a stored record; None when it does not exist."""
        record = self.store.get(collection, record_id)
        if record is None:
            return None
        return self.check(record)

    def on_created(self, collection: str, record: Record) -> list[Violation]:
        """
        Handle one creation event. Never raises into the caller.

        Returns the violations newly written to the log.
        """
        if collection not in self._checked:
            logger.debug("No catalog checks for %s/%s", collection, record.id)
            return []
        try:
            result = self.check(record)
            written = [v for v in result.violations if self.log.append_if_new(v)]
        except ScopeguardError:
            logger.exception("Live validation of %s/%s failed", collection, record.id)
            return []
        if result.violations:
            logger.warning(
                "Live validation: %s/%s has %d issue(s) (%s), %d new",
                collection,
                record.id,
                len(result.violations),
                ", ".join(sorted({v.type.value for v in result.violations})),
                len(written),
            )
        else:
            logger.debug("Live validation: %s/%s passed", collection, record.id)
        return written

    def on_created_id(self, collection: str, record_id: str) -> list[Violation]:
        """Creation event that carries only the record address."""
        try:
            record = self.store.get(collection, record_id)
        except ScopeguardError:
            logger.exception("Cannot load created record %s/%s", collection, record_id)
            return []
        if record is None:
            logger.debug("Created record %s/%s is gone", collection, record_id)
            return []
        return self.on_created(collection, record)
