"""Store protocol shared by the integrity tooling and the identity resolver."""

from __future__ import annotations

import re
from typing import Any, Iterator, Protocol, runtime_checkable

from ..models import Record

# Document ids are opaque but must be usable as a single path component.
_SAFE_ID = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_.\-]*$")


def is_valid_id(value: Any) -> bool:
    """True for a string id that cannot escape its collection."""
    return isinstance(value, str) and bool(_SAFE_ID.match(value)) and ".." not in value


@runtime_checkable
class DocumentStore(Protocol):
    """Schemaless document store: collections of id-addressed records.

    The store enforces no references between collections; that is the job of
    the integrity tooling. All methods raise StoreError when the backing
    storage cannot be read or written.
    """

    def collections(self) -> list[str]:
        ...

    def iter_records(self, collection: str) -> Iterator[Record]:
        """Stream every record of a collection (unknown collection: nothing)."""
        ...

    def get(self, collection: str, record_id: Any) -> Record | None:
        """Fetch one record; None when absent or when the id is not a valid id."""
        ...

    def count(self, collection: str) -> int:
        ...

    def create(self, record: Record) -> Record:
        ...

    def update(
        self,
        collection: str,
        record_id: str,
        set_fields: dict[str, Any] | None = None,
        unset_fields: list[str] | None = None,
    ) -> Record:
        ...
