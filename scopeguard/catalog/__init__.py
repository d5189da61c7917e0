"""Relationship catalog: declared references between collections."""

from .load import default_catalog, load_catalog, parse_catalog
from .schema import (
    Catalog,
    ExactlyOneOf,
    Optional,
    RelationshipRule,
    Required,
    ScopeRule,
    Severity,
    ViolationType,
)

__all__ = [
    "Catalog",
    "ExactlyOneOf",
    "Optional",
    "RelationshipRule",
    "Required",
    "ScopeRule",
    "Severity",
    "ViolationType",
    "default_catalog",
    "load_catalog",
    "parse_catalog",
]
