from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError
from ..models import Role
from .schema import Catalog, Cardinality, ExactlyOneOf, Optional, RelationshipRule, Required, ScopeRule

DEFAULT_COLLECTIONS = (
    "users",
    "branches",
    "customers",
    "companies",
    "buildings",
    "reports",
    "offers",
    "appointments",
    "scheduledVisits",
    "serviceAgreements",
)

_FIELD_AGENT_ROLES = frozenset({Role.SCOPED_AGENT, Role.SCOPED_ADMIN, Role.OPERATOR})
_OWNER_PAIR = ExactlyOneOf("customerId", "companyId")


def default_catalog() -> Catalog:
    """The relationships of the record-management platform."""
    relationships = (
        RelationshipRule("reports", "buildingId", "buildings", Required()),
        RelationshipRule("offers", "reportId", "reports", Required()),
        RelationshipRule("buildings", "customerId", "customers", _OWNER_PAIR),
        RelationshipRule("buildings", "companyId", "companies", _OWNER_PAIR),
        RelationshipRule("appointments", "assignedInspectorId", "users", Required(), target_roles=_FIELD_AGENT_ROLES),
        RelationshipRule("appointments", "customerId", "customers", Optional()),
        RelationshipRule("scheduledVisits", "buildingId", "buildings", Optional(), description="may precede the building"),
        RelationshipRule("scheduledVisits", "assignedInspectorId", "users", Required(), target_roles=_FIELD_AGENT_ROLES),
        RelationshipRule("serviceAgreements", "customerId", "customers", Optional()),
        RelationshipRule("serviceAgreements", "buildingId", "buildings", Optional()),
    )
    main = frozenset({"main"})
    scoping = (
        ScopeRule("users", required=True, exclude_roles=frozenset({Role.EXTERNAL_CLIENT}), allowed_values=main),
        ScopeRule("customers", required=True, allowed_values=main),
        ScopeRule("buildings", required=False, allowed_values=main),
        ScopeRule("reports", required=True, allowed_values=main),
        ScopeRule("offers", required=True, allowed_values=main),
        ScopeRule("appointments", required=True, allowed_values=main),
        ScopeRule("scheduledVisits", required=True, allowed_values=main),
    )
    return Catalog(collections=DEFAULT_COLLECTIONS, relationships=relationships, scoping=scoping).validate()


def _str(raw: dict[str, Any], key: str, where: str, default: str | None = None) -> str:
    value = raw.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{where}: '{key}' must be a non-empty string")
    return value.strip()


def _roles(raw: Any, where: str) -> frozenset[Role]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, list):
        raise ConfigurationError(f"{where}: roles must be a list")
    roles = set()
    for name in raw:
        role = Role.parse(name)
        if role is None:
            raise ConfigurationError(f"{where}: unknown role {name!r}")
        roles.add(role)
    return frozenset(roles)


def _cardinality(raw: dict[str, Any], where: str) -> Cardinality:
    kind = str(raw.get("cardinality", "required")).strip().lower()
    if kind == "required":
        return Required()
    if kind == "optional":
        return Optional()
    if kind == "exactly-one-of":
        pair = raw.get("pair")
        if not isinstance(pair, list) or len(pair) != 2 or not all(isinstance(p, str) and p for p in pair):
            raise ConfigurationError(f"{where}: exactly-one-of needs 'pair' with two field names")
        return ExactlyOneOf(pair[0], pair[1])
    raise ConfigurationError(f"{where}: unknown cardinality {kind!r}")


def parse_catalog(data: dict[str, Any]) -> Catalog:
    collections: list[str] = []
    for i, raw in enumerate(data.get("collections", [])):
        if isinstance(raw, str):
            collections.append(raw)
        elif isinstance(raw, dict):
            collections.append(_str(raw, "name", f"collections[{i}]"))
        else:
            raise ConfigurationError(f"collections[{i}] must be a name or a table")

    relationships: list[RelationshipRule] = []
    for i, raw in enumerate(data.get("relationships", [])):
        where = f"relationships[{i}]"
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{where} must be a table")
        roles = _roles(raw.get("target_roles"), where)
        relationships.append(
            RelationshipRule(
                source=_str(raw, "source", where),
                field=_str(raw, "field", where),
                target=_str(raw, "target", where),
                cardinality=_cardinality(raw, where),
                target_roles=roles or None,
                description=raw.get("description") if isinstance(raw.get("description"), str) else None,
            )
        )

    scoping: list[ScopeRule] = []
    for i, raw in enumerate(data.get("scoping", [])):
        where = f"scoping[{i}]"
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{where} must be a table")
        allowed = raw.get("allowed_values", [])
        if not isinstance(allowed, list) or not all(isinstance(v, str) for v in allowed):
            raise ConfigurationError(f"{where}: allowed_values must be a list of strings")
        required = raw.get("required", True)
        if not isinstance(required, bool):
            raise ConfigurationError(f"{where}: required must be a boolean")
        scoping.append(
            ScopeRule(
                collection=_str(raw, "collection", where),
                field=_str(raw, "field", where, default="branchId"),
                required=required,
                exclude_roles=_roles(raw.get("exclude_roles"), where),
                allowed_values=frozenset(allowed),
            )
        )

    return Catalog(
        collections=tuple(collections),
        relationships=tuple(relationships),
        scoping=tuple(scoping),
        scope_collection=_str(data, "scope_collection", "catalog", default="branches"),
        role_field=_str(data, "role_field", "catalog", default="role"),
    ).validate()


def load_catalog(path: Path | None = None) -> Catalog:
    """
    Load a Catalog from TOML, or the built-in one when no path is given.

    Raises:
        ConfigurationError: unreadable file or a reference to an undeclared collection
    """
    if path is None:
        return default_catalog()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read catalog {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed catalog {path}: {e}") from e
    return parse_catalog(data)
