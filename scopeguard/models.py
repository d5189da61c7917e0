"""Core data models: principals, records and access resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Role tiers, most privileged first."""

    OPERATOR = "operator"
    SCOPED_ADMIN = "scoped-admin"
    SCOPED_AGENT = "scoped-agent"
    EXTERNAL_CLIENT = "external-client"

    @classmethod
    def parse(cls, value: Any) -> Role | None:
        """Parse a role name or one of the legacy platform aliases."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip()
        if not key:
            return None
        alias = ROLE_ALIASES.get(key) or ROLE_ALIASES.get(key.lower())
        if alias is not None:
            return alias
        try:
            return cls(key.lower())
        except ValueError:
            return None


# Role names used by the platform before the tiers were renamed.
ROLE_ALIASES: dict[str, Role] = {
    "superadmin": Role.OPERATOR,
    "branchAdmin": Role.SCOPED_ADMIN,
    "branchadmin": Role.SCOPED_ADMIN,
    "inspector": Role.SCOPED_AGENT,
    "customer": Role.EXTERNAL_CLIENT,
}

SCOPED_ROLES = frozenset({Role.SCOPED_ADMIN, Role.SCOPED_AGENT})


class Scope(Enum):
    """Distinguished scope values.

    Ordinary scopes are plain strings. GLOBAL grants a scoped role access
    across every scope and never compares equal to a string.
    """

    GLOBAL = "global"


ScopeId = str | Scope


class PrincipalSource(str, Enum):
    TOKEN = "token"
    FALLBACK_PROFILE = "fallback-profile"


class Operation(str, Enum):
    READ = "read"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Any) -> Operation | None:
        if isinstance(value, Operation):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Principal:
    """Identity resolved for a single request. Never persisted."""

    id: str
    role: Role
    scope_id: ScopeId | None
    tenant_id: str | None = None
    source: PrincipalSource = PrincipalSource.TOKEN
    fallback_fields: tuple[str, ...] = ()

    @property
    def is_top_tier(self) -> bool:
        return self.role is Role.OPERATOR

    @property
    def is_scoped_role(self) -> bool:
        return self.role in SCOPED_ROLES

    @property
    def has_global_scope(self) -> bool:
        return self.scope_id is Scope.GLOBAL

    @property
    def used_fallback(self) -> bool:
        return self.source is PrincipalSource.FALLBACK_PROFILE

    def to_dict(self) -> dict[str, Any]:
        scope = self.scope_id.value if isinstance(self.scope_id, Scope) else self.scope_id
        return {
            "id": self.id,
            "role": self.role.value,
            "scope_id": scope,
            "tenant_id": self.tenant_id,
            "source": self.source.value,
            "fallback_fields": list(self.fallback_fields),
        }


def is_set(value: Any) -> bool:
    """True when a document field carries a usable value.

    Missing keys, None and empty strings all count as unset.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


@dataclass
class Record:
    """A single document from the store."""

    collection: str
    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)

    def has(self, name: str) -> bool:
        return is_set(self.data.get(name))

    def to_dict(self) -> dict[str, Any]:
        return {"collection": self.collection, "id": self.id, "data": dict(self.data)}


@dataclass(frozen=True)
class ResourceFields:
    """Document field names the access engine reads from a record."""

    scope: str = "branchId"
    owner: str = "customerId"
    tenant: str = "companyId"


@dataclass(frozen=True)
class Resource:
    """What an access decision is made about."""

    collection: str
    id: str | None = None
    scope_id: Any = None
    owner_id: Any = None
    tenant_id: Any = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Record, fields: ResourceFields | None = None) -> Resource:
        f = fields or ResourceFields()
        return cls(
            collection=record.collection,
            id=record.id,
            scope_id=record.data.get(f.scope),
            owner_id=record.data.get(f.owner),
            tenant_id=record.data.get(f.tenant),
            attributes=dict(record.data),
        )
