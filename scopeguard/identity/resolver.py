"""
Two-tier identity resolution.

The verified session token is authoritative. When it lacks a field the
principal needs (role always; scope-id for scoped roles), the profile record
is consulted for the missing fields only. Every use of the profile tier is
flagged on the Principal and emitted as an `identity.fallback` event, and the
tier can be switched off once all tokens carry complete claims.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from ..errors import ConfigurationError, ScopeguardError, StoreError, Unauthenticated
from ..events import EventEnvelope, EventKind, EventSink
from ..models import Principal, PrincipalSource, Role, Scope, ScopeId, is_set
from ..store.base import DocumentStore
from .tokens import TokenVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimNames:
    """Field names shared by token claims and profile records."""

    role: str = "role"
    scope: str = "branchId"
    tenant: str = "companyId"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str]) -> "ClaimNames":
        unknown = set(raw) - {"role", "scope", "tenant"}
        if unknown:
            raise ConfigurationError(f"Unknown identity claim keys: {sorted(unknown)}")
        return cls(**dict(raw))


@dataclass(frozen=True)
class AuthRequest:
    """The parts of an inbound request the resolver looks at."""

    token: str | None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "AuthRequest":
        value = None
        for name, header in headers.items():
            if name.lower() == "authorization":
                value = header
                break
        if not isinstance(value, str):
            return cls(token=None)
        scheme, _, credentials = value.strip().partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            return cls(token=None)
        return cls(token=credentials.strip())


class ProfileReader(Protocol):
    def get_profile(self, principal_id: str) -> dict[str, Any] | None:
        ...


class StoreProfileReader:
    """Read profile records from a collection of the document store."""

    def __init__(self, store: DocumentStore, collection: str = "users"):
        self.store = store
        self.collection = collection

    def get_profile(self, principal_id: str) -> dict[str, Any] | None:
        record = self.store.get(self.collection, principal_id)
        return record.data if record is not None else None


class IdentityResolver:
    def __init__(
        self,
        verifier: TokenVerifier,
        profiles: ProfileReader | None,
        *,
        fallback_enabled: bool = True,
        sink: EventSink | None = None,
        claims: ClaimNames | None = None,
        global_marker: str = "*",
    ):
        self.verifier = verifier
        self.profiles = profiles
        self.fallback_enabled = fallback_enabled and profiles is not None
        self.sink = sink
        self.claims = claims or ClaimNames()
        self.global_marker = global_marker

    def _scope(self, raw: Any) -> ScopeId | None:
        if not is_set(raw) or not isinstance(raw, str):
            return None
        value = raw.strip()
        if value == self.global_marker:
            return Scope.GLOBAL
        return value

    @staticmethod
    def _tenant(raw: Any) -> str | None:
        return raw.strip() if isinstance(raw, str) and raw.strip() else None

    @staticmethod
    def _needs_scope(role: Role | None) -> bool:
        return role is not None and role in (Role.SCOPED_ADMIN, Role.SCOPED_AGENT)

    def resolve(self, request: AuthRequest) -> Principal:
        """
        Derive the effective Principal for one request.

        Raises:
            MalformedToken: token is structurally invalid
            Unauthenticated: no token, token rejected, or a required field
                resolves from no source
        """
        if request.token is None:
            raise Unauthenticated("no session token")
        claims = self.verifier.verify(request.token)
        principal_id = str(claims["sub"]).strip()

        raw_role = claims.get(self.claims.role)
        role = Role.parse(raw_role)
        if is_set(raw_role) and role is None:
            # A present claim is never overridden by the profile.
            raise Unauthenticated(f"unrecognised role claim for {principal_id}")
        scope = self._scope(claims.get(self.claims.scope))
        tenant = self._tenant(claims.get(self.claims.tenant))

        if role is not None and (scope is not None or not self._needs_scope(role)):
            return Principal(id=principal_id, role=role, scope_id=scope, tenant_id=tenant)

        missing = [self.claims.role] if role is None else [self.claims.scope]
        if not self.fallback_enabled:
            raise Unauthenticated(f"token for {principal_id} lacks {', '.join(missing)} and profile fallback is disabled")

        profile = self._load_profile(principal_id)
        if profile is None:
            raise Unauthenticated(f"token for {principal_id} lacks {', '.join(missing)} and no profile supplies it")

        filled: list[str] = []
        if role is None:
            role = Role.parse(profile.get(self.claims.role))
            if role is None:
                raise Unauthenticated(f"no role resolvable for {principal_id}")
            filled.append(self.claims.role)
        if scope is None:
            scope = self._scope(profile.get(self.claims.scope))
            if scope is not None:
                filled.append(self.claims.scope)
            elif self._needs_scope(role):
                raise Unauthenticated(f"no scope resolvable for {principal_id}")
        if tenant is None:
            tenant = self._tenant(profile.get(self.claims.tenant))
            if tenant is not None:
                filled.append(self.claims.tenant)

        principal = Principal(
            id=principal_id,
            role=role,
            scope_id=scope,
            tenant_id=tenant,
            source=PrincipalSource.FALLBACK_PROFILE,
            fallback_fields=tuple(filled),
        )
        self._report_fallback(principal)
        return principal

    def _load_profile(self, principal_id: str) -> dict[str, Any] | None:
        if self.profiles is None:
            raise Unauthenticated(f"no profile source to complete the identity of {principal_id}")
        try:
            profile = self.profiles.get_profile(principal_id)
        except StoreError:
            logger.exception("Profile lookup failed for %s", principal_id)
            return None
        return profile if isinstance(profile, dict) else None

    def _report_fallback(self, principal: Principal) -> None:
        event = EventEnvelope(
            kind=EventKind.IDENTITY_FALLBACK,
            subject=principal.id,
            details={"fields": list(principal.fallback_fields), "role": principal.role.value},
        )
        if self.sink is None:
            logger.warning("identity.fallback %s filled %s from profile", principal.id, list(principal.fallback_fields))
            return
        try:
            self.sink.emit(event)
        except ScopeguardError:
            logger.exception("identity.fallback %s could not be recorded", principal.id)
