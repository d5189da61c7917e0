"""Identity resolution: signed token first, profile record as flagged fallback."""

from __future__ import annotations

from ..config import Settings
from ..errors import ConfigurationError
from ..events import EventLogSink, EventSink
from ..secrets import resolve_secret
from ..store.base import DocumentStore
from .resolver import AuthRequest, ClaimNames, IdentityResolver, ProfileReader, StoreProfileReader
from .tokens import JwtTokenVerifier, TokenVerifier

__all__ = [
    "AuthRequest",
    "ClaimNames",
    "IdentityResolver",
    "JwtTokenVerifier",
    "ProfileReader",
    "StoreProfileReader",
    "TokenVerifier",
    "build_resolver",
]


def build_resolver(settings: Settings, store: DocumentStore, sink: EventSink | None = None) -> IdentityResolver:
    """Wire a resolver from settings: JWT verifier, store-backed profiles, event-log sink."""
    token = settings.identity.token
    if not token.secret:
        raise ConfigurationError("identity.token.secret is not configured (e.g. env:SCOPEGUARD_TOKEN_SECRET)")
    verifier = JwtTokenVerifier(
        resolve_secret(token.secret),
        algorithms=token.algorithms,
        audience=token.audience,
        issuer=token.issuer,
    )
    return IdentityResolver(
        verifier,
        StoreProfileReader(store, settings.identity.profile_collection),
        fallback_enabled=settings.identity.fallback_enabled,
        sink=sink if sink is not None else EventLogSink(settings.events_log_path),
        claims=ClaimNames.from_mapping(settings.identity.claims),
        global_marker=settings.identity.global_scope_marker,
    )
