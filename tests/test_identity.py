"""Tests for token verification and two-tier identity resolution."""

from __future__ import annotations

import pytest

from scopeguard.config import load_settings
from scopeguard.errors import ConfigurationError, MalformedToken, StoreError, Unauthenticated
from scopeguard.events import EventKind, MemorySink, read_events
from scopeguard.identity import AuthRequest, IdentityResolver, JwtTokenVerifier, StoreProfileReader, build_resolver
from scopeguard.models import PrincipalSource, Role, Scope
from scopeguard.store import MemoryStore

from conftest import TEST_SECRET


def _resolver(store: MemoryStore, *, fallback: bool = True, sink: MemorySink | None = None) -> IdentityResolver:
    return IdentityResolver(
        JwtTokenVerifier(TEST_SECRET),
        StoreProfileReader(store),
        fallback_enabled=fallback,
        sink=sink,
    )


class _FailingProfiles:
    def get_profile(self, principal_id: str):
        raise StoreError("profile store offline")


class TestTokenVerification:
    def test_valid_token_returns_claims(self, token_factory) -> None:
        claims = JwtTokenVerifier(TEST_SECRET).verify(token_factory("u-1", role="operator"))
        assert claims["sub"] == "u-1"
        assert claims["role"] == "operator"

    def test_wrong_signature_is_unauthenticated(self, token_factory) -> None:
        token = token_factory("u-1", secret="another-secret-0123456789abcdefgh", role="operator")
        with pytest.raises(Unauthenticated):
            JwtTokenVerifier(TEST_SECRET).verify(token)

    def test_garbage_is_malformed(self) -> None:
        with pytest.raises(MalformedToken):
            JwtTokenVerifier(TEST_SECRET).verify("not-a-token")

    def test_missing_subject_is_malformed(self) -> None:
        import jwt

        token = jwt.encode({"role": "operator"}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(MalformedToken):
            JwtTokenVerifier(TEST_SECRET).verify(token)

    def test_expired_token_is_unauthenticated(self, token_factory) -> None:
        with pytest.raises(Unauthenticated):
            JwtTokenVerifier(TEST_SECRET).verify(token_factory("u-1", role="operator", exp=1))

    def test_empty_token_is_unauthenticated(self) -> None:
        with pytest.raises(Unauthenticated):
            JwtTokenVerifier(TEST_SECRET).verify("  ")

    def test_repr_hides_key(self) -> None:
        assert TEST_SECRET not in repr(JwtTokenVerifier(TEST_SECRET))


class TestAuthRequest:
    def test_bearer_header(self) -> None:
        assert AuthRequest.from_headers({"Authorization": "Bearer abc.def"}).token == "abc.def"

    def test_header_name_is_case_insensitive(self) -> None:
        assert AuthRequest.from_headers({"authorization": "bearer xyz"}).token == "xyz"

    def test_other_scheme_yields_no_token(self) -> None:
        assert AuthRequest.from_headers({"Authorization": "Basic dXNlcjpwYXNz"}).token is None

    def test_missing_header(self) -> None:
        assert AuthRequest.from_headers({}).token is None


class TestResolveFromToken:
    def test_complete_claims_never_touch_profile(self, memory_store: MemoryStore, token_factory) -> None:
        sink = MemorySink()
        principal = _resolver(memory_store, sink=sink).resolve(
            AuthRequest(token_factory("admin-n", role="scoped-admin", branchId="south"))
        )
        assert principal.role is Role.SCOPED_ADMIN
        # The profile says north; the token wins.
        assert principal.scope_id == "south"
        assert principal.source is PrincipalSource.TOKEN
        assert not principal.used_fallback
        assert sink.events == []

    def test_operator_needs_no_scope(self, token_factory) -> None:
        principal = _resolver(MemoryStore(), fallback=False).resolve(AuthRequest(token_factory("op-9", role="operator")))
        assert principal.is_top_tier
        assert principal.scope_id is None

    def test_global_marker_maps_to_global_scope(self, token_factory) -> None:
        principal = _resolver(MemoryStore()).resolve(
            AuthRequest(token_factory("agent-x", role="scoped-agent", branchId="*"))
        )
        assert principal.scope_id is Scope.GLOBAL
        assert principal.has_global_scope

    def test_legacy_role_alias(self, token_factory) -> None:
        principal = _resolver(MemoryStore()).resolve(
            AuthRequest(token_factory("i-1", role="inspector", branchId="north"))
        )
        assert principal.role is Role.SCOPED_AGENT

    def test_external_client_carries_tenant(self, token_factory) -> None:
        principal = _resolver(MemoryStore()).resolve(
            AuthRequest(token_factory("client-1", role="external-client", companyId="co-1"))
        )
        assert principal.role is Role.EXTERNAL_CLIENT
        assert principal.tenant_id == "co-1"

    def test_unrecognised_role_claim_is_not_overridden(self, memory_store: MemoryStore, token_factory) -> None:
        with pytest.raises(Unauthenticated):
            _resolver(memory_store).resolve(AuthRequest(token_factory("admin-n", role="wizard", branchId="north")))

    def test_no_token(self, memory_store: MemoryStore) -> None:
        with pytest.raises(Unauthenticated):
            _resolver(memory_store).resolve(AuthRequest(token=None))


class TestProfileFallback:
    def test_missing_scope_filled_from_profile(self, memory_store: MemoryStore, token_factory) -> None:
        sink = MemorySink()
        principal = _resolver(memory_store, sink=sink).resolve(
            AuthRequest(token_factory("admin-n", role="scoped-admin"))
        )
        assert principal.scope_id == "north"
        assert principal.source is PrincipalSource.FALLBACK_PROFILE
        assert principal.fallback_fields == ("branchId",)

        assert len(sink.events) == 1
        event = sink.events[0]
        assert event.kind is EventKind.IDENTITY_FALLBACK
        assert event.subject == "admin-n"
        assert event.details["fields"] == ["branchId"]

    def test_missing_role_filled_from_profile(self, memory_store: MemoryStore, token_factory) -> None:
        sink = MemorySink()
        principal = _resolver(memory_store, sink=sink).resolve(AuthRequest(token_factory("client-1")))
        assert principal.role is Role.EXTERNAL_CLIENT
        assert principal.tenant_id == "co-1"
        assert set(principal.fallback_fields) == {"role", "companyId"}
        assert len(sink.events) == 1

    def test_fallback_disabled(self, memory_store: MemoryStore, token_factory) -> None:
        with pytest.raises(Unauthenticated):
            _resolver(memory_store, fallback=False).resolve(AuthRequest(token_factory("admin-n", role="scoped-admin")))

    def test_no_profile(self, memory_store: MemoryStore, token_factory) -> None:
        with pytest.raises(Unauthenticated):
            _resolver(memory_store).resolve(AuthRequest(token_factory("ghost", role="scoped-agent")))

    def test_profile_without_scope_fails_closed(self, token_factory) -> None:
        store = MemoryStore({"users": {"u-2": {"role": "scoped-agent"}}})
        with pytest.raises(Unauthenticated):
            _resolver(store).resolve(AuthRequest(token_factory("u-2")))

    def test_profile_store_error_fails_closed(self, token_factory) -> None:
        resolver = IdentityResolver(JwtTokenVerifier(TEST_SECRET), _FailingProfiles())
        with pytest.raises(Unauthenticated):
            resolver.resolve(AuthRequest(token_factory("admin-n", role="scoped-admin")))

    def test_no_profile_source_fails_closed(self, token_factory) -> None:
        resolver = IdentityResolver(JwtTokenVerifier(TEST_SECRET), None)
        assert resolver.fallback_enabled is False
        # Switched back on by hand: still no profile to consult.
        resolver.fallback_enabled = True
        with pytest.raises(Unauthenticated, match="no profile source"):
            resolver.resolve(AuthRequest(token_factory("admin-n", role="scoped-admin")))


class TestBuildResolver:
    def test_requires_secret(self, tmp_path, memory_store: MemoryStore) -> None:
        settings = load_settings(cwd=tmp_path, env={})
        with pytest.raises(ConfigurationError):
            build_resolver(settings, memory_store)

    def test_unresolvable_secret(self, tmp_path, memory_store: MemoryStore, monkeypatch) -> None:
        monkeypatch.delenv("SCOPEGUARD_MISSING_SECRET", raising=False)
        settings = load_settings(cwd=tmp_path, env={})
        settings.identity.token.secret = "env:SCOPEGUARD_MISSING_SECRET"
        with pytest.raises(ConfigurationError):
            build_resolver(settings, memory_store)

    def test_fallback_events_go_to_event_log(self, settings, memory_store: MemoryStore, token_factory) -> None:
        resolver = build_resolver(settings, memory_store)
        resolver.resolve(AuthRequest(token_factory("admin-n", role="scoped-admin")))

        events = read_events(settings.events_log_path)
        assert [e.subject for e in events] == ["admin-n"]
        assert events[0].kind is EventKind.IDENTITY_FALLBACK
