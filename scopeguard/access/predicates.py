"""
Access predicates over (principal, resource).

Every predicate is total: it returns a bool for any well-formed principal
and resource, whatever the record fields happen to contain. Scope, owner and
tenant values only ever match as non-empty strings.
"""

from __future__ import annotations

from typing import Any, Callable

from ..models import Principal, Resource, Role, is_set

PredicateFn = Callable[[Principal, Resource], bool]


def _same(a: Any, b: Any) -> bool:
    return isinstance(a, str) and isinstance(b, str) and is_set(a) and a == b


def predicate_is_top_tier(principal: Principal, resource: Resource) -> bool:
    return principal.is_top_tier


def predicate_in_scope(principal: Principal, resource: Resource) -> bool:
    """Scoped role whose scope matches the resource's, or whose scope is global."""
    if not principal.is_scoped_role:
        return False
    return principal.has_global_scope or _same(resource.scope_id, principal.scope_id)


def predicate_scoped_in_scope(principal: Principal, resource: Resource) -> bool:
    """The standard gate: top tier, or a scoped role within its scope."""
    return predicate_is_top_tier(principal, resource) or predicate_in_scope(principal, resource)


def predicate_scoped_admin_in_scope(principal: Principal, resource: Resource) -> bool:
    return principal.role is Role.SCOPED_ADMIN and predicate_in_scope(principal, resource)


def predicate_scope_record(principal: Principal, resource: Resource) -> bool:
    """The scope record itself (e.g. the principal's own branch)."""
    if not principal.is_scoped_role:
        return False
    return principal.has_global_scope or _same(resource.id, principal.scope_id)


def predicate_client_owns(principal: Principal, resource: Resource) -> bool:
    """External client matching the resource's owner id or tenant id."""
    if principal.role is not Role.EXTERNAL_CLIENT:
        return False
    return _same(resource.owner_id, principal.id) or _same(resource.tenant_id, principal.tenant_id)


def predicate_client_is_subject(principal: Principal, resource: Resource) -> bool:
    """External client reading the customer or company record that represents it."""
    if principal.role is not Role.EXTERNAL_CLIENT:
        return False
    return _same(resource.id, principal.id) or _same(resource.id, principal.tenant_id)


def predicate_is_self(principal: Principal, resource: Resource) -> bool:
    return _same(resource.id, principal.id)


PREDICATES: dict[str, PredicateFn] = {
    "is_top_tier": predicate_is_top_tier,
    "in_scope": predicate_in_scope,
    "scoped_in_scope": predicate_scoped_in_scope,
    "scoped_admin_in_scope": predicate_scoped_admin_in_scope,
    "scope_record": predicate_scope_record,
    "client_owns": predicate_client_owns,
    "client_is_subject": predicate_client_is_subject,
    "is_self": predicate_is_self,
}
