"""Decide command - evaluate one access decision for debugging."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from ..access import AccessDecisionEngine, Effect, load_policy
from ..config import Settings
from ..errors import MalformedToken, StoreError, Unauthenticated
from ..identity import AuthRequest, build_resolver
from ..models import Resource
from .common import open_store, reports_errors


def parse_fields(pairs: tuple[str, ...] | list[str]) -> dict[str, Any]:
    """Parse NAME=VALUE pairs into record fields."""
    fields: dict[str, Any] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected NAME=VALUE, got {pair!r}")
        fields[name.strip()] = value
    return fields


@reports_errors
def run_decide(
    settings: Settings,
    *,
    token: str,
    collection: str,
    operation: str,
    record_id: str | None = None,
    fields: dict[str, Any] | None = None,
    explain: bool = False,
    output_json: bool = False,
) -> int:
    """
    Resolve the token's principal and decide (collection, operation).

    The resource is the stored record when `record_id` is given, otherwise a
    record built from `fields`. Exit code 0 on Allow, 1 on Deny or when no
    principal can be derived.
    """
    console = Console()
    err = Console(stderr=True)
    store = open_store(settings)

    try:
        principal = build_resolver(settings, store).resolve(AuthRequest(token=token))
    except (Unauthenticated, MalformedToken) as e:
        err.print(f"[bold red]Unauthenticated:[/bold red] {e}", highlight=False)
        return 1

    if record_id is not None:
        record = store.get(collection, record_id)
        if record is None:
            raise StoreError(f"Record not found: {collection}/{record_id}")
        resource = Resource.from_record(record)
    else:
        data = dict(fields or {})
        resource = Resource(
            collection=collection,
            scope_id=data.get("branchId"),
            owner_id=data.get("customerId"),
            tenant_id=data.get("companyId"),
            attributes=data,
        )

    engine = AccessDecisionEngine(load_policy(settings.policy_path), strict=settings.access.strict_operations)
    explanation = engine.explain(principal, operation, resource)

    if output_json:
        payload = {"principal": principal.to_dict(), **explanation.to_dict()}
        if not explain:
            payload.pop("clauses")
        print(json.dumps(payload, indent=2))
    else:
        style = "green" if explanation.decision is Effect.ALLOW else "red"
        console.print(f"[{style}]{explanation.decision.value.upper()}[/{style}] {explanation.reason}", highlight=False)
        scope = principal.to_dict()["scope_id"]
        console.print(f"[dim]principal {principal.id} role={principal.role.value} scope={scope} source={principal.source.value}[/dim]")
        if principal.used_fallback:
            console.print(f"[yellow]fields from profile fallback: {', '.join(principal.fallback_fields)}[/yellow]")
        if explain and explanation.clauses:
            table = Table(title=f"{collection} clauses")
            table.add_column("predicate", style="cyan")
            table.add_column("effect")
            table.add_column("applies")
            table.add_column("matched")
            for c in explanation.clauses:
                table.add_row(c.predicate, c.effect.value, "yes" if c.applicable else "no", "yes" if c.matched else "no")
            console.print(table)
    return 0 if explanation.decision is Effect.ALLOW else 1
