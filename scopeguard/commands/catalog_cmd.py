"""Catalog command - show the effective relationship catalog."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..config import Settings
from .common import open_catalog, reports_errors


@reports_errors
def run_catalog(settings: Settings, *, output_format: str = "console") -> int:
    catalog = open_catalog(settings)

    if output_format == "json":
        print(json.dumps(catalog.to_dict(), indent=2))
        return 0

    console = Console()
    source = settings.catalog_path or "built-in"
    console.print(f"[bold]Relationship catalog[/bold] [dim]({source})[/dim]")

    rels = Table(title="Relationships")
    rels.add_column("source", style="cyan")
    rels.add_column("field")
    rels.add_column("target", style="cyan")
    rels.add_column("cardinality")
    rels.add_column("target roles", style="dim")
    for rule in catalog.relationships:
        roles = ", ".join(sorted(r.value for r in rule.target_roles)) if rule.target_roles else ""
        cardinality = rule.cardinality.kind
        if cardinality == "exactly-one-of":
            cardinality = f"{cardinality} ({rule.cardinality.label})"
        rels.add_row(rule.source, rule.field, rule.target, cardinality, roles)
    console.print(rels)

    scopes = Table(title=f"Scoping (scope collection: {catalog.scope_collection})")
    scopes.add_column("collection", style="cyan")
    scopes.add_column("field")
    scopes.add_column("required")
    scopes.add_column("excluded roles", style="dim")
    scopes.add_column("extra values", style="dim")
    for rule in catalog.scoping:
        scopes.add_row(
            rule.collection,
            rule.field,
            "yes" if rule.required else "no",
            ", ".join(sorted(r.value for r in rule.exclude_roles)),
            ", ".join(sorted(rule.allowed_values)),
        )
    console.print(scopes)
    return 0
