"""Violations and history commands - read the append-only logs."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..audit_log import format_journal_entry, read_journal
from ..config import Settings
from ..events import EventKind, read_events
from .common import open_log, reports_errors


@reports_errors
def run_violations(
    settings: Settings,
    *,
    open_only: bool = False,
    last_n: int | None = None,
    output_format: str = "console",
) -> int:
    """List violation log entries, newest last."""
    log = open_log(settings)
    entries = log.open_violations() if open_only else log.entries()
    if last_n is not None:
        entries = entries[-last_n:] if last_n > 0 else []

    if output_format == "json":
        print(json.dumps([v.to_dict() for v in entries], indent=2, default=str))
        return 0

    console = Console()
    if not entries:
        console.print("[dim]No violations recorded.[/dim]")
        return 0

    table = Table(title=f"Violations ({len(entries)})")
    table.add_column("detected", style="dim", no_wrap=True)
    table.add_column("source")
    table.add_column("severity")
    table.add_column("type", style="magenta")
    table.add_column("record", style="cyan")
    table.add_column("field")
    table.add_column("status")
    for v in entries:
        style = "red" if v.is_critical else "yellow"
        status = "open" if v.is_open else f"[green]resolved[/green] {v.resolution_note or ''}".rstrip()
        table.add_row(
            v.timestamp,
            v.source,
            f"[{style}]{v.severity.value}[/{style}]",
            v.type.value,
            f"{v.collection}/{v.document_id}",
            v.invalid_field,
            status,
        )
    console.print(table)
    return 0


@reports_errors
def run_history(settings: Settings, *, events: bool = False, last_n: int | None = 20) -> int:
    """Show the repair journal, or the identity event log with `events`."""
    console = Console()

    if events:
        rows = read_events(settings.events_log_path, last_n=last_n, kind=EventKind.IDENTITY_FALLBACK)
        if not rows:
            console.print("[dim]No events recorded.[/dim]")
            return 0
        for event in rows:
            console.print(
                f"[dim]{event.timestamp}[/dim] [yellow]{event.kind.value}[/yellow] {event.subject} "
                f"{json.dumps(event.details, sort_keys=True)}",
                highlight=False,
                soft_wrap=True,
            )
        return 0

    entries = read_journal(settings.operations_log_path, last_n=last_n)
    if not entries:
        console.print("[dim]No repairs recorded.[/dim]")
        return 0
    for entry in entries:
        console.print(format_journal_entry(entry), highlight=False, markup=False, soft_wrap=True)
    return 0
