"""Watch command - live validation of newly created records."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console

from ..config import Settings
from ..integrity.live import LiveValidator
from ..violations import Violation
from ..watcher import run_watch_loop
from .common import open_catalog, open_log, open_store, reports_errors


@reports_errors
def run_watch(settings: Settings) -> int:
    """
    Validate each record created in the store until interrupted (Ctrl+C).

    Violations are appended to the violation log with source=live.
    """
    console = Console(stderr=True)
    store = open_store(settings)
    validator = LiveValidator(open_catalog(settings), store, open_log(settings))

    console.print(f"[bold]Watching[/bold] {store.root}")
    console.print(f"  Violation log: {settings.violation_log_path}")
    console.print("[dim]Only creations are checked; updates wait for the next audit.[/dim]")
    console.print("[dim]Press Ctrl+C to stop watching[/dim]")
    console.print()

    checked = 0
    flagged = 0

    def on_result(collection: str, record_id: str, written: list[Violation]) -> None:
        nonlocal checked, flagged
        checked += 1
        timestamp = datetime.now().strftime("%H:%M:%S")
        if written:
            flagged += 1
            kinds = ", ".join(sorted({v.type.value for v in written}))
            console.print(f"[dim]{timestamp}[/dim] [red]✗[/red] {collection}/{record_id}: {kinds}", highlight=False)
        else:
            console.print(f"[dim]{timestamp}[/dim] [green]✓[/green] {collection}/{record_id}", highlight=False)

    run_watch_loop(store, validator, on_result)
    console.print()
    console.print(f"[bold]Stopped.[/bold] Checked {checked} record(s), {flagged} with new violations.")
    return 0
