"""Repair command - apply whitelisted fixes to audited violations."""

from __future__ import annotations

import json

from rich.console import Console

from ..config import Settings
from ..errors import RepairCancelled
from ..integrity.auditor import IntegrityAuditor, record_results
from ..integrity.repairer import IntegrityRepairer, RepairMode, RepairResult
from ..lock import RunLock
from .common import open_catalog, open_log, open_store, reports_errors


def render_repair_console(result: RepairResult, console: Console) -> None:
    title = "Repair (dry run)" if result.mode is RepairMode.DRY_RUN else "Repair"
    console.print(f"[bold]{title}[/bold]: {len(result.applied)} repair(s), {len(result.skipped)} skipped")
    for outcome in result.applied:
        mark = "[green]✓[/green]" if outcome.executed else "[cyan]→[/cyan]"
        console.print(f"  {mark} {outcome.action.collection}/{outcome.action.document_id}: {outcome.message}", highlight=False)
    for skipped in result.skipped:
        mark = "[red]✗[/red]" if skipped.error else "[dim]-[/dim]"
        v = skipped.violation
        console.print(f"  {mark} {v.collection}/{v.document_id} {v.type.value}: {skipped.message}", highlight=False)
    if result.mode is RepairMode.DRY_RUN and result.applied:
        console.print("[dim]Run with --execute to apply.[/dim]")


@reports_errors
def run_repair(
    settings: Settings,
    *,
    execute: bool = False,
    output_format: str = "console",
    scope: str | None = None,
    countdown_seconds: float | None = None,
) -> int:
    """
    Audit, then plan or apply repairs.

    Dry-run (the default) writes nothing, not even to the violation log.
    Exit code 1 if the countdown was cancelled or any write failed.
    """
    err = Console(stderr=True)
    store = open_store(settings)
    catalog = open_catalog(settings)
    log = open_log(settings)
    mode = RepairMode.EXECUTE if execute else RepairMode.DRY_RUN

    # The audit lock keeps a concurrent `audit` from recording the same findings.
    with RunLock(settings.lock_dir, "repair", scope), RunLock(settings.lock_dir, "audit", scope):
        report = IntegrityAuditor(catalog, store, scope=scope).run()
        violations = report.violations
        if mode is RepairMode.EXECUTE:
            # Repair the logged entries so resolutions land on their ids.
            record_results(report, log)
            observed = report.violation_keys()
            violations = [v for v in log.open_violations() if v.key in observed]

        def tick(remaining: int) -> None:
            err.print(f"[bold yellow]Writing in {remaining}s[/bold yellow] (Ctrl+C to cancel)")

        repairer = IntegrityRepairer(
            catalog,
            store,
            log=log,
            journal_path=settings.operations_log_path,
            countdown_seconds=settings.repair.countdown_seconds if countdown_seconds is None else countdown_seconds,
            on_tick=tick,
        )
        try:
            result = repairer.repair(violations, mode)
        except RepairCancelled as e:
            err.print(f"[yellow]{e}[/yellow]")
            return 1

    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        render_repair_console(result, Console())
    return result.exit_code
