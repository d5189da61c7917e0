"""Audit command - batch relationship integrity check."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..config import Settings
from ..integrity.auditor import AuditReport, IntegrityAuditor, record_results, write_cached_report
from ..lock import RunLock
from .common import open_catalog, open_log, open_store, reports_errors


def render_audit_console(report: AuditReport, console: Console) -> None:
    scope = f" (scope {report.scope})" if report.scope else ""
    console.print(f"[bold]Integrity audit{scope}[/bold] - {report.records_checked} record(s) in {report.duration_seconds:.2f}s")

    table = Table(title="Relationships")
    table.add_column("relationship", style="cyan", no_wrap=True)
    table.add_column("valid", justify="right")
    table.add_column("invalid", justify="right")
    table.add_column("total", justify="right")
    table.add_column("health", justify="right")
    for stats in report.relationships.values():
        style = "red" if stats.invalid else "green"
        table.add_row(stats.rule, str(stats.valid), str(stats.invalid), str(stats.total), f"[{style}]{stats.validity_percent}%[/{style}]")
    console.print(table)

    if report.violations:
        issues = Table(title="Violations")
        issues.add_column("severity")
        issues.add_column("type", style="magenta")
        issues.add_column("record", style="cyan")
        issues.add_column("field")
        issues.add_column("value", style="dim")
        for v in sorted(report.violations, key=lambda v: (v.severity.value, v.collection, v.document_id)):
            style = "red" if v.is_critical else "yellow"
            issues.add_row(
                f"[{style}]{v.severity.value}[/{style}]",
                v.type.value,
                f"{v.collection}/{v.document_id}",
                v.invalid_field,
                json.dumps(v.invalid_value, default=str),
            )
        console.print(issues)

    if report.interrupted:
        console.print(f"[yellow]Audit incomplete:[/yellow] {report.interrupt_reason}")
    console.print(
        f"Critical: {len(report.critical)}  Warning: {len(report.warnings)}",
        style="bold red" if report.critical else "bold green",
    )


@reports_errors
def run_audit(
    settings: Settings,
    *,
    output_format: str = "console",
    scope: str | None = None,
    max_seconds: float | None = None,
    record: bool = True,
) -> int:
    """
    Audit the store against the catalog.

    Exit code 0 when no critical violations were found, 1 otherwise (or when
    the run was interrupted or failed).
    """
    err = Console(stderr=True)
    store = open_store(settings)
    catalog = open_catalog(settings)
    log = open_log(settings)
    limit = max_seconds if max_seconds is not None else settings.audit.max_seconds

    with RunLock(settings.lock_dir, "audit", scope):
        auditor = IntegrityAuditor(catalog, store, scope=scope, max_seconds=limit)
        try:
            report = auditor.run()
        except KeyboardInterrupt:
            err.print("[yellow]Audit interrupted; nothing recorded.[/yellow]")
            return 1

        if record:
            written = record_results(report, log)
            if not report.interrupted and scope is None:
                write_cached_report(settings.last_audit_path, report)
            err.print(f"[dim]Recorded {len(written)} new violation(s).[/dim]")

    if output_format == "json":
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        render_audit_console(report, Console())
    return report.exit_code
