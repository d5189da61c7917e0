"""Monitor command - data health score and report."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..config import Settings
from ..health import HealthMonitor, render_console, render_html, render_json
from ..integrity.auditor import read_cached_report
from .common import open_catalog, open_log, open_store, reports_errors


@reports_errors
def run_monitor(
    settings: Settings,
    *,
    output_format: str = "console",
    cached: bool = False,
    out: Path | None = None,
) -> int:
    """
    Print (or write to `out`) the health report.

    Exit code 1 when open critical violations exist.
    """
    err = Console(stderr=True)
    store = open_store(settings)
    monitor = HealthMonitor(
        open_catalog(settings),
        store,
        open_log(settings),
        window_days=settings.monitor.window_days,
        penalties=settings.monitor.penalties,
    )

    audit = None
    if cached:
        audit = read_cached_report(settings.last_audit_path)
        if audit is None:
            err.print("[yellow]No cached audit; running a fresh one.[/yellow]")
    report = monitor.snapshot(audit=audit)

    if output_format == "console":
        if out is None:
            render_console(report, Console())
        else:
            with out.open("w", encoding="utf-8") as f:
                render_console(report, Console(file=f, width=120))
        return report.exit_code

    text = render_json(report) if output_format == "json" else render_html(report)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        err.print(f"Wrote {out}")
    else:
        print(text)
    return report.exit_code
