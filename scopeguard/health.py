"""
Health Monitor.

snapshot() aggregates one audit (fresh or cached), collection sizes, the
trailing-window violation log and scope distribution into a HealthReport.
The console, JSON and HTML renderings all read that one report.
"""

from __future__ import annotations

import html
import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table

from .catalog.schema import Catalog, Severity
from .integrity.auditor import MISSING_SCOPE_KEY, AuditReport, IntegrityAuditor, RelationshipStats
from .store.base import DocumentStore
from .util import utc_now
from .violations import SOURCE_LIVE, Violation, ViolationLog

DEFAULT_PENALTIES = {"critical": 5, "warning": 1}


@dataclass
class HealthReport:
    timestamp: str
    score: int
    window_days: int
    collection_sizes: dict[str, int] = field(default_factory=dict)
    relationships: list[RelationshipStats] = field(default_factory=list)
    scope_distribution: dict[str, dict[str, int]] = field(default_factory=dict)
    window_violations: dict[str, int] = field(default_factory=dict)
    window_live_violations: int = 0
    open_violations: dict[str, int] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)
    audit_started_at: str | None = None
    audit_cached: bool = False

    @property
    def window_total(self) -> int:
        return sum(self.window_violations.values())

    @property
    def open_critical(self) -> int:
        return self.open_violations.get(Severity.CRITICAL.value, 0)

    @property
    def status(self) -> str:
        if self.score >= 90:
            return "healthy"
        if self.score >= 70:
            return "degraded"
        return "unhealthy"

    @property
    def exit_code(self) -> int:
        return 1 if self.open_critical else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "score": self.score,
            "status": self.status,
            "collectionSizes": self.collection_sizes,
            "relationships": [r.to_dict() for r in self.relationships],
            "scopeDistribution": self.scope_distribution,
            "windowDays": self.window_days,
            "windowViolations": {"total": self.window_total, "live": self.window_live_violations, "byType": self.window_violations},
            "openViolations": self.open_violations,
            "issues": self.issues,
            "audit": {"startedAt": self.audit_started_at, "cached": self.audit_cached},
        }


class HealthMonitor:
    def __init__(
        self,
        catalog: Catalog,
        store: DocumentStore,
        log: ViolationLog,
        *,
        window_days: int = 30,
        penalties: dict[str, int] | None = None,
    ):
        self.catalog = catalog
        self.store = store
        self.log = log
        self.window_days = window_days
        self.penalties = {**DEFAULT_PENALTIES, **(penalties or {})}

    def snapshot(self, *, audit: AuditReport | None = None, now: datetime | None = None) -> HealthReport:
        """
        Compute a full report. Pass a cached audit to skip re-auditing.

        Raises:
            StoreError: store or violation log unreadable
        """
        cached = audit is not None
        if audit is None:
            audit = IntegrityAuditor(self.catalog, self.store).run()
        now = now or utc_now()

        sizes = {c: self.store.count(c) for c in self.catalog.collections}
        window = self.log.in_window(self.window_days, now=now)
        by_type = Counter(v.type.value for v in window)

        # Open = logged and unresolved, plus anything the audit sees now.
        open_by_key: dict[tuple, Violation] = {v.key: v for v in self.log.open_violations()}
        for v in audit.violations:
            open_by_key.setdefault(v.key, v)
        open_counts = Counter(v.severity.value for v in open_by_key.values())

        penalty = sum(self.penalties.get(sev, 0) * n for sev, n in open_counts.items())
        score = max(0, 100 - penalty)

        return HealthReport(
            timestamp=now.isoformat(),
            score=score,
            window_days=self.window_days,
            collection_sizes=sizes,
            relationships=list(audit.relationships.values()),
            scope_distribution=audit.scope_distribution,
            window_violations=dict(sorted(by_type.items())),
            window_live_violations=sum(1 for v in window if v.source == SOURCE_LIVE),
            open_violations={s.value: open_counts.get(s.value, 0) for s in Severity},
            issues=_issues(audit, open_counts),
            audit_started_at=audit.started_at,
            audit_cached=cached,
        )


def _issues(audit: AuditReport, open_counts: Counter) -> list[str]:
    issues = []
    for stats in audit.relationships.values():
        if stats.invalid:
            issues.append(f"{stats.rule}: {stats.invalid} of {stats.total} record(s) invalid ({stats.validity_percent}% valid)")
    for collection, distribution in audit.scope_distribution.items():
        missing = distribution.get(MISSING_SCOPE_KEY, 0)
        if missing:
            issues.append(f"{collection}: {missing} record(s) without a scope")
    if open_counts.get(Severity.CRITICAL.value):
        issues.append(f"{open_counts[Severity.CRITICAL.value]} open critical violation(s)")
    if audit.interrupted:
        issues.append(f"audit incomplete: {audit.interrupt_reason}")
    return issues


def render_json(report: HealthReport) -> str:
    return json.dumps(report.to_dict(), indent=2)


def _score_style(score: int) -> str:
    if score >= 90:
        return "green"
    if score >= 70:
        return "yellow"
    return "red"


def render_console(report: HealthReport, console: Console) -> None:
    style = _score_style(report.score)
    console.print(f"[bold]Health score:[/bold] [{style}]{report.score}/100[/{style}] ({report.status})")
    console.print(f"[dim]{report.timestamp}{' (cached audit)' if report.audit_cached else ''}[/dim]")
    console.print()

    sizes = Table(title="Collections")
    sizes.add_column("collection", style="cyan")
    sizes.add_column("records", justify="right")
    for name, count in report.collection_sizes.items():
        sizes.add_row(name, str(count))
    console.print(sizes)

    rels = Table(title="Relationship health")
    rels.add_column("relationship", style="cyan", no_wrap=True)
    rels.add_column("valid", justify="right")
    rels.add_column("invalid", justify="right")
    rels.add_column("health", justify="right")
    for stats in report.relationships:
        pct_style = _score_style(int(stats.validity_percent))
        rels.add_row(stats.rule, str(stats.valid), str(stats.invalid), f"[{pct_style}]{stats.validity_percent}%[/{pct_style}]")
    console.print(rels)

    if report.scope_distribution:
        scopes = Table(title="Scope distribution")
        scopes.add_column("collection", style="cyan")
        scopes.add_column("scope")
        scopes.add_column("records", justify="right")
        for collection, distribution in report.scope_distribution.items():
            for scope, count in distribution.items():
                scopes.add_row(collection, scope, str(count), style="red" if scope == MISSING_SCOPE_KEY else None)
        console.print(scopes)

    console.print(
        f"Violations in the last {report.window_days} days: {report.window_total} "
        f"({report.window_live_violations} from live validation)"
    )
    for kind, count in report.window_violations.items():
        console.print(f"  {kind}: {count}", style="dim")
    console.print(
        f"Open violations: {report.open_violations.get('critical', 0)} critical, "
        f"{report.open_violations.get('warning', 0)} warning"
    )
    if report.issues:
        console.print()
        console.print("[bold]Issues[/bold]")
        for issue in report.issues:
            console.print(f"  [yellow]![/yellow] {issue}", highlight=False)


def render_html(report: HealthReport) -> str:
    """Self-contained HTML page (inline styles, no external assets)."""
    esc = html.escape

    def rows(cells: list[list[Any]]) -> str:
        return "\n".join("<tr>" + "".join(f"<td>{esc(str(c))}</td>" for c in row) + "</tr>" for row in cells)

    rel_rows = rows([[r.rule, r.valid, r.invalid, f"{r.validity_percent}%"] for r in report.relationships])
    size_rows = rows([[name, count] for name, count in report.collection_sizes.items()])
    scope_rows = rows(
        [[c, s, n] for c, dist in report.scope_distribution.items() for s, n in dist.items()]
    )
    window_rows = rows([[k, n] for k, n in report.window_violations.items()])
    issues = "\n".join(f"<li>{esc(i)}</li>" for i in report.issues) or "<li>None</li>"
    color = {"green": "#2e7d32", "yellow": "#f9a825", "red": "#c62828"}[_score_style(report.score)]

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Data health {report.score}/100</title>
<style>
body {{ font-family: sans-serif; margin: 2em; color: #222; }}
table {{ border-collapse: collapse; margin-bottom: 1.5em; }}
th, td {{ border: 1px solid #ccc; padding: 4px 10px; text-align: left; }}
th {{ background: #f0f0f0; }}
.score {{ font-size: 2.5em; font-weight: bold; color: {color}; }}
</style>
</head>
<body>
<h1>Data health</h1>
<p class="score">{report.score}/100</p>
<p>{esc(report.status)} &middot; {esc(report.timestamp)}</p>
<h2>Issues</h2>
<ul>
{issues}
</ul>
<h2>Relationship health</h2>
<table>
<tr><th>Relationship</th><th>Valid</th><th>Invalid</th><th>Health</th></tr>
{rel_rows}
</table>
<h2>Collections</h2>
<table>
<tr><th>Collection</th><th>Records</th></tr>
{size_rows}
</table>
<h2>Scope distribution</h2>
<table>
<tr><th>Collection</th><th>Scope</th><th>Records</th></tr>
{scope_rows}
</table>
<h2>Violations, last {report.window_days} days ({report.window_total})</h2>
<table>
<tr><th>Type</th><th>Count</th></tr>
{window_rows}
</table>
<p>Open violations: {report.open_violations.get("critical", 0)} critical, {report.open_violations.get("warning", 0)} warning</p>
</body>
</html>
"""
