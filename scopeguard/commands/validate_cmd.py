"""Validate command - on-demand catalog check of one record."""

from __future__ import annotations

import json

from rich.console import Console

from ..config import Settings
from ..errors import StoreError
from ..integrity.live import LiveValidator
from .common import open_catalog, open_log, open_store, reports_errors


@reports_errors
def run_validate(settings: Settings, collection: str, record_id: str, *, output_format: str = "console") -> int:
    """
    Check one stored record and report its issues. Nothing is written.

    Exit code 1 when the record is missing or has critical issues.
    """
    validator = LiveValidator(open_catalog(settings), open_store(settings), open_log(settings))
    result = validator.validate(collection, record_id)
    if result is None:
        raise StoreError(f"Record not found: {collection}/{record_id}")

    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        console = Console()
        if result.valid:
            console.print(f"[green]✓[/green] {collection}/{record_id} is valid", highlight=False)
        else:
            console.print(f"[red]✗[/red] {collection}/{record_id}: {len(result.violations)} issue(s)", highlight=False)
            for v in result.violations:
                style = "red" if v.is_critical else "yellow"
                console.print(f"  [{style}]{v.severity.value}[/{style}] {v.type.value}: {v.message}", highlight=False)

    return 1 if any(v.is_critical for v in result.violations) else 0
