"""CLI entrypoint for scopeguard."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import load_settings
from .errors import ConfigurationError


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(__version__, prog_name="scopeguard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Settings file (defaults to auto-detected scopeguard.yml)",
)
@click.option(
    "--store",
    "store_path",
    type=click.Path(exists=False, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Document store directory (overrides settings and SCOPEGUARD_STORE)",
)
@click.option("--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, store_path: Path | None, verbose: bool) -> None:
    """scopeguard - Access decisions and referential integrity for a document store.

    Audit, repair and monitor relationships between records, validate new
    records as they are created, and debug access decisions.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings(config_path, store=store_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
)
@click.option("--scope", type=str, default=None, metavar="SCOPE_ID", help="Only audit records in this scope")
@click.option(
    "--max-seconds",
    type=float,
    default=None,
    help="Stop after this many seconds and report the run as incomplete",
)
@click.option(
    "--no-record",
    is_flag=True,
    help="Do not write findings to the violation log",
)
@click.pass_context
def audit(
    ctx: click.Context,
    output_format: str,
    scope: str | None,
    max_seconds: float | None,
    no_record: bool,
) -> None:
    """Check every catalogued relationship in the store.

    Exits 1 when critical violations are found or the run is interrupted.

    Examples:

        scopeguard audit

        scopeguard audit --scope branch-7 --format json
    """
    from .commands.audit_cmd import run_audit

    exit_code = run_audit(
        ctx.obj["settings"],
        output_format=output_format,
        scope=scope,
        max_seconds=max_seconds,
        record=not no_record,
    )
    sys.exit(exit_code)


@cli.command()
@click.option(
    "--dry-run/--execute",
    "dry_run",
    default=True,
    show_default=True,
    help="Preview repairs (default) or apply them",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
)
@click.option("--scope", type=str, default=None, metavar="SCOPE_ID", help="Only repair records in this scope")
@click.option(
    "--countdown",
    type=float,
    default=None,
    help="Seconds to wait before writing in --execute mode (Ctrl+C cancels)",
)
@click.pass_context
def repair(
    ctx: click.Context,
    dry_run: bool,
    output_format: str,
    scope: str | None,
    countdown: float | None,
) -> None:
    """Repair violations that have an unambiguous fix.

    Runs a fresh audit first. Without --execute nothing is written.

    Examples:

        scopeguard repair

        scopeguard repair --execute --countdown 10
    """
    from .commands.repair_cmd import run_repair

    exit_code = run_repair(
        ctx.obj["settings"],
        execute=not dry_run,
        output_format=output_format,
        scope=scope,
        countdown_seconds=countdown,
    )
    sys.exit(exit_code)


@cli.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json", "html"]),
    default="console",
    help="Output format",
)
@click.option(
    "--cached",
    is_flag=True,
    help="Reuse the last recorded audit instead of running a fresh one",
)
@click.option(
    "--out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the report to this file instead of stdout",
)
@click.pass_context
def monitor(ctx: click.Context, output_format: str, cached: bool, out: Path | None) -> None:
    """Compute the data health score.

    Examples:

        scopeguard monitor

        scopeguard monitor --cached --format html --out health.html
    """
    from .commands.monitor_cmd import run_monitor

    exit_code = run_monitor(ctx.obj["settings"], output_format=output_format, cached=cached, out=out)
    sys.exit(exit_code)


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Validate records as they are created.

    Runs until interrupted (Ctrl+C). Findings go to the violation log.
    """
    from .commands.watch_cmd import run_watch

    exit_code = run_watch(ctx.obj["settings"])
    sys.exit(exit_code)


@cli.command()
@click.argument("collection")
@click.argument("record_id")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
)
@click.pass_context
def validate(ctx: click.Context, collection: str, record_id: str, output_format: str) -> None:
    """Check one stored record against the catalog without recording anything."""
    from .commands.validate_cmd import run_validate

    exit_code = run_validate(ctx.obj["settings"], collection, record_id, output_format=output_format)
    sys.exit(exit_code)


@cli.command()
@click.option("--open", "open_only", is_flag=True, help="Only unresolved violations")
@click.option("--last", "last_n", type=int, default=None, help="Only the last N entries")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
)
@click.pass_context
def violations(ctx: click.Context, open_only: bool, last_n: int | None, output_format: str) -> None:
    """List entries of the violation log."""
    from .commands.violations_cmd import run_violations

    exit_code = run_violations(ctx.obj["settings"], open_only=open_only, last_n=last_n, output_format=output_format)
    sys.exit(exit_code)


@cli.command()
@click.option("--events", is_flag=True, help="Show identity fallback events instead of repairs")
@click.option("--last", "last_n", type=int, default=20, show_default=True, help="Only the last N entries")
@click.pass_context
def history(ctx: click.Context, events: bool, last_n: int) -> None:
    """Show the repair journal or the identity event log."""
    from .commands.violations_cmd import run_history

    exit_code = run_history(ctx.obj["settings"], events=events, last_n=last_n)
    sys.exit(exit_code)


@cli.command()
@click.argument("collection")
@click.argument("operation")
@click.option("--token", envvar="SCOPEGUARD_TOKEN", required=True, help="Bearer token of the caller")
@click.option("--record", "record_id", type=str, default=None, help="Decide against this stored record")
@click.option(
    "--field",
    "fields",
    multiple=True,
    metavar="NAME=VALUE",
    help="Resource field when no --record is given. Repeatable.",
)
@click.option("--explain", is_flag=True, help="Show the outcome of every policy clause")
@click.option("--json", "output_json", is_flag=True, help="Output the decision as JSON")
@click.pass_context
def decide(
    ctx: click.Context,
    collection: str,
    operation: str,
    token: str,
    record_id: str | None,
    fields: tuple[str, ...],
    explain: bool,
    output_json: bool,
) -> None:
    """Decide whether a token may perform OPERATION on COLLECTION.

    Exits 0 on Allow and 1 on Deny.

    Examples:

        scopeguard decide reports read --record r-1 --token "$TOKEN"

        scopeguard decide buildings create --field branchId=b1 --explain
    """
    from .commands.access_cmd import parse_fields, run_decide

    try:
        parsed = parse_fields(fields)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--field") from e

    exit_code = run_decide(
        ctx.obj["settings"],
        token=token,
        collection=collection,
        operation=operation,
        record_id=record_id,
        fields=parsed,
        explain=explain,
        output_json=output_json,
    )
    sys.exit(exit_code)


@cli.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
)
@click.pass_context
def catalog(ctx: click.Context, output_format: str) -> None:
    """Show the effective relationship catalog."""
    from .commands.catalog_cmd import run_catalog

    exit_code = run_catalog(ctx.obj["settings"], output_format=output_format)
    sys.exit(exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
