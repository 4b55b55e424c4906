"""CLI commands for output: report, export."""

from __future__ import annotations

import json as json_mod

import click

from opsdesk.cli_common import fail, get_db
from opsdesk.errors import OpsDeskError
from opsdesk.exchange import export_issues_csv
from opsdesk.ids import APP_KEYS
from opsdesk.report import generate_report, render_report_markdown


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def report(as_json: bool) -> None:
    """Operator report: open issues bucketed into Fix Now / Fix Next / Parked."""
    with get_db() as db:
        result = generate_report(db)
    if as_json:
        click.echo(json_mod.dumps(result, indent=2, default=str))
    else:
        click.echo(render_report_markdown(result))


@click.command()
@click.argument("path", type=click.Path(dir_okay=False, writable=True))
@click.option("--app", type=click.Choice(APP_KEYS), default=None, help="Only issues for this app")
@click.option("--include-deleted", is_flag=True, help="Include soft-deleted issues")
def export(path: str, app: str | None, include_deleted: bool) -> None:
    """Export issues as CSV, sorted by display id number."""
    with get_db() as db:
        try:
            count = export_issues_csv(db, path, app=app, include_deleted=include_deleted)
        except (OpsDeskError, OSError) as e:
            fail(e, as_json=False)
    click.echo(f"Exported {count} issues to {path}")


def register(cli: click.Group) -> None:
    """Register report commands with the CLI group."""
    cli.add_command(report)
    cli.add_command(export)
