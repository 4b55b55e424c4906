"""CLI commands for identifier maintenance: next-id, backfill, repair, import, audit."""

from __future__ import annotations

import json as json_mod

import click

from opsdesk.cli_common import fail, get_db, refresh_report
from opsdesk.errors import OpsDeskError
from opsdesk.exchange import load_import_rows
from opsdesk.ids import KNOWN_PREFIXES


@click.command("next-id")
@click.argument("prefix", type=click.Choice(sorted(KNOWN_PREFIXES)))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def next_id(prefix: str, as_json: bool) -> None:
    """Show the display id the next issue with PREFIX would receive."""
    with get_db() as db:
        try:
            display_id = db.next_display_id(prefix)
        except OpsDeskError as e:
            fail(e, as_json)
    if as_json:
        click.echo(json_mod.dumps({"prefix": prefix, "next_id": display_id}))
    else:
        click.echo(display_id)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def backfill(ctx: click.Context, as_json: bool) -> None:
    """Assign display ids to records that have none (admin)."""
    with get_db() as db:
        try:
            count = db.assign_missing_ids(ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps({"assigned": count}))
        elif count:
            click.echo(f"Assigned display ids to {count} issues")
        else:
            click.echo("All issues already have display ids")
        if count:
            refresh_report(db)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def repair(ctx: click.Context, as_json: bool) -> None:
    """Reassign duplicate display ids, keeping the earliest holder (admin)."""
    with get_db() as db:
        try:
            result = db.repair_duplicate_ids(ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps(result, indent=2))
        else:
            for line in result["log"]:
                click.echo(line)
            if result["fixed"]:
                click.echo(f"\nFixed {result['fixed']} duplicates")
        if result["fixed"]:
            refresh_report(db)


@click.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def import_cmd(ctx: click.Context, path: str, as_json: bool) -> None:
    """Bulk import issues from a .csv or .json file (admin, max 500 rows).

    Every row is validated first; one bad row rejects the whole file.
    """
    with get_db() as db:
        try:
            rows = load_import_rows(path)
            created = db.import_issues(rows, actor=ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps([i.to_dict() for i in created], indent=2, default=str))
        else:
            for issue in created:
                click.echo(f"  {issue.label}: {issue.title}")
            click.echo(f"Imported {len(created)} issues")
        refresh_report(db)


@click.command()
@click.option("--limit", default=50, type=int, help="Max entries (default 50)")
@click.option("--action", default=None, help="Filter by action, e.g. display_id_repaired")
@click.option("--target", "target_id", default=None, help="Filter by target storage id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def audit(limit: int, action: str | None, target_id: str | None, as_json: bool) -> None:
    """Show the audit trail, most recent first."""
    with get_db() as db:
        records = db.get_audit_log(limit=limit, action=action, target_id=target_id)
    if as_json:
        click.echo(json_mod.dumps(records, indent=2, default=str))
        return
    for rec in records:
        targets = ",".join(rec["target_ids"])
        change = ""
        if rec["after"]:
            change = " " + json_mod.dumps(rec["before"]) + " -> " + json_mod.dumps(rec["after"])
        click.echo(f"{rec['created_at']}  {rec['actor']:<12} {rec['action']:<20} {targets}{change}")


def register(cli: click.Group) -> None:
    """Register maintenance commands with the CLI group."""
    cli.add_command(next_id)
    cli.add_command(backfill)
    cli.add_command(repair)
    cli.add_command(import_cmd)
    cli.add_command(audit)
