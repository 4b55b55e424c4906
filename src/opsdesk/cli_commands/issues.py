"""CLI commands for issue CRUD: create, show, list, update, delete, note."""

from __future__ import annotations

import json as json_mod
from typing import Any

import click

from opsdesk.cli_common import fail, get_db, refresh_report
from opsdesk.core import Issue
from opsdesk.errors import OpsDeskError
from opsdesk.ids import APP_KEYS
from opsdesk.validation import VALID_CLASSIFICATIONS, VALID_SEVERITIES


def _print_issue(issue: Issue) -> None:
    click.echo(f"{issue.label}: {issue.title}")
    click.echo(f"  Storage id: {issue.id}")
    click.echo(f"  App:        {issue.app or '-'}")
    click.echo(f"  Severity:   {issue.severity or '-'}")
    click.echo(f"  Status:     {issue.status or 'new'}")
    click.echo(f"  Type:       {issue.type or '-'}")
    if issue.classification:
        click.echo(f"  Class:      {issue.classification}")
    if issue.planned_for_version:
        click.echo(f"  Planned:    {issue.planned_for_version}")
    if issue.user_id:
        click.echo(f"  Reporter:   {issue.user_id}")
    click.echo(f"  Created:    {issue.created_at or '-'}")
    if issue.deleted:
        click.echo("  (deleted)")
    if issue.description:
        click.echo(f"\n{issue.description}")
    if issue.notes:
        click.echo("\nNotes:")
        for note in issue.notes:
            click.echo(f"  [{note['created_at']}] {note['author']}: {note['text']}")


@click.command()
@click.argument("title")
@click.option("--app", type=click.Choice(APP_KEYS), default=None, help="App the issue belongs to (default from config)")
@click.option("--severity", "-s", default=None, help="Severity S1-S4")
@click.option("--type", "issue_type", default=None, help="Category key, e.g. billing_subscription")
@click.option("--description", "-d", default="", help="Description")
@click.option("--user", "user_id", default=None, help="Reporter uid (default: --actor)")
@click.option("--field", "-f", multiple=True, help="Extra field as key=value (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def create(
    ctx: click.Context,
    title: str,
    app: str | None,
    severity: str | None,
    issue_type: str | None,
    description: str,
    user_id: str | None,
    field: tuple[str, ...],
    as_json: bool,
) -> None:
    """Report a new issue. Its display id is assigned immediately."""
    fields: dict[str, Any] = {}
    for f in field:
        if "=" not in f:
            fail(f"Invalid field format: {f} (expected key=value)", as_json)
        k, v = f.split("=", 1)
        fields[k] = v

    actor = ctx.obj["actor"]
    with get_db() as db:
        try:
            issue = db.create_issue(
                title,
                app=app,
                severity=severity,
                type=issue_type,
                description=description,
                user_id=user_id or actor,
                fields=fields or None,
                actor=actor,
            )
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
        else:
            click.echo(f"Created {issue.label}: {issue.title}")
        refresh_report(db)


@click.command()
@click.argument("issue_ref")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(issue_ref: str, as_json: bool) -> None:
    """Show issue details (by storage id or display id)."""
    with get_db() as db:
        try:
            issue = db.resolve_issue(issue_ref)
        except OpsDeskError as e:
            fail(e, as_json)
    if as_json:
        click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
    else:
        _print_issue(issue)


@click.command("list")
@click.option("--status", default=None, help="Filter by status")
@click.option("--app", type=click.Choice(APP_KEYS), default=None, help="Filter by app")
@click.option("--include-deleted", is_flag=True, help="Include soft-deleted issues")
@click.option("--limit", default=100, type=int, help="Max results (default 100)")
@click.option("--offset", default=0, type=int, help="Skip first N results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_issues(
    status: str | None,
    app: str | None,
    include_deleted: bool,
    limit: int,
    offset: int,
    as_json: bool,
) -> None:
    """List issues, newest first."""
    with get_db() as db:
        issues = db.list_issues(status=status, app=app, include_deleted=include_deleted, limit=limit, offset=offset)

    if as_json:
        click.echo(json_mod.dumps([i.to_dict() for i in issues], indent=2, default=str))
        return

    for issue in issues:
        deleted = " (deleted)" if issue.deleted else ""
        click.echo(f"{issue.label:<10} {issue.severity or '--':<3} {(issue.status or 'new'):<12} {issue.title}{deleted}")

    click.echo(f"\n{len(issues)} issues")


@click.command()
@click.argument("issue_ref")
@click.option("--title", default=None, help="New title")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--status", default=None, help="New status")
@click.option("--severity", "-s", type=click.Choice(VALID_SEVERITIES, case_sensitive=False), default=None, help="New severity")
@click.option("--type", "issue_type", default=None, help="New category key")
@click.option(
    "--classification",
    type=click.Choice([*sorted(VALID_CLASSIFICATIONS), "unclassified"]),
    default=None,
    help="Operator override (unclassified clears it)",
)
@click.option("--planned-for", "planned_for_version", default=None, help="Planned release MAJOR.MINOR.PATCH (empty clears)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def update(
    ctx: click.Context,
    issue_ref: str,
    title: str | None,
    description: str | None,
    status: str | None,
    severity: str | None,
    issue_type: str | None,
    classification: str | None,
    planned_for_version: str | None,
    as_json: bool,
) -> None:
    """Update an issue (admin). Display ids cannot be changed here."""
    changes: dict[str, Any] = {
        key: value
        for key, value in (
            ("title", title),
            ("description", description),
            ("status", status),
            ("severity", severity),
            ("type", issue_type),
            ("classification", classification),
            ("planned_for_version", planned_for_version),
        )
        if value is not None
    }
    with get_db() as db:
        try:
            issue = db.resolve_issue(issue_ref)
            issue = db.update_issue(issue.id, changes, actor=ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
        else:
            click.echo(f"Updated {issue.label}")
        refresh_report(db)


@click.command()
@click.argument("issue_ref")
@click.option("--restore", is_flag=True, help="Undo a previous soft delete")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def delete(ctx: click.Context, issue_ref: str, restore: bool, as_json: bool) -> None:
    """Soft-delete an issue (admin). Its display id stays reserved."""
    with get_db() as db:
        try:
            issue = db.resolve_issue(issue_ref)
            if restore:
                issue = db.restore_issue(issue.id, actor=ctx.obj["actor"])
            else:
                issue = db.soft_delete_issue(issue.id, actor=ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps(issue.to_dict(), indent=2, default=str))
        else:
            click.echo(f"{'Restored' if restore else 'Deleted'} {issue.label}")
        refresh_report(db)


@click.command()
@click.argument("issue_ref")
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def note(ctx: click.Context, issue_ref: str, text: str, as_json: bool) -> None:
    """Append an admin note to an issue."""
    with get_db() as db:
        try:
            issue = db.resolve_issue(issue_ref)
            record = db.add_note(issue.id, text, actor=ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
    if as_json:
        click.echo(json_mod.dumps(record, indent=2, default=str))
    else:
        click.echo(f"Added note to {issue.label}")


def register(cli: click.Group) -> None:
    """Register issue commands with the CLI group."""
    cli.add_command(create)
    cli.add_command(show)
    cli.add_command(list_issues)
    cli.add_command(update)
    cli.add_command(delete)
    cli.add_command(note)
