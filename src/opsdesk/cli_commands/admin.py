"""CLI commands for admin: init, user-add, users, serve."""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path

import click

from opsdesk.cli_common import fail, get_db
from opsdesk.core import (
    DB_FILENAME,
    MAX_BATCH_WRITES,
    OPSDESK_DIR_NAME,
    REPORT_FILENAME,
    OpsDeskDB,
    read_config,
    write_config,
)
from opsdesk.db_users import VALID_ROLES
from opsdesk.errors import OpsDeskError
from opsdesk.ids import APP_KEYS, DEFAULT_APP
from opsdesk.logging import setup_logging
from opsdesk.report import write_report


@click.command()
@click.option("--app", "default_app", type=click.Choice(APP_KEYS), default=DEFAULT_APP, help="App new issues belong to by default")
@click.option("--admin-email", default="", help="Email for the bootstrap admin user")
@click.pass_context
def init(ctx: click.Context, default_app: str, admin_email: str) -> None:
    """Initialize .opsdesk/ in the current directory.

    The --actor identity becomes the first admin user.
    """
    cwd = Path.cwd()
    opsdesk_dir = cwd / OPSDESK_DIR_NAME
    actor = ctx.obj["actor"]

    if opsdesk_dir.exists():
        click.echo(f"{OPSDESK_DIR_NAME}/ already exists in {cwd}")
        # Still ensure DB is initialized
        config = read_config(opsdesk_dir)
        with OpsDeskDB(opsdesk_dir / DB_FILENAME, default_app=config.get("default_app", DEFAULT_APP)) as db:
            db.initialize()
        return

    opsdesk_dir.mkdir()
    setup_logging(opsdesk_dir)
    write_config(opsdesk_dir, {"default_app": default_app, "version": 1, "batch_limit": MAX_BATCH_WRITES})

    with OpsDeskDB(opsdesk_dir / DB_FILENAME, default_app=default_app) as db:
        db.initialize()
        try:
            db.add_user(actor, email=admin_email, role="admin", actor=actor)
        except OpsDeskError as e:
            fail(e, as_json=False)
        write_report(db, opsdesk_dir / REPORT_FILENAME)

    click.echo(f"Initialized {OPSDESK_DIR_NAME}/ in {cwd}")
    click.echo(f"  Default app: {default_app}")
    click.echo(f"  Admin: {actor}")
    click.echo(f"  Database: {opsdesk_dir / DB_FILENAME}")


@click.command("user-add")
@click.argument("uid")
@click.option("--email", default="", help="Email shown as the assignee label")
@click.option("--role", type=click.Choice(sorted(VALID_ROLES)), default="user", help="Role (default: user)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def user_add(ctx: click.Context, uid: str, email: str, role: str, as_json: bool) -> None:
    """Add or replace a user. Requires an admin once one exists."""
    with get_db() as db:
        try:
            user = db.add_user(uid, email=email, role=role, actor=ctx.obj["actor"])
        except OpsDeskError as e:
            fail(e, as_json)
        if as_json:
            click.echo(json_mod.dumps(user, indent=2, default=str))
        else:
            click.echo(f"Added {user['uid']} ({user['role']})")


@click.command("users")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def users(as_json: bool) -> None:
    """List users."""
    with get_db() as db:
        records = db.list_users()
    if as_json:
        click.echo(json_mod.dumps(records, indent=2, default=str))
        return
    for user in records:
        click.echo(f"{user['uid']:<24} {user['role']:<6} {user['email']}")
    click.echo(f"\n{len(records)} users")


@click.command()
@click.option("--port", default=8377, type=int, help="Server port (default 8377)")
@click.option("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
def serve(port: int, host: str) -> None:
    """Serve the HTTP API (requires opsdesk[server])."""
    try:
        from opsdesk.dashboard import main as dashboard_main
    except ImportError:
        click.echo('Serving requires extra dependencies. Install with: pip install "opsdesk[server]"', err=True)
        sys.exit(1)
    dashboard_main(port=port, host=host)


def register(cli: click.Group) -> None:
    """Register admin commands with the CLI group."""
    cli.add_command(init)
    cli.add_command(user_add)
    cli.add_command(users)
    cli.add_command(serve)
