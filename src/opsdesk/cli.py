"""CLI for the opsdesk issue console.

Convention-based: discovers .opsdesk/ by walking up from cwd.

Usage:
    opsdesk init                                 # Initialize .opsdesk/ and the first admin
    opsdesk create "Quiz marks right answer wrong" --severity S1 --type quiz_assessment_logic
    opsdesk show EC-12                           # Show issue details
    opsdesk list --status new                    # List issues
    opsdesk update EC-12 --status in_progress    # Admin update (display ids are immutable)
    opsdesk note EC-12 "Repro on Safari only"    # Append an admin note
    opsdesk next-id EC                           # Preview the next display id
    opsdesk backfill                             # Assign ids to records missing one
    opsdesk repair                               # Reassign colliding display ids
    opsdesk import issues.csv                    # Bulk import (CSV or JSON, max 500 rows)
    opsdesk report                               # Fix-Now / Fix-Next / Parked brief
    opsdesk export issues.csv                    # CSV export sorted by display id
    opsdesk audit                                # Recent audit trail
    opsdesk serve                                # HTTP API
"""

from __future__ import annotations

import click

from opsdesk import __version__
from opsdesk.cli_commands import admin, issues, maintenance, report


@click.group()
@click.version_option(version=__version__, prog_name="opsdesk")
@click.option("--actor", default="cli", help="Caller identity; must hold the admin role for maintenance (default: cli)")
@click.pass_context
def cli(ctx: click.Context, actor: str) -> None:
    """Opsdesk — issue identity and operator triage."""
    ctx.ensure_object(dict)
    ctx.obj["actor"] = actor


admin.register(cli)
issues.register(cli)
maintenance.register(cli)
report.register(cli)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
