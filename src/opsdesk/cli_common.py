"""Shared CLI helpers.

Provides ``get_db()``, ``refresh_report()`` and ``fail()`` so the main
``cli.py`` and the ``cli_commands/*.py`` modules can use them without
circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import NoReturn

import click

from opsdesk.core import (
    DB_FILENAME,
    MAX_BATCH_WRITES,
    OPSDESK_DIR_NAME,
    REPORT_FILENAME,
    OpsDeskDB,
    find_opsdesk_root,
    read_config,
)
from opsdesk.errors import OpsDeskError
from opsdesk.ids import DEFAULT_APP
from opsdesk.logging import setup_logging
from opsdesk.report import write_report


def get_db() -> OpsDeskDB:
    """Discover .opsdesk/ and return an initialized OpsDeskDB."""
    try:
        opsdesk_dir = find_opsdesk_root()
    except FileNotFoundError:
        click.echo(f"No {OPSDESK_DIR_NAME}/ found. Run 'opsdesk init' first.", err=True)
        sys.exit(1)
    setup_logging(opsdesk_dir)
    config = read_config(opsdesk_dir)
    db = OpsDeskDB(
        opsdesk_dir / DB_FILENAME,
        default_app=config.get("default_app", DEFAULT_APP),
        batch_limit=config.get("batch_limit", MAX_BATCH_WRITES),
    )
    db.initialize()
    return db


def refresh_report(db: OpsDeskDB) -> None:
    """Regenerate report.md after mutations."""
    try:
        opsdesk_dir = find_opsdesk_root()
    except FileNotFoundError:
        return
    write_report(db, opsdesk_dir / REPORT_FILENAME)


def fail(error: Exception | str, as_json: bool) -> NoReturn:
    """Print an error the way every command does and exit 1."""
    message = str(error)
    if as_json:
        payload = {"error": message}
        if isinstance(error, OpsDeskError):
            payload["code"] = error.code
        click.echo(json_mod.dumps(payload))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)
