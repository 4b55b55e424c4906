"""File exchange: reading bulk-import files and writing the CSV export."""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

from opsdesk.errors import InvalidArgument
from opsdesk.ids import extract_display_id, normalize_app_value, parse_display_id

if TYPE_CHECKING:
    from opsdesk.core import Issue, OpsDeskDB

logger = logging.getLogger(__name__)

# Read window for exports; large enough to cover the whole collection.
EXPORT_LIMIT = 100000

EXPORT_COLUMNS = (
    "Display ID",
    "Storage ID",
    "Summary",
    "Severity",
    "Classification",
    "Status",
    "Planned For Version",
    "App",
    "Created At",
    "Last Updated",
)


# ---------------------------------------------------------------------------
# Import files
# ---------------------------------------------------------------------------


def load_import_rows(path: str | Path) -> list[dict[str, Any]]:
    """Parse a .json (array of objects) or .csv (header row) import file.

    Only the file format is checked here. Row validation and the row ceiling
    belong to ``OpsDeskDB.import_issues``.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        msg = f"Cannot read {path}: {exc}"
        raise InvalidArgument(msg) from exc

    if suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"Failed to parse JSON file {path.name}: {exc}"
            raise InvalidArgument(msg) from exc
        if not isinstance(data, list):
            msg = "JSON file must contain an array of objects"
            raise InvalidArgument(msg)
        rows = data
    elif suffix == ".csv":
        reader = csv.DictReader(io.StringIO(text, newline=""))
        rows = [
            {k.strip(): v for k, v in row.items() if k is not None}
            for row in reader
            if any((v or "").strip() for v in row.values() if isinstance(v, str))
        ]
    else:
        msg = f"Unsupported file type {suffix or '(none)'}; use .csv or .json"
        raise InvalidArgument(msg)

    if not rows:
        msg = f"{path.name} contains no data rows"
        raise InvalidArgument(msg)
    return rows


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


def _suffix_of(issue: Issue) -> int:
    parsed = parse_display_id(extract_display_id(_identity_view(issue)))
    return parsed[1] if parsed else 0


def _identity_view(issue: Issue) -> Mapping[str, Any]:
    return {"id": issue.id, "display_id": issue.display_id, "fields": issue.fields}


def _export_row(issue: Issue) -> list[str]:
    fields = issue.fields
    summary = issue.description or (fields.get("message") if isinstance(fields.get("message"), str) else "") or ""
    return [
        extract_display_id(_identity_view(issue)) or "",
        issue.id,
        summary,
        issue.severity or "",
        issue.classification or "",
        issue.status or "",
        issue.planned_for_version or "",
        issue.app or "",
        issue.created_at or "",
        issue.updated_at or "",
    ]


def write_issues_csv(issues: Iterable[Issue], out: TextIO) -> int:
    """Write issues sorted by numeric display-id suffix. Returns rows written."""
    ordered = sorted(issues, key=lambda i: (_suffix_of(i), i.id))
    writer = csv.writer(out)
    writer.writerow(EXPORT_COLUMNS)
    for issue in ordered:
        writer.writerow(_export_row(issue))
    return len(ordered)


def export_issues_csv(
    db: OpsDeskDB,
    path: str | Path,
    *,
    app: str | None = None,
    include_deleted: bool = False,
) -> int:
    issues = db.list_issues(include_deleted=include_deleted, limit=EXPORT_LIMIT)
    if app is not None:
        wanted = normalize_app_value(app)
        issues = [i for i in issues if normalize_app_value(i.app) == wanted]
    with Path(path).open("w", newline="", encoding="utf-8") as f:
        count = write_issues_csv(issues, f)
    logger.info("Exported %d issues to %s", count, path, extra={"action": "export", "count": count})
    return count
