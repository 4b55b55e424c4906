"""Operator report composer.

Turns the open issue set into the decision-ready brief: triage summary plus
the three ordered buckets, each item carrying its display id, assignee,
reason and the rule that placed it. Also renders that report as markdown.
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from opsdesk.triage import TriageEntry, classify, filter_open
from opsdesk.types.api import OperatorReport, ReportItem

if TYPE_CHECKING:
    from opsdesk.core import Issue, OpsDeskDB

UNASSIGNED = "Unassigned"

EmailLookup = Callable[[str], "str | None"]

# Matches C0/C1 control characters except tab/newline (which we handle separately)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def _sanitize_title(text: str) -> str:
    """Sanitize untrusted text for safe markdown interpolation."""
    text = _CONTROL_CHARS_RE.sub("", text)
    text = " ".join(text.split())
    if len(text) > 200:
        text = text[:197] + "..."
    return text


def resolve_assignee(user_id: str | None, lookup: EmailLookup) -> str:
    """Human label for the reporter/assignee uid.

    Known uid -> email; anything already email-shaped is shown as-is;
    otherwise a truncated uid so the row is still traceable.
    """
    if not user_id:
        return UNASSIGNED
    email = lookup(user_id)
    if email:
        return email
    if "@" in user_id:
        return user_id
    return f"Unknown ({user_id[:8]}...)"


def _item(entry: TriageEntry, lookup: EmailLookup) -> ReportItem:
    issue = entry.issue
    return ReportItem(
        issue=issue.to_dict(),
        display_id=issue.label,
        assignee=resolve_assignee(issue.user_id, lookup),
        reason=entry.reason,
        rule=entry.rule,
    )


def build_operator_report(issues: Iterable[Issue], lookup: EmailLookup) -> OperatorReport:
    """Filter to open issues, classify them and resolve assignees."""
    result = classify(filter_open(issues))
    assert result.summary is not None
    return OperatorReport(
        summary=result.summary,
        fix_now=[_item(e, lookup) for e in result.fix_now],
        fix_next=[_item(e, lookup) for e in result.fix_next],
        parked=[_item(e, lookup) for e in result.parked],
    )


def generate_report(db: OpsDeskDB) -> OperatorReport:
    """Build the operator report from the current store state."""
    emails = db.user_email_map()
    return build_operator_report(db.list_open_issues(), emails.get)


# ---------------------------------------------------------------------------
# Markdown rendering
# ---------------------------------------------------------------------------

_SECTIONS = (
    ("fix_now", "Fix Now"),
    ("fix_next", "Fix Next"),
    ("parked", "Parked"),
)


def render_report_markdown(report: OperatorReport, *, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    summary = report["summary"]
    sev = summary["by_severity"]
    lines: list[str] = [
        "# Operator Report",
        f"Updated: {now.isoformat(timespec='seconds')}",
        "",
        "## Summary",
        f"Open: {summary['total_open']} | S1: {sev['S1']} | S2: {sev['S2']} | S3: {sev['S3']} | S4: {sev['S4']}",
    ]
    if summary["critical_risk_present"]:
        lines.append("- Critical risk present: open S1 issues")
    if summary["tester_trust_risk_present"]:
        lines.append("- Tester trust risk: high-severity quiz or tutor issues are open")
    lines.append("")

    for key, heading in _SECTIONS:
        items: list[ReportItem] = report[key]  # type: ignore[literal-required]
        lines.append(f"## {heading} ({len(items)})")
        if not items:
            lines.append("- (none)")
        for item in items:
            issue = item["issue"]
            severity = issue["severity"] or "S3"
            title = _sanitize_title(issue["title"] or "")
            lines.append(f'- {item["display_id"]} {severity} "{title}" — {item["reason"]} ({item["assignee"]})')
        lines.append("")

    return "\n".join(lines)


def write_report(db: OpsDeskDB, output_path: str | Path) -> OperatorReport:
    """Write the markdown report atomically (temp file + rename)."""
    report = generate_report(db)
    content = render_report_markdown(report)
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=output.parent, suffix=".tmp", prefix=".report_")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_name, str(output))
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    return report
