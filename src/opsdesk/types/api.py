"""TypedDicts for maintenance results, operator reports and HTTP responses."""

from __future__ import annotations

from typing import Any, TypedDict

from opsdesk.types.core import ISOTimestamp, IssueDict


class ErrorResponse(TypedDict):
    """Standard error envelope returned by CLI --json and dashboard error paths."""

    error: str
    code: str


class RepairResult(TypedDict):
    fixed: int
    log: list[str]


class AuditRecord(TypedDict):
    id: int
    actor: str
    action: str
    target_ids: list[str]
    before: dict[str, Any]
    after: dict[str, Any]
    created_at: ISOTimestamp


# ---------------------------------------------------------------------------
# Operator report
# ---------------------------------------------------------------------------


class SeverityCounts(TypedDict):
    S1: int
    S2: int
    S3: int
    S4: int


class TriageSummary(TypedDict):
    total_open: int
    by_severity: SeverityCounts
    critical_risk_present: bool
    tester_trust_risk_present: bool


class ReportItem(TypedDict):
    issue: IssueDict
    display_id: str
    assignee: str
    reason: str
    rule: str


class OperatorReport(TypedDict):
    summary: TriageSummary
    fix_now: list[ReportItem]
    fix_next: list[ReportItem]
    parked: list[ReportItem]
