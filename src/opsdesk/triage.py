"""Operator triage: sort open issues into Fix-Now, Fix-Next and Parked.

The decision table is ``TRIAGE_RULES``, evaluated top to bottom with the first
match winning. The last three rules together cover every severity, so each
open issue lands in exactly one bucket. Classification is a pure function of
its input and never raises on malformed records; missing fields fall back to
``S3`` / ``new`` / ``unknown`` before the rules see them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from opsdesk.types.api import SeverityCounts, TriageSummary
from opsdesk.validation import VALID_SEVERITIES, normalize_severity, parse_timestamp

if TYPE_CHECKING:
    from opsdesk.core import Issue

Bucket = Literal["fix_now", "fix_next", "parked"]

TERMINAL_STATUSES = frozenset({"closed", "resolved", "released", "archived", "done"})
ACTIONABLE_STATUSES = frozenset({"new", "reviewed"})

# Categories where a high-severity, untouched issue is worth dropping everything for.
FIX_NOW_CATEGORIES = frozenset(
    {
        "auth_account_access",
        "user_interface_ux",
        "quiz_assessment_logic",
        "tutor_ai_output",
        "billing_subscription",
    }
)
# Categories whose failures make testers stop trusting the product.
TRUST_RISK_CATEGORIES = frozenset({"quiz_assessment_logic", "tutor_ai_output"})

DEFAULT_SEVERITY = "S3"
DEFAULT_STATUS = "new"
DEFAULT_TYPE = "unknown"

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class TriageInput:
    """The normalized view of an issue that rules match against."""

    issue: Issue
    severity: str
    status: str
    type: str
    classification: str | None


@dataclass(frozen=True)
class TriageRule:
    name: str
    bucket: Bucket
    matches: Callable[[TriageInput], bool]
    reason: Callable[[TriageInput], str]


@dataclass(frozen=True)
class TriageEntry:
    issue: Issue
    rule: str
    reason: str


@dataclass
class TriageResult:
    fix_now: list[TriageEntry] = field(default_factory=list)
    fix_next: list[TriageEntry] = field(default_factory=list)
    parked: list[TriageEntry] = field(default_factory=list)
    summary: TriageSummary | None = None

    def bucket(self, name: Bucket) -> list[TriageEntry]:
        return getattr(self, name)  # type: ignore[no-any-return]


def format_category(value: str) -> str:
    """``"billing_subscription"`` -> ``"Billing Subscription"``."""
    return " ".join(word.capitalize() for word in value.replace("_", " ").split())


def _gated(severity: str) -> Callable[[TriageInput], bool]:
    def matches(t: TriageInput) -> bool:
        return t.severity == severity and t.status in ACTIONABLE_STATUSES and t.type in FIX_NOW_CATEGORIES

    return matches


TRIAGE_RULES: tuple[TriageRule, ...] = (
    # Explicit operator overrides
    TriageRule(
        "override_blocking",
        "fix_now",
        lambda t: t.classification == "blocking",
        lambda t: "Explicitly classified as blocking",
    ),
    TriageRule(
        "override_signal",
        "fix_next",
        lambda t: t.classification in ("misleading", "trust"),
        lambda t: f"Explicitly classified as {t.classification} — product/trust signal",
    ),
    TriageRule(
        "override_cosmetic",
        "parked",
        lambda t: t.classification == "cosmetic",
        lambda t: "Explicitly classified as cosmetic",
    ),
    # Severity-driven defaults
    TriageRule(
        "fix_now_critical",
        "fix_now",
        _gated("S1"),
        lambda t: f"Critical in {format_category(t.type)} — blocks tester trust",
    ),
    TriageRule(
        "fix_now_high",
        "fix_now",
        _gated("S2"),
        lambda t: f"High severity in {format_category(t.type)} — visible to users",
    ),
    TriageRule(
        "low_severity",
        "parked",
        lambda t: t.severity == "S4",
        lambda t: "Low severity — safe to defer",
    ),
    TriageRule(
        "high_outside_fix_now",
        "fix_next",
        lambda t: t.severity == "S2",
        lambda t: "High severity but outside Fix-Now criteria",
    ),
    TriageRule(
        "medium_severity",
        "fix_next",
        lambda t: t.severity == "S3",
        lambda t: "Medium severity — address when Fix-Now is clear",
    ),
    TriageRule(
        "critical_not_actionable",
        "fix_next",
        lambda t: t.severity == "S1",
        lambda t: f'S1 but status is "{t.status}" — may already be in progress',
    ),
)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def effective_status(issue: Issue) -> str:
    return _clean(getattr(issue, "status", None)).lower() or DEFAULT_STATUS


def effective_severity(issue: Issue) -> str:
    severity = normalize_severity(getattr(issue, "severity", None))
    return severity if severity in VALID_SEVERITIES else DEFAULT_SEVERITY


def normalize(issue: Issue) -> TriageInput:
    return TriageInput(
        issue=issue,
        severity=effective_severity(issue),
        status=effective_status(issue),
        type=_clean(getattr(issue, "type", None)) or DEFAULT_TYPE,
        classification=_clean(getattr(issue, "classification", None)).lower() or None,
    )


def is_open(issue: Issue) -> bool:
    return not getattr(issue, "deleted", False) and effective_status(issue) not in TERMINAL_STATUSES


def filter_open(issues: Iterable[Issue]) -> list[Issue]:
    return [i for i in issues if is_open(i)]


def _created(issue: Issue) -> datetime:
    """Creation instant in UTC. Missing or unparseable sorts first."""
    return parse_timestamp(issue.created_at) or _EPOCH


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def match_rule(t: TriageInput) -> TriageRule:
    for rule in TRIAGE_RULES:
        if rule.matches(t):
            return rule
    # Unreachable: severity is always one of S1-S4 after normalization.
    return TRIAGE_RULES[-2]


def _priority_key(entry: TriageEntry) -> tuple[int, datetime, str]:
    weight = 0 if effective_severity(entry.issue) == "S1" else 1
    return (weight, _created(entry.issue), entry.issue.id)


def _age_key(entry: TriageEntry) -> tuple[datetime, str]:
    return (_created(entry.issue), entry.issue.id)


def summarize(open_issues: Sequence[Issue]) -> TriageSummary:
    counts = SeverityCounts(S1=0, S2=0, S3=0, S4=0)
    trust_risk = False
    for issue in open_issues:
        t = normalize(issue)
        counts[t.severity] += 1  # type: ignore[literal-required]
        if t.severity in ("S1", "S2") and t.type in TRUST_RISK_CATEGORIES:
            trust_risk = True
    return TriageSummary(
        total_open=len(open_issues),
        by_severity=counts,
        critical_risk_present=counts["S1"] > 0,
        tester_trust_risk_present=trust_risk,
    )


def classify(open_issues: Sequence[Issue]) -> TriageResult:
    """Bucket pre-filtered open issues and order each bucket.

    Fix-Now and Fix-Next put S1 first, then oldest first, then by storage id.
    Parked is oldest first, then by storage id.
    """
    result = TriageResult()
    for issue in open_issues:
        t = normalize(issue)
        rule = match_rule(t)
        result.bucket(rule.bucket).append(TriageEntry(issue=issue, rule=rule.name, reason=rule.reason(t)))
    result.fix_now.sort(key=_priority_key)
    result.fix_next.sort(key=_priority_key)
    result.parked.sort(key=_age_key)
    result.summary = summarize(open_issues)
    return result
