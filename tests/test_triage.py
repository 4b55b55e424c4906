"""Tests for the triage rule table, bucket ordering and summary."""

from __future__ import annotations

from typing import Any

import pytest

from opsdesk.core import Issue
from opsdesk.triage import (
    TRIAGE_RULES,
    classify,
    filter_open,
    format_category,
    match_rule,
    normalize,
)

_counter = 0


def make_issue(**kwargs: Any) -> Issue:
    global _counter
    _counter += 1
    kwargs.setdefault("id", f"iss-{_counter:04d}")
    kwargs.setdefault("created_at", f"2025-01-01T00:00:{_counter % 60:02d}+00:00")
    return Issue(**kwargs)


def _only_entry(issue: Issue) -> tuple[str, str, str]:
    result = classify([issue])
    for bucket in ("fix_now", "fix_next", "parked"):
        entries = result.bucket(bucket)  # type: ignore[arg-type]
        if entries:
            return bucket, entries[0].rule, entries[0].reason
    raise AssertionError("issue landed in no bucket")


class TestRules:
    def test_critical_in_fix_now_category(self) -> None:
        issue = make_issue(severity="S1", status="new", type="billing_subscription")
        assert _only_entry(issue) == ("fix_now", "fix_now_critical", "Critical in Billing Subscription — blocks tester trust")

    def test_high_in_fix_now_category(self) -> None:
        issue = make_issue(severity="S2", status="reviewed", type="user_interface_ux")
        assert _only_entry(issue) == ("fix_now", "fix_now_high", "High severity in User Interface Ux — visible to users")

    def test_critical_in_progress_goes_to_fix_next(self) -> None:
        issue = make_issue(severity="S1", status="in_progress", type="billing_subscription")
        assert _only_entry(issue) == (
            "fix_next",
            "critical_not_actionable",
            'S1 but status is "in_progress" — may already be in progress',
        )

    def test_critical_outside_categories(self) -> None:
        bucket, rule, _ = _only_entry(make_issue(severity="S1", status="new", type="content_typo"))
        assert (bucket, rule) == ("fix_next", "critical_not_actionable")

    def test_high_outside_fix_now(self) -> None:
        bucket, rule, reason = _only_entry(make_issue(severity="S2", status="backlogged", type="billing_subscription"))
        assert (bucket, rule, reason) == ("fix_next", "high_outside_fix_now", "High severity but outside Fix-Now criteria")

    def test_medium(self) -> None:
        bucket, rule, reason = _only_entry(make_issue(severity="S3", status="new", type="tutor_ai_output"))
        assert (bucket, rule) == ("fix_next", "medium_severity")
        assert reason == "Medium severity — address when Fix-Now is clear"

    def test_low(self) -> None:
        assert _only_entry(make_issue(severity="S4", status="new", type="billing_subscription"))[:2] == ("parked", "low_severity")

    def test_cosmetic_override_parks_critical(self) -> None:
        issue = make_issue(severity="S1", status="new", type="auth_account_access", classification="cosmetic")
        assert _only_entry(issue)[:2] == ("parked", "override_cosmetic")

    def test_blocking_override_promotes_low(self) -> None:
        issue = make_issue(severity="S4", classification="blocking")
        assert _only_entry(issue) == ("fix_now", "override_blocking", "Explicitly classified as blocking")

    @pytest.mark.parametrize("classification", ["misleading", "trust"])
    def test_signal_overrides(self, classification: str) -> None:
        bucket, rule, reason = _only_entry(make_issue(severity="S1", status="new", type="tutor_ai_output", classification=classification))
        assert (bucket, rule) == ("fix_next", "override_signal")
        assert reason == f"Explicitly classified as {classification} — product/trust signal"

    def test_first_match_wins(self) -> None:
        t = normalize(make_issue(severity="S1", status="new", type="quiz_assessment_logic", classification="blocking"))
        assert match_rule(t).name == "override_blocking"

    def test_rule_names_unique(self) -> None:
        names = [r.name for r in TRIAGE_RULES]
        assert len(names) == len(set(names))


class TestNormalization:
    def test_missing_fields_default(self) -> None:
        t = normalize(make_issue())
        assert (t.severity, t.status, t.type, t.classification) == ("S3", "new", "unknown", None)

    def test_unknown_severity_treated_as_medium(self) -> None:
        assert normalize(make_issue(severity="P0")).severity == "S3"

    def test_status_case_insensitive(self) -> None:
        issue = make_issue(severity="S1", status="NEW", type="tutor_ai_output")
        assert _only_entry(issue)[0] == "fix_now"

    def test_format_category(self) -> None:
        assert format_category("auth_account_access") == "Auth Account Access"
        assert format_category("unknown") == "Unknown"


class TestFilterOpen:
    @pytest.mark.parametrize("status", ["closed", "resolved", "released", "archived", "done", "Closed"])
    def test_terminal_statuses_excluded(self, status: str) -> None:
        assert filter_open([make_issue(status=status)]) == []

    def test_open_and_missing_status_kept(self) -> None:
        issues = [make_issue(status="in_progress"), make_issue(status=None), make_issue(status="backlogged")]
        assert filter_open(issues) == issues

    def test_deleted_excluded(self) -> None:
        assert filter_open([make_issue(deleted=True)]) == []


class TestOrdering:
    def test_s1_first_then_oldest_then_id(self) -> None:
        old_s3 = make_issue(id="iss-b", severity="S3", created_at="2025-01-01T00:00:00+00:00")
        new_s1 = make_issue(id="iss-c", severity="S1", status="in_progress", created_at="2025-06-01T00:00:00+00:00")
        tie_a = make_issue(id="iss-a", severity="S2", created_at="2025-01-01T00:00:00+00:00", status="closed_loop")
        result = classify([old_s3, tie_a, new_s1])
        assert [e.issue.id for e in result.fix_next] == ["iss-c", "iss-a", "iss-b"]

    def test_parked_oldest_first(self) -> None:
        newer = make_issue(id="iss-1", severity="S4", created_at="2025-03-01T00:00:00+00:00")
        older = make_issue(id="iss-2", severity="S4", created_at="2025-02-01T00:00:00+00:00")
        assert [e.issue.id for e in classify([newer, older]).parked] == ["iss-2", "iss-1"]

    def test_mixed_timezones_compare_as_instants(self) -> None:
        utc_later = make_issue(id="iss-x", severity="S3", created_at="2025-01-01T10:00:00+00:00")
        offset_earlier = make_issue(id="iss-y", severity="S3", created_at="2025-01-01T11:00:00+02:00")
        assert [e.issue.id for e in classify([utc_later, offset_earlier]).fix_next] == ["iss-y", "iss-x"]

    def test_epoch_created_at_compares_with_iso(self) -> None:
        epoch_newer = make_issue(id="iss-a", severity="S4", created_at="1717200000000")  # 2024-06-01
        iso_older = make_issue(id="iss-z", severity="S4", created_at="2024-01-01T00:00:00+00:00")
        assert [e.issue.id for e in classify([epoch_newer, iso_older]).parked] == ["iss-z", "iss-a"]

    def test_missing_created_at_sorts_first(self) -> None:
        dated = make_issue(id="iss-1", severity="S4")
        undated = make_issue(id="iss-2", severity="S4", created_at=None)
        assert [e.issue.id for e in classify([dated, undated]).parked] == ["iss-2", "iss-1"]


class TestCompletenessAndSummary:
    def test_every_open_issue_in_exactly_one_bucket(self) -> None:
        issues = [
            make_issue(severity=sev, status=status, type=kind, classification=cls)
            for sev in ("S1", "S2", "S3", "S4", None, "weird")
            for status in ("new", "reviewed", "in_progress", None)
            for kind in ("billing_subscription", "content_typo", None)
            for cls in (None, "blocking", "trust", "cosmetic")
        ]
        result = classify(issues)
        placed = [e.issue.id for e in result.fix_now + result.fix_next + result.parked]
        assert sorted(placed) == sorted(i.id for i in issues)

    def test_summary(self) -> None:
        issues = [
            make_issue(severity="S1", type="content_typo"),
            make_issue(severity="S2", type="quiz_assessment_logic"),
            make_issue(severity="S4"),
            make_issue(),
        ]
        summary = classify(issues).summary
        assert summary == {
            "total_open": 4,
            "by_severity": {"S1": 1, "S2": 1, "S3": 1, "S4": 1},
            "critical_risk_present": True,
            "tester_trust_risk_present": True,
        }

    def test_trust_risk_needs_high_severity_in_trust_category(self) -> None:
        summary = classify([make_issue(severity="S3", type="tutor_ai_output"), make_issue(severity="S1", type="billing_subscription")]).summary
        assert summary is not None
        assert summary["critical_risk_present"] is True
        assert summary["tester_trust_risk_present"] is False

    def test_empty(self) -> None:
        result = classify([])
        assert result.fix_now == result.fix_next == result.parked == []
        assert result.summary is not None
        assert result.summary["total_open"] == 0
        assert result.summary["critical_risk_present"] is False
