"""Tests for the operator report composer and its markdown output."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from opsdesk.core import Issue, OpsDeskDB
from opsdesk.report import (
    build_operator_report,
    generate_report,
    render_report_markdown,
    resolve_assignee,
    write_report,
)
from tests._db_factory import ADMIN, ADMIN_EMAIL, seed

EMAILS = {"uid-known": "known@example.com"}


class TestResolveAssignee:
    @pytest.mark.parametrize(
        ("user_id", "expected"),
        [
            (None, "Unassigned"),
            ("", "Unassigned"),
            ("uid-known", "known@example.com"),
            ("someone@example.com", "someone@example.com"),
            ("abcdefghijklmnop", "Unknown (abcdefgh...)"),
        ],
    )
    def test_labels(self, user_id: str | None, expected: str) -> None:
        assert resolve_assignee(user_id, EMAILS.get) == expected


class TestBuildOperatorReport:
    def test_shape_and_filtering(self) -> None:
        issues = [
            Issue(id="iss-1", display_id="EC-1", severity="S1", status="new", type="tutor_ai_output", user_id="uid-known", created_at="2025-01-01T00:00:00+00:00"),
            Issue(id="iss-2", display_id="EC-2", severity="S3", status="closed", created_at="2025-01-02T00:00:00+00:00"),
            Issue(id="iss-3", severity="S4", status="new", created_at="2025-01-03T00:00:00+00:00"),
        ]
        report = build_operator_report(issues, EMAILS.get)

        assert report["summary"]["total_open"] == 2
        assert [item["display_id"] for item in report["fix_now"]] == ["EC-1"]
        assert report["fix_next"] == []
        (parked,) = report["parked"]
        assert parked["display_id"] == "iss-3"
        assert parked["assignee"] == "Unassigned"
        assert parked["rule"] == "low_severity"

        item = report["fix_now"][0]
        assert set(item) == {"issue", "display_id", "assignee", "reason", "rule"}
        assert item["assignee"] == "known@example.com"
        assert item["issue"]["id"] == "iss-1"

    def test_lookup_called_with_uid(self) -> None:
        seen: list[str] = []

        def lookup(uid: str) -> str | None:
            seen.append(uid)
            return None

        build_operator_report([Issue(id="iss-1", user_id="raw-uid-123")], lookup)
        assert seen == ["raw-uid-123"]


class TestGenerateReport:
    def test_from_store(self, db: OpsDeskDB) -> None:
        db.create_issue("Login loop", severity="S1", type="auth_account_access", user_id=ADMIN)
        db.create_issue("Typo", severity="S4", user_id="stranger-uid-xyz")
        gone = db.create_issue("Removed", severity="S1", type="auth_account_access")
        db.soft_delete_issue(gone.id, actor=ADMIN)
        seed(db, title="Legacy closed", severity="S1", status="resolved")

        report = generate_report(db)

        assert report["summary"]["total_open"] == 2
        assert report["summary"]["by_severity"]["S1"] == 1
        assert report["fix_now"][0]["assignee"] == ADMIN_EMAIL
        assert report["parked"][0]["assignee"] == "Unknown (stranger...)"

    def test_closed_history_does_not_hide_old_open_issues(self, db: OpsDeskDB, monkeypatch: pytest.MonkeyPatch) -> None:
        old = seed(db, title="Old outage", severity="S1", status="in_progress", created_at="2020-01-01T00:00:00+00:00")
        for n in range(3):
            seed(db, title=f"Closed {n}", severity="S2", status="closed", created_at=f"2025-0{n + 1}-01T00:00:00+00:00")

        def windowed(**kwargs: object) -> list[Issue]:
            raise AssertionError("report must not read through the paginated list")

        monkeypatch.setattr(db, "list_issues", windowed)
        report = generate_report(db)

        assert report["summary"]["total_open"] == 1
        assert [item["issue"]["id"] for item in report["fix_next"]] == [old]

    def test_write_report(self, db: OpsDeskDB, tmp_path: Path) -> None:
        db.create_issue("Payment fails", severity="S2", type="billing_subscription")
        out = tmp_path / "reports" / "report.md"
        write_report(db, out)
        content = out.read_text()
        assert content.startswith("# Operator Report")
        assert "## Fix Now (1)" in content
        assert "EC-1" in content
        assert not list(out.parent.glob(".report_*"))


class TestRenderMarkdown:
    def test_sections_and_flags(self) -> None:
        report = build_operator_report(
            [Issue(id="iss-1", display_id="EC-7", title="Wrong\nanswer", severity="S1", status="new", type="quiz_assessment_logic")],
            EMAILS.get,
        )
        text = render_report_markdown(report, now=datetime(2025, 1, 1, tzinfo=UTC))
        assert "Updated: 2025-01-01T00:00:00+00:00" in text
        assert "Critical risk present" in text
        assert "Tester trust risk" in text
        assert '- EC-7 S1 "Wrong answer" — Critical in Quiz Assessment Logic — blocks tester trust (Unassigned)' in text
        assert "## Parked (0)" in text
