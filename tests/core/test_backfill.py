"""Tests for assign_missing_ids (display-id backfill)."""

from __future__ import annotations

import pytest

from opsdesk.core import OpsDeskDB
from opsdesk.errors import PermissionDenied, PreconditionFailed
from tests._db_factory import ADMIN, seed


class TestBackfill:
    def test_assigns_in_creation_order(self, db: OpsDeskDB) -> None:
        late = seed(db, title="late", created_at="2025-02-01T00:00:00+00:00")
        early = seed(db, title="early", created_at="2025-01-01T00:00:00+00:00")
        seed(db, title="has id", display_id="EC-5", created_at="2024-12-01T00:00:00+00:00")

        assert db.assign_missing_ids(ADMIN) == 2
        assert db.get_issue(early).display_id == "EC-6"
        assert db.get_issue(late).display_id == "EC-7"

    def test_records_without_timestamp_go_first(self, db: OpsDeskDB) -> None:
        dated = seed(db, title="dated", created_at="2025-01-01T00:00:00+00:00")
        undated = seed(db, title="undated")
        db.assign_missing_ids(ADMIN)
        assert db.get_issue(undated).display_id == "EC-1"
        assert db.get_issue(dated).display_id == "EC-2"

    def test_creation_order_uses_instants(self, db: OpsDeskDB) -> None:
        utc = seed(db, title="utc", created_at="2025-01-01T01:00:00+00:00")
        offset = seed(db, title="offset", created_at="2025-01-01T05:00:00+05:00")  # 00:00Z
        epoch = seed(db, title="epoch", timestamp=1735691400000)  # 00:30Z, in milliseconds
        assert db.assign_missing_ids(ADMIN) == 3
        assert db.get_issue(offset).display_id == "EC-1"
        assert db.get_issue(epoch).display_id == "EC-2"
        assert db.get_issue(utc).display_id == "EC-3"

    def test_legacy_timestamp_keys_drive_order(self, db: OpsDeskDB) -> None:
        b = seed(db, title="b", timestamp="2025-05-02T00:00:00+00:00")
        a = seed(db, title="a", createdAt="2025-05-01T00:00:00+00:00")
        db.assign_missing_ids(ADMIN)
        assert db.get_issue(a).display_id == "EC-1"
        assert db.get_issue(b).display_id == "EC-2"

    def test_prefix_follows_app(self, db: OpsDeskDB) -> None:
        seed(db, title="ac existing", display_id="AC-3")
        ac = seed(db, title="admin", app="Admin Core")
        ec = seed(db, title="exam", app="exam-coach")
        unknown = seed(db, title="mystery", app="Something Else")
        db.assign_missing_ids(ADMIN)
        assert db.get_issue(ac).display_id == "AC-4"
        assert db.get_issue(ec).display_id is not None
        assert {db.get_issue(ec).display_id, db.get_issue(unknown).display_id} == {"EC-1", "EC-2"}

    def test_legacy_field_ids_are_not_missing(self, db: OpsDeskDB) -> None:
        seed(db, title="legacy", issueId="EC-2")
        seed(db, id="EC-9", title="storage-keyed")
        assert db.assign_missing_ids(ADMIN) == 0

    def test_unparsable_id_counts_as_missing(self, db: OpsDeskDB) -> None:
        seed(db, title="known", display_id="EC-3")
        junk = seed(db, title="junk", display_id="TBD")
        assert db.assign_missing_ids(ADMIN) == 1
        assert db.get_issue(junk).display_id == "EC-4"

    def test_nothing_missing_writes_nothing(self, db: OpsDeskDB) -> None:
        db.create_issue("Already numbered")
        before = len(db.get_audit_log(limit=1000))
        assert db.assign_missing_ids(ADMIN) == 0
        assert len(db.get_audit_log(limit=1000)) == before

    def test_second_run_is_noop(self, db: OpsDeskDB) -> None:
        seed(db, title="x")
        assert db.assign_missing_ids(ADMIN) == 1
        assert db.assign_missing_ids(ADMIN) == 0

    def test_deleted_ids_are_never_reused(self, db: OpsDeskDB) -> None:
        seed(db, title="deleted", display_id="EC-10", deleted=True)
        fresh = seed(db, title="fresh")
        db.assign_missing_ids(ADMIN)
        assert db.get_issue(fresh).display_id == "EC-11"

    def test_audited(self, db: OpsDeskDB) -> None:
        iid = seed(db, title="x")
        db.assign_missing_ids(ADMIN)
        records = db.get_audit_log(action="display_id_assigned")
        assert len(records) == 1
        assert records[0]["target_ids"] == [iid]
        assert records[0]["actor"] == ADMIN
        assert records[0]["after"] == {"display_id": "EC-1"}


class TestBackfillGuards:
    def test_non_admin_denied_without_writes(self, db: OpsDeskDB) -> None:
        db.add_user("reporter", email="r@example.com", actor=ADMIN)
        iid = seed(db, title="x")
        with pytest.raises(PermissionDenied):
            db.assign_missing_ids("reporter")
        assert db.get_issue(iid).display_id is None

    def test_unknown_actor_denied(self, db: OpsDeskDB) -> None:
        with pytest.raises(PermissionError):
            db.assign_missing_ids("nobody")

    def test_batch_ceiling(self, small_batch_db: OpsDeskDB) -> None:
        ids = [seed(small_batch_db, title=f"t{n}") for n in range(3)]
        with pytest.raises(PreconditionFailed, match="batch limit"):
            small_batch_db.assign_missing_ids(ADMIN)
        assert all(small_batch_db.get_issue(i).display_id is None for i in ids)
