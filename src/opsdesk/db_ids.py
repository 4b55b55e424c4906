"""IdentityMixin — display-id allocation, backfill, collision repair and bulk import.

Every operation here starts from ``_scan_identity_records()``: a read of the
whole ``issues`` table with no ORDER BY and no LIMIT. An ordered or limited
query would silently skip records that lack the sort field, so the maximum
suffix could go backwards. The maximum is derived per call and never cached.

Writes for one call go into a single transaction. If the number of writes
would exceed ``batch_limit`` the call fails before writing anything.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from opsdesk.db_base import DBMixinProtocol, _now_iso
from opsdesk.errors import InvalidArgument, PreconditionFailed
from opsdesk.ids import (
    APP_KEYS,
    canonical_app,
    creation_key,
    extract_display_id,
    format_display_id,
    max_suffix,
    max_suffixes,
    next_display_id_from,
    parse_display_id,
    prefix_for_app,
    validate_prefix,
)
from opsdesk.types.api import RepairResult
from opsdesk.validation import normalize_import_row

if TYPE_CHECKING:
    from opsdesk.core import Issue
    from opsdesk.validation import ImportRow

logger = logging.getLogger(__name__)


class IdentityMixin(DBMixinProtocol):
    """Identifier maintenance over full-collection scans.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    """

    if TYPE_CHECKING:
        # From AuditMixin
        def _record_audit(
            self,
            actor: str,
            action: str,
            target_ids: list[str],
            *,
            before: dict[str, Any] | None = None,
            after: dict[str, Any] | None = None,
        ) -> None: ...

        # From UsersMixin
        def require_admin(self, actor: str) -> str: ...

        # From IssuesMixin
        def _build_issues_batch(self, issue_ids: list[str]) -> list[Issue]: ...

        # From OpsDeskDB
        def _generate_unique_id(self) -> str: ...

    # -- Scanning ------------------------------------------------------------

    def _scan_identity_records(self) -> list[dict[str, Any]]:
        rows = self.conn.execute("SELECT id, display_id, app, created_at, deleted, fields FROM issues").fetchall()
        records: list[dict[str, Any]] = []
        for r in rows:
            try:
                fields = json.loads(r["fields"]) if r["fields"] else {}
            except json.JSONDecodeError:
                logger.warning("Issue %s has unparseable fields JSON; ignoring its legacy ids", r["id"])
                fields = {}
            records.append(
                {
                    "id": r["id"],
                    "display_id": r["display_id"],
                    "app": r["app"],
                    "created_at": r["created_at"],
                    "deleted": bool(r["deleted"]),
                    "fields": fields if isinstance(fields, dict) else {},
                }
            )
        return records

    def _check_batch_size(self, writes: int, operation: str) -> None:
        if writes > self.batch_limit:
            msg = f"{operation} needs {writes} writes, more than the batch limit of {self.batch_limit}; nothing was written"
            raise PreconditionFailed(msg)

    # -- Allocation ----------------------------------------------------------

    def next_display_id(self, prefix: str) -> str:
        """Return ``<prefix>-(max+1)`` over every record, live or deleted.

        A pure read. Two concurrent callers can get the same answer; the
        repair pass is what resolves that.
        """
        validate_prefix(prefix)
        return next_display_id_from(self._scan_identity_records(), prefix)

    def _allocate_display_id(self, prefix: str) -> str:
        display_id = self.next_display_id(prefix)
        logger.debug("Allocated %s", display_id)
        return display_id

    # -- Backfill ------------------------------------------------------------

    def assign_missing_ids(self, actor: str) -> int:
        """Give every record without a parsable identifier the next id for its app.

        Assignment follows creation order, so older records get lower numbers.
        Returns the number of records updated.
        """
        actor = self.require_admin(actor)
        records = self._scan_identity_records()
        missing = sorted((r for r in records if extract_display_id(r) is None), key=creation_key)
        if not missing:
            logger.info("Backfill found nothing to assign", extra={"action": "backfill", "actor": actor, "count": 0})
            return 0
        self._check_batch_size(len(missing), "Backfill")

        highest = max_suffixes(records)
        now = _now_iso()
        try:
            for record in missing:
                prefix = prefix_for_app(record["app"])
                highest[prefix] += 1
                display_id = format_display_id(prefix, highest[prefix])
                self.conn.execute(
                    "UPDATE issues SET display_id = ?, updated_at = ? WHERE id = ?",
                    (display_id, now, record["id"]),
                )
                self._record_audit(
                    actor,
                    "display_id_assigned",
                    [record["id"]],
                    before={"display_id": record["display_id"]},
                    after={"display_id": display_id},
                )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info(
            "Backfilled %d display ids",
            len(missing),
            extra={"action": "backfill", "actor": actor, "count": len(missing)},
        )
        return len(missing)

    # -- Repair --------------------------------------------------------------

    def find_duplicate_groups(self, records: Iterable[Mapping[str, Any]] | None = None) -> dict[tuple[str, int], list[Mapping[str, Any]]]:
        """Live records sharing a ``(prefix, suffix)``, each group in creation order.

        Only groups with two or more members are returned.
        """
        if records is None:
            records = self._scan_identity_records()
        groups: dict[tuple[str, int], list[Mapping[str, Any]]] = defaultdict(list)
        for record in records:
            if record.get("deleted"):
                continue
            parsed = parse_display_id(extract_display_id(record))
            if parsed is not None:
                groups[parsed].append(record)
        return {key: sorted(members, key=creation_key) for key, members in sorted(groups.items()) if len(members) > 1}

    def repair_duplicate_ids(self, actor: str) -> RepairResult:
        """Reassign every non-earliest member of a collision group to a fresh id.

        New ids continue from the per-prefix maximum taken once, before any
        reassignment, over the whole collection. Running it again on a
        repaired store reports nothing to fix.
        """
        actor = self.require_admin(actor)
        records = self._scan_identity_records()
        groups = self.find_duplicate_groups(records)
        if not groups:
            logger.info("Repair found no duplicates", extra={"action": "repair", "actor": actor, "count": 0})
            return RepairResult(fixed=0, log=["No duplicates found"])
        self._check_batch_size(sum(len(members) - 1 for members in groups.values()), "Repair")

        highest = max_suffixes(records)
        log: list[str] = []
        now = _now_iso()
        try:
            for (prefix, number), members in groups.items():
                if prefix not in highest:
                    highest[prefix] = max_suffix(records, prefix)
                old_id = format_display_id(prefix, number)
                for position, record in enumerate(members[1:], start=1):
                    highest[prefix] += 1
                    new_id = format_display_id(prefix, highest[prefix])
                    self.conn.execute(
                        "UPDATE issues SET display_id = ?, updated_at = ? WHERE id = ?",
                        (new_id, now, record["id"]),
                    )
                    self._record_audit(
                        actor,
                        "display_id_repaired",
                        [record["id"]],
                        before={"display_id": old_id},
                        after={"display_id": new_id},
                    )
                    log.append(f"{old_id} (duplicate #{position}) → {new_id}")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info(
            "Repaired %d duplicate display ids",
            len(log),
            extra={"action": "repair", "actor": actor, "count": len(log)},
        )
        return RepairResult(fixed=len(log), log=log)

    # -- Bulk import ---------------------------------------------------------

    def import_issues(self, rows: list[Mapping[str, Any]], *, actor: str) -> list[Issue]:
        """Create issues from import rows, all or nothing.

        Every row is validated before anything is written. Identifiers are
        seeded once per prefix from a single scan and handed out in input order.
        """
        actor = self.require_admin(actor)
        if not rows:
            return []
        self._check_batch_size(len(rows), "Import")

        normalized: list[ImportRow] = []
        problems: list[str] = []
        for index, raw in enumerate(rows, start=1):
            row, errors = normalize_import_row(raw)
            if row is not None and row["app"] is not None and canonical_app(row["app"]) is None:
                errors = [f"app '{row['app']}' is not a known app (valid: {', '.join(APP_KEYS)})"]
            if errors:
                problems.extend(f"Row {index}: {e}" for e in errors)
            elif row is not None:
                normalized.append(row)
        if problems:
            msg = f"Import rejected, {len(problems)} problem(s): " + "; ".join(problems)
            raise InvalidArgument(msg)

        highest = max_suffixes(self._scan_identity_records())
        created_ids: list[str] = []
        now = _now_iso()
        try:
            for row in normalized:
                app_key = canonical_app(row["app"]) or self.default_app
                prefix = prefix_for_app(app_key)
                highest[prefix] += 1
                display_id = format_display_id(prefix, highest[prefix])
                issue_id = self._generate_unique_id()
                fields = {"source": row["source"]} if row["source"] else {}
                self.conn.execute(
                    "INSERT INTO issues (id, display_id, app, title, description, severity, status, type, "
                    "classification, user_id, planned_for_version, deleted, created_at, updated_at, fields) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, NULL, 0, ?, ?, ?)",
                    (
                        issue_id,
                        display_id,
                        app_key,
                        row["title"],
                        row["description"],
                        row["severity"],
                        row["status"],
                        row["type"],
                        row["user_id"] or actor,
                        now,
                        now,
                        json.dumps(fields),
                    ),
                )
                if row["notes"]:
                    self.conn.execute(
                        "INSERT INTO notes (issue_id, author, text, created_at) VALUES (?, ?, ?, ?)",
                        (issue_id, actor, row["notes"], now),
                    )
                self._record_audit(actor, "issue_imported", [issue_id], after={"display_id": display_id, "title": row["title"]})
                created_ids.append(issue_id)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info(
            "Imported %d issues",
            len(created_ids),
            extra={"action": "import", "actor": actor, "count": len(created_ids)},
        )
        return self._build_issues_batch(created_ids)

