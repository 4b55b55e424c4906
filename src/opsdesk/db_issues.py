"""IssuesMixin — issue creation, reads, guarded updates, soft delete, and notes.

All methods access ``self.conn``, ``self.require_admin()``, etc. via
Python's MRO when composed into ``OpsDeskDB``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from opsdesk.db_base import DBMixinProtocol, _now_iso
from opsdesk.errors import Internal, InvalidArgument, NotFound
from opsdesk.ids import LEGACY_ID_KEYS, creation_key, get_app_prefix, normalize_app_value, parse_display_id
from opsdesk.triage import TERMINAL_STATUSES
from opsdesk.types.core import NoteRecord
from opsdesk.validation import validate_classification, validate_severity, validate_version

if TYPE_CHECKING:
    from opsdesk.core import Issue

logger = logging.getLogger(__name__)

# Identity keys that no update payload may carry. Stripped silently.
IMMUTABLE_ID_KEYS = frozenset({"display_id", "displayId", *LEGACY_ID_KEYS})

UPDATABLE_FIELDS = (
    "title",
    "description",
    "status",
    "severity",
    "type",
    "classification",
    "planned_for_version",
    "user_id",
)
_UPDATE_ALIASES = {"plannedForVersion": "planned_for_version", "userId": "user_id"}

# Document keys with a dedicated column; anything else lands in ``fields``.
_DOCUMENT_COLUMN_KEYS = {
    "display_id": "display_id",
    "displayId": "display_id",
    "app": "app",
    "title": "title",
    "description": "description",
    "severity": "severity",
    "status": "status",
    "type": "type",
    "classification": "classification",
    "user_id": "user_id",
    "userId": "user_id",
    "planned_for_version": "planned_for_version",
    "plannedForVersion": "planned_for_version",
    "deleted": "deleted",
    "created_at": "created_at",
    "createdAt": "created_at",
    "timestamp": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
}


class IssuesMixin(DBMixinProtocol):
    """Issue CRUD with the display-id immutability guard.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    Actual implementations provided by ``OpsDeskDB`` at composition time via MRO.
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

        # From IdentityMixin
        def _allocate_display_id(self, prefix: str) -> str: ...

        # From OpsDeskDB
        def _generate_unique_id(self) -> str: ...

    # -- Creation ------------------------------------------------------------

    def create_issue(
        self,
        title: str,
        *,
        app: str | None = None,
        severity: str | None = None,
        status: str = "new",
        type: str | None = None,
        classification: str | None = None,
        description: str = "",
        user_id: str | None = None,
        planned_for_version: str | None = None,
        fields: dict[str, Any] | None = None,
        actor: str = "",
    ) -> Issue:
        """Create an issue and assign its display id in the same write.

        This is the user-facing report path, so no admin check. The id comes
        from a full scan at call time; a concurrent creator can compute the
        same value, which the repair pass resolves later.
        """
        if not title or not title.strip():
            msg = "Title cannot be empty"
            raise InvalidArgument(msg)
        app_key = app if app is not None else self.default_app
        prefix = get_app_prefix(app_key)
        if severity is not None:
            severity = validate_severity(severity)
        classification = validate_classification(classification)
        planned_for_version = validate_version(planned_for_version)
        fields = dict(fields or {})
        for key in IMMUTABLE_ID_KEYS & fields.keys():
            logger.debug("create_issue: dropping caller-supplied %s", key)
            fields.pop(key)

        issue_id = self._generate_unique_id()
        now = _now_iso()
        try:
            display_id = self._allocate_display_id(prefix)
            self.conn.execute(
                "INSERT INTO issues (id, display_id, app, title, description, severity, status, type, "
                "classification, user_id, planned_for_version, deleted, created_at, updated_at, fields) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)",
                (
                    issue_id,
                    display_id,
                    app_key,
                    title.strip(),
                    description,
                    severity,
                    status,
                    type,
                    classification,
                    user_id,
                    planned_for_version,
                    now,
                    now,
                    json.dumps(fields),
                ),
            )
            self._record_audit(
                actor or user_id or "anonymous",
                "issue_created",
                [issue_id],
                after={"display_id": display_id, "title": title.strip()},
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info("Created %s as %s", issue_id, display_id, extra={"action": "issue_created", "actor": actor})
        try:
            return self.get_issue(issue_id)
        except NotFound:
            msg = f"Issue {issue_id} vanished after insert"
            raise Internal(msg) from None

    def insert_document(self, document: Mapping[str, Any], *, actor: str = "") -> Issue:
        """Store a raw issue document exactly as given, without allocating an id.

        Legacy writers (older clients, direct store writes, migrations) produce
        records with camelCase keys, missing identifiers or collisions; this is
        the path that lets such records exist so backfill and repair can find
        them. Known keys map onto columns and the rest is kept in ``fields``.
        """
        doc = dict(document)
        issue_id = str(doc.pop("id", "") or self._generate_unique_id())
        columns: dict[str, Any] = {}
        extra: dict[str, Any] = dict(doc.pop("fields", None) or {})
        for key, value in doc.items():
            column = _DOCUMENT_COLUMN_KEYS.get(key)
            if column is None:
                extra[key] = value
            elif column not in columns or value is not None:
                columns[column] = value
        if "description" not in columns and isinstance(extra.get("message"), str):
            columns["description"] = extra["message"]

        try:
            self.conn.execute(
                "INSERT INTO issues (id, display_id, app, title, description, severity, status, type, "
                "classification, user_id, planned_for_version, deleted, created_at, updated_at, fields) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    issue_id,
                    columns.get("display_id"),
                    columns.get("app"),
                    columns.get("title") or "",
                    columns.get("description") or "",
                    columns.get("severity"),
                    columns.get("status"),
                    columns.get("type"),
                    columns.get("classification"),
                    columns.get("user_id"),
                    columns.get("planned_for_version"),
                    1 if columns.get("deleted") else 0,
                    columns.get("created_at"),
                    columns.get("updated_at") or columns.get("created_at"),
                    json.dumps(extra, default=str),
                ),
            )
            self._record_audit(actor or "system", "issue_inserted", [issue_id], after={"display_id": columns.get("display_id")})
            self.conn.commit()
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            msg = f"Cannot insert document {issue_id}: {exc}"
            raise InvalidArgument(msg) from exc
        except Exception:
            self.conn.rollback()
            raise
        return self.get_issue(issue_id)

    # -- Reads ---------------------------------------------------------------

    def get_issue(self, issue_id: str) -> Issue:
        issues = self._build_issues_batch([issue_id])
        if not issues:
            msg = f"Issue not found: {issue_id}"
            raise NotFound(msg)
        return issues[0]

    def resolve_issue(self, ref: str) -> Issue:
        """Look up by display id or storage id.

        A display-id-shaped ref matches the record currently showing that id
        before any storage key, so a legacy record keyed ``EC-1`` that repair
        moved to ``EC-2`` no longer answers to ``EC-1``. When several records
        share a display id (an unrepaired collision), a live record beats a
        deleted one and the earliest-created wins, the same record the repair
        pass would keep.
        """
        issue_id: str | None = None
        display_ref = ref.strip().upper()
        if parse_display_id(display_ref) is not None:
            rows = self.conn.execute(
                "SELECT id, created_at, deleted FROM issues WHERE display_id = ?",
                (display_ref,),
            ).fetchall()
            if rows:
                issue_id = min(rows, key=lambda r: (r["deleted"], creation_key(dict(r))))["id"]
        if issue_id is None:
            row = self.conn.execute("SELECT id FROM issues WHERE id = ?", (ref,)).fetchone()
            if row is not None:
                issue_id = row["id"]
        if issue_id is None:
            msg = f"Issue not found: {ref}"
            raise NotFound(msg)
        return self.get_issue(issue_id)

    def _build_issues_batch(self, issue_ids: list[str]) -> list[Issue]:
        """Build multiple Issues with two queries total (rows + notes), preserving input order."""
        from opsdesk.core import Issue

        if not issue_ids:
            return []

        rows_by_id: dict[str, sqlite3.Row] = {}
        notes_by_id: dict[str, list[NoteRecord]] = {iid: [] for iid in issue_ids}
        # Chunk to stay within SQLite's SQLITE_MAX_VARIABLE_NUMBER limit
        chunk_size = 500
        for i in range(0, len(issue_ids), chunk_size):
            chunk = issue_ids[i : i + chunk_size]
            placeholders = ",".join("?" * len(chunk))
            for r in self.conn.execute(f"SELECT * FROM issues WHERE id IN ({placeholders})", chunk).fetchall():
                rows_by_id[r["id"]] = r
            for r in self.conn.execute(
                f"SELECT id, issue_id, author, text, created_at FROM notes WHERE issue_id IN ({placeholders}) ORDER BY id",
                chunk,
            ).fetchall():
                notes_by_id[r["issue_id"]].append(
                    NoteRecord(id=r["id"], author=r["author"], text=r["text"], created_at=r["created_at"])
                )

        result: list[Issue] = []
        for iid in issue_ids:
            row = rows_by_id.get(iid)
            if row is None:
                continue
            result.append(
                Issue(
                    id=row["id"],
                    display_id=row["display_id"],
                    app=row["app"],
                    title=row["title"],
                    description=row["description"],
                    severity=row["severity"],
                    status=row["status"],
                    type=row["type"],
                    classification=row["classification"],
                    user_id=row["user_id"],
                    planned_for_version=row["planned_for_version"],
                    deleted=bool(row["deleted"]),
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                    fields=json.loads(row["fields"]) if row["fields"] else {},
                    notes=notes_by_id.get(iid, []),
                )
            )
        return result

    def list_issues(
        self,
        *,
        status: str | None = None,
        app: str | None = None,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Issue]:
        """Ordinary read path: newest first, filtered and limited.

        Not for identity work — an ordered, limited query can miss old or
        field-missing records. Allocation uses the full scan in IdentityMixin.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if not include_deleted:
            clauses.append("deleted = 0")
        if status is not None:
            clauses.append("lower(coalesce(status, 'new')) = ?")
            params.append(status.lower())
        if app is not None:
            clauses.append("app = ?")
            params.append(normalize_app_value(app))
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        rows = self.conn.execute(
            f"SELECT id FROM issues {where}ORDER BY coalesce(created_at, '') DESC, id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return self._build_issues_batch([r["id"] for r in rows])

    def list_open_issues(self) -> list[Issue]:
        """Every live issue whose status is not terminal. Unordered and unlimited."""
        placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
        rows = self.conn.execute(
            f"SELECT id FROM issues WHERE deleted = 0 AND lower(trim(coalesce(status, ''))) NOT IN ({placeholders})",
            sorted(TERMINAL_STATUSES),
        ).fetchall()
        return self._build_issues_batch([r["id"] for r in rows])

    # -- Updates -------------------------------------------------------------

    def update_issue(self, issue_id: str, changes: Mapping[str, Any], *, actor: str) -> Issue:
        """Apply an admin update. Identity keys in *changes* are stripped, never applied."""
        actor = self.require_admin(actor)
        current = self.get_issue(issue_id)

        payload: dict[str, Any] = {}
        for key, value in changes.items():
            if key in IMMUTABLE_ID_KEYS:
                logger.info("Stripped immutable %s from update of %s", key, issue_id, extra={"actor": actor})
                continue
            name = _UPDATE_ALIASES.get(key, key)
            if name not in UPDATABLE_FIELDS:
                msg = f"Field '{key}' cannot be updated. Updatable fields: {', '.join(UPDATABLE_FIELDS)}"
                raise InvalidArgument(msg)
            payload[name] = value

        # --- Validate all inputs BEFORE any writes to prevent partial commits ---
        if "title" in payload:
            title = payload["title"]
            if not isinstance(title, str) or not title.strip():
                msg = "Title cannot be empty"
                raise InvalidArgument(msg)
            payload["title"] = title.strip()
        if "status" in payload:
            status = payload["status"]
            if not isinstance(status, str) or not status.strip():
                msg = "Status cannot be empty"
                raise InvalidArgument(msg)
            payload["status"] = status.strip().lower()
        if "severity" in payload:
            payload["severity"] = validate_severity(payload["severity"])
        if "classification" in payload:
            payload["classification"] = validate_classification(payload["classification"])
        if "planned_for_version" in payload:
            payload["planned_for_version"] = validate_version(payload["planned_for_version"])

        before: dict[str, Any] = {}
        after: dict[str, Any] = {}
        for name, value in payload.items():
            old = getattr(current, name)
            if old != value:
                before[name] = old
                after[name] = value
        if not after:
            return current

        assignments = ", ".join(f"{name} = ?" for name in after)
        try:
            self.conn.execute(
                f"UPDATE issues SET {assignments}, updated_at = ? WHERE id = ?",
                [*after.values(), _now_iso(), issue_id],
            )
            self._record_audit(actor, "issue_updated", [issue_id], before=before, after=after)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_issue(issue_id)

    def soft_delete_issue(self, issue_id: str, *, actor: str) -> Issue:
        return self._set_deleted(issue_id, True, actor=actor)

    def restore_issue(self, issue_id: str, *, actor: str) -> Issue:
        return self._set_deleted(issue_id, False, actor=actor)

    def _set_deleted(self, issue_id: str, deleted: bool, *, actor: str) -> Issue:
        actor = self.require_admin(actor)
        current = self.get_issue(issue_id)
        if current.deleted == deleted:
            return current
        try:
            self.conn.execute(
                "UPDATE issues SET deleted = ?, updated_at = ? WHERE id = ?",
                (1 if deleted else 0, _now_iso(), issue_id),
            )
            self._record_audit(
                actor,
                "issue_deleted" if deleted else "issue_restored",
                [issue_id],
                before={"deleted": current.deleted},
                after={"deleted": deleted},
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_issue(issue_id)

    # -- Notes ---------------------------------------------------------------

    def add_note(self, issue_id: str, text: str, *, actor: str) -> NoteRecord:
        """Append an admin annotation. Notes are never edited or removed."""
        actor = self.require_admin(actor)
        self.get_issue(issue_id)
        if not text or not text.strip():
            msg = "Note text cannot be empty"
            raise InvalidArgument(msg)
        now = _now_iso()
        try:
            cursor = self.conn.execute(
                "INSERT INTO notes (issue_id, author, text, created_at) VALUES (?, ?, ?, ?)",
                (issue_id, actor, text, now),
            )
            self._record_audit(actor, "note_added", [issue_id], after={"text": text})
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        note_id = cursor.lastrowid
        if note_id is None:
            msg = f"Note insert for {issue_id} returned no row id"
            raise Internal(msg)
        return NoteRecord(id=note_id, author=actor, text=text, created_at=now)  # type: ignore[typeddict-item]

    def get_notes(self, issue_id: str) -> list[NoteRecord]:
        return self.get_issue(issue_id).notes
