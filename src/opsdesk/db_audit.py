"""AuditMixin — append-only audit trail for every mutation.

One row per changed record: actor, action name, target id(s), a before/after
snapshot of the touched fields, and a timestamp. Rows are written inside the
caller's transaction so an aborted batch leaves no audit trace either.
"""

from __future__ import annotations

import json
from typing import Any

from opsdesk.db_base import DBMixinProtocol, _now_iso
from opsdesk.types.api import AuditRecord


class AuditMixin(DBMixinProtocol):
    """Audit recording and retrieval.

    Inherits ``DBMixinProtocol`` for type-safe access to ``self.conn``.
    """

    # -- Audit (private) -----------------------------------------------------

    def _record_audit(
        self,
        actor: str,
        action: str,
        target_ids: list[str],
        *,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        self.conn.execute(
            "INSERT INTO audit (actor, action, target_ids, before, after, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                actor,
                action,
                json.dumps(target_ids),
                json.dumps(before or {}, default=str),
                json.dumps(after or {}, default=str),
                _now_iso(),
            ),
        )

    # -- Audit (public) ------------------------------------------------------

    def get_audit_log(self, *, limit: int = 50, action: str | None = None, target_id: str | None = None) -> list[AuditRecord]:
        """Most recent audit records first, optionally filtered by action or target."""
        clauses: list[str] = []
        params: list[Any] = []
        if action is not None:
            clauses.append("action = ?")
            params.append(action)
        if target_id is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(audit.target_ids) WHERE json_each.value = ?)")
            params.append(target_id)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM audit {where}ORDER BY id DESC LIMIT ?",
            [*params, limit],
        ).fetchall()
        return [
            AuditRecord(
                id=r["id"],
                actor=r["actor"],
                action=r["action"],
                target_ids=json.loads(r["target_ids"]),
                before=json.loads(r["before"]),
                after=json.loads(r["after"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]
