"""UsersMixin — caller identity, the admin gate, and uid -> email lookup.

Authentication itself happens elsewhere; by the time an actor string reaches
this layer it is trusted to be who it says. What this mixin decides is only
whether that actor holds the admin role.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from opsdesk.db_base import DBMixinProtocol, _now_iso
from opsdesk.errors import InvalidArgument, NotFound, PermissionDenied
from opsdesk.types.core import UserRecord
from opsdesk.validation import sanitize_actor

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
VALID_ROLES = frozenset({"admin", "user"})


class UsersMixin(DBMixinProtocol):
    """User records and the admin pre-check used by every mutating maintenance call."""

    if TYPE_CHECKING:
        # From AuditMixin
        def _record_audit(
            self,
            actor: str,
            action: str,
            target_ids: list[str],
            *,
            before: dict[str, object] | None = None,
            after: dict[str, object] | None = None,
        ) -> None: ...

    def add_user(self, uid: str, *, email: str = "", role: str = "user", actor: str = "") -> UserRecord:
        """Create or replace a user record.

        Once any admin exists, only an admin may add users. The very first
        user may be added by anyone, which is how a fresh store is bootstrapped.
        """
        uid = uid.strip() if isinstance(uid, str) else ""
        if not uid:
            msg = "uid cannot be empty"
            raise InvalidArgument(msg)
        if role not in VALID_ROLES:
            msg = f"Invalid role '{role}'. Valid roles: {', '.join(sorted(VALID_ROLES))}"
            raise InvalidArgument(msg)
        if self._has_admin():
            self.require_admin(actor)

        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO users (uid, email, role, created_at) VALUES (?, ?, ?, ?)",
                (uid, email, role, _now_iso()),
            )
            self._record_audit(actor or uid, "user_added", [uid], after={"email": email, "role": role})
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_user(uid)

    def get_user(self, uid: str) -> UserRecord:
        row = self.conn.execute("SELECT * FROM users WHERE uid = ?", (uid,)).fetchone()
        if row is None:
            msg = f"User not found: {uid}"
            raise NotFound(msg)
        return cast(UserRecord, dict(row))

    def list_users(self) -> list[UserRecord]:
        rows = self.conn.execute("SELECT * FROM users ORDER BY uid").fetchall()
        return cast(list[UserRecord], [dict(r) for r in rows])

    def _has_admin(self) -> bool:
        row = self.conn.execute("SELECT 1 FROM users WHERE role = ? LIMIT 1", (ADMIN_ROLE,)).fetchone()
        return row is not None

    def is_admin(self, uid: str) -> bool:
        row = self.conn.execute("SELECT role FROM users WHERE uid = ?", (uid,)).fetchone()
        return row is not None and row["role"] == ADMIN_ROLE

    def require_admin(self, actor: str) -> str:
        """Return the cleaned actor, or raise PermissionDenied before any other work."""
        cleaned, err = sanitize_actor(actor)
        if err:
            msg = f"Access denied: {err}"
            raise PermissionDenied(msg)
        if not self.is_admin(cleaned):
            logger.warning("Permission denied for actor %s", cleaned, extra={"actor": cleaned})
            msg = f"Access denied: '{cleaned}' does not hold the admin role"
            raise PermissionDenied(msg)
        return cleaned

    def lookup_user_email(self, uid: str) -> str | None:
        row = self.conn.execute("SELECT email FROM users WHERE uid = ?", (uid,)).fetchone()
        if row is None or not row["email"]:
            return None
        return str(row["email"])

    def user_email_map(self) -> dict[str, str]:
        """All uid -> email pairs, for resolving assignees without N+1 lookups."""
        return {r["uid"]: r["email"] for r in self.conn.execute("SELECT uid, email FROM users WHERE email != ''")}
