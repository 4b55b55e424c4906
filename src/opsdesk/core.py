"""Core database operations for the opsdesk issue store.

Single source of truth for all SQLite operations. Both the CLI and the HTTP
dashboard import from this module. No daemon, no sync — just direct SQLite
with WAL mode, so several processes can write the same collection.

Convention-based discovery: each deployment has a `.opsdesk/` directory
containing `opsdesk.db` (SQLite), `config.json` and `opsdesk.log`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from opsdesk.db_audit import AuditMixin
from opsdesk.db_base import MAX_BATCH_WRITES
from opsdesk.db_ids import IdentityMixin
from opsdesk.db_issues import IssuesMixin
from opsdesk.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from opsdesk.db_users import UsersMixin
from opsdesk.ids import APP_REGISTRY, DEFAULT_APP
from opsdesk.types.core import IssueDict, NoteRecord, ProjectConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

OPSDESK_DIR_NAME = ".opsdesk"
DB_FILENAME = "opsdesk.db"
CONFIG_FILENAME = "config.json"
REPORT_FILENAME = "report.md"


def find_opsdesk_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .opsdesk/ directory.

    Returns the .opsdesk/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / OPSDESK_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {OPSDESK_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(opsdesk_dir: Path) -> ProjectConfig:
    """Read .opsdesk/config.json. Returns defaults if missing or corrupt."""
    defaults = ProjectConfig(default_app=DEFAULT_APP, version=1, batch_limit=MAX_BATCH_WRITES)
    config_path = opsdesk_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        loaded = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(loaded, dict):
        logger.warning("Ignoring non-object config in %s", config_path)
        return defaults
    result: ProjectConfig = {**defaults, **loaded}  # type: ignore[typeddict-item]
    return result


def write_config(opsdesk_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .opsdesk/config.json."""
    config_path = opsdesk_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


def _resolve_batch_limit(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        logger.warning("Invalid batch_limit %r, using %d", value, MAX_BATCH_WRITES)
        return MAX_BATCH_WRITES
    if value > MAX_BATCH_WRITES:
        logger.warning("batch_limit %d exceeds the store ceiling, clamping to %d", value, MAX_BATCH_WRITES)
        return MAX_BATCH_WRITES
    return value


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class Issue:
    id: str
    display_id: str | None = None
    app: str | None = None
    title: str = ""
    description: str = ""
    severity: str | None = None
    status: str | None = None
    type: str | None = None
    classification: str | None = None
    user_id: str | None = None
    planned_for_version: str | None = None
    deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    # Computed (stored in the notes table)
    notes: list[NoteRecord] = field(default_factory=list)

    @property
    def label(self) -> str:
        """Display id when assigned, storage id otherwise."""
        return self.display_id or self.id

    def to_dict(self) -> IssueDict:
        return IssueDict(
            id=self.id,
            display_id=self.display_id,
            app=self.app,
            title=self.title,
            description=self.description,
            severity=self.severity,
            status=self.status,
            type=self.type,
            classification=self.classification,
            user_id=self.user_id,
            planned_for_version=self.planned_for_version,
            deleted=self.deleted,
            created_at=self.created_at,  # type: ignore[typeddict-item]
            updated_at=self.updated_at,  # type: ignore[typeddict-item]
            fields=self.fields,
            notes=self.notes,
        )


# ---------------------------------------------------------------------------
# OpsDeskDB: the composed store
# ---------------------------------------------------------------------------


class OpsDeskDB(IssuesMixin, IdentityMixin, AuditMixin, UsersMixin):
    """Direct SQLite operations. No daemon, no sync. Importable by CLI and dashboard."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        default_app: str = DEFAULT_APP,
        batch_limit: int = MAX_BATCH_WRITES,
        check_same_thread: bool = True,
    ) -> None:
        if default_app not in APP_REGISTRY:
            logger.warning("Unknown default_app '%s', falling back to '%s'", default_app, DEFAULT_APP)
            default_app = DEFAULT_APP
        self.db_path = Path(db_path)
        self.default_app = default_app
        self.batch_limit = _resolve_batch_limit(batch_limit)
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    @classmethod
    def from_project(cls, project_path: Path | None = None, *, check_same_thread: bool = True) -> OpsDeskDB:
        """Create an OpsDeskDB by discovering .opsdesk/ from project_path (or cwd)."""
        opsdesk_dir = find_opsdesk_root(project_path)
        config = read_config(opsdesk_dir)
        db = cls(
            opsdesk_dir / DB_FILENAME,
            default_app=config.get("default_app", DEFAULT_APP),
            batch_limit=config.get("batch_limit", MAX_BATCH_WRITES),
            check_same_thread=check_same_thread,
        )
        db.initialize()
        return db

    def __enter__(self) -> OpsDeskDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database and stamp the schema version."""
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                "Database %s has schema version %d, newer than supported %d",
                self.db_path,
                current_version,
                CURRENT_SCHEMA_VERSION,
            )
        self.conn.commit()

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _generate_unique_id(self) -> str:
        """Generate a storage key using O(1) EXISTS checks against the PK index."""
        for _ in range(10):
            candidate = f"iss-{uuid.uuid4().hex[:10]}"
            if self.conn.execute("SELECT 1 FROM issues WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"iss-{uuid.uuid4().hex[:16]}"
