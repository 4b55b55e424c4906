"""Database schema definitions for the opsdesk document store.

Issue rows keep the fields the identity and triage code reads as columns;
everything else a record arrived with stays in the ``fields`` JSON object.
There is deliberately no UNIQUE constraint on ``display_id``: concurrent
writers can collide and the repair pass resolves it.
"""

from __future__ import annotations

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS issues (
    id                   TEXT PRIMARY KEY,
    display_id           TEXT,
    app                  TEXT,
    title                TEXT NOT NULL DEFAULT '',
    description          TEXT NOT NULL DEFAULT '',
    severity             TEXT,
    status               TEXT,
    type                 TEXT,
    classification       TEXT,
    user_id              TEXT,
    planned_for_version  TEXT,
    deleted              INTEGER NOT NULL DEFAULT 0,
    created_at           TEXT,
    updated_at           TEXT,
    fields               TEXT NOT NULL DEFAULT '{}',

    CHECK (deleted IN (0, 1))
);

CREATE INDEX IF NOT EXISTS idx_issues_display_id ON issues(display_id);
CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status);
CREATE INDEX IF NOT EXISTS idx_issues_created ON issues(deleted, created_at);

CREATE TABLE IF NOT EXISTS notes (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id   TEXT NOT NULL REFERENCES issues(id),
    author     TEXT NOT NULL DEFAULT '',
    text       TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_issue ON notes(issue_id, id);

CREATE TABLE IF NOT EXISTS users (
    uid        TEXT PRIMARY KEY,
    email      TEXT NOT NULL DEFAULT '',
    role       TEXT NOT NULL DEFAULT 'user',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    actor       TEXT NOT NULL,
    action      TEXT NOT NULL,
    target_ids  TEXT NOT NULL DEFAULT '[]',
    before      TEXT NOT NULL DEFAULT '{}',
    after       TEXT NOT NULL DEFAULT '{}',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_created ON audit(created_at);
"""

CURRENT_SCHEMA_VERSION = 1
