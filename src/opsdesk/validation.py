"""Shared validation functions for all entry points.

Pure functions — no FastAPI or Click dependencies.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TypedDict

from opsdesk.errors import InvalidArgument

_MAX_ACTOR_LENGTH = 128

VALID_SEVERITIES: tuple[str, ...] = ("S1", "S2", "S3", "S4")
VALID_CLASSIFICATIONS = frozenset({"blocking", "misleading", "trust", "cosmetic"})

# Canonical stored statuses. Other strings are tolerated in stored records,
# but imports are normalized onto this set.
ISSUE_STATUSES: tuple[str, ...] = (
    "new",
    "reviewed",
    "backlogged",
    "in_progress",
    "resolved",
    "released",
    "closed",
)
_STATUS_ALIASES = {
    "working": "in_progress",
    "inprogress": "in_progress",
    "fixed": "resolved",
    "open": "new",
}

_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")

# Epoch numbers at or above this are milliseconds, as JavaScript writers store them.
_EPOCH_MS_THRESHOLD = 100_000_000_000


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    """Validate and clean an actor name.

    Returns (cleaned_actor, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "actor must be a string")
    # Reject "\nbad" rather than silently absorbing the newline via strip().
    for ch in value:
        cat = unicodedata.category(ch)
        if cat.startswith("C"):
            return ("", f"actor must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "actor must not be empty")
    if len(cleaned) > _MAX_ACTOR_LENGTH:
        return ("", f"actor must be at most {_MAX_ACTOR_LENGTH} characters")
    return (cleaned, None)


def normalize_severity(raw: Any) -> str:
    """``" s2 "`` -> ``"S2"``. Returns "" for missing input; does not validate."""
    if raw is None:
        return ""
    return "".join(str(raw).split()).upper()


def validate_severity(raw: Any) -> str:
    severity = normalize_severity(raw)
    if severity not in VALID_SEVERITIES:
        msg = f"Invalid severity {raw!r} (must be S1-S4)"
        raise InvalidArgument(msg)
    return severity


def normalize_status(raw: Any) -> str:
    """Map a free-form status onto ISSUE_STATUSES; unknown or missing -> "new"."""
    if raw is None:
        return "new"
    key = re.sub(r"[\s\-]+", "_", str(raw).strip().lower())
    key = _STATUS_ALIASES.get(key, _STATUS_ALIASES.get(key.replace("_", ""), key))
    return key if key in ISSUE_STATUSES else "new"


def validate_classification(raw: Any) -> str | None:
    if raw is None or raw == "" or raw == "unclassified":
        return None
    if raw not in VALID_CLASSIFICATIONS:
        msg = f"Invalid classification {raw!r}. Valid: {', '.join(sorted(VALID_CLASSIFICATIONS))}"
        raise InvalidArgument(msg)
    return str(raw)


def validate_version(raw: Any) -> str | None:
    """Validate a planned release version (``MAJOR.MINOR.PATCH``). Empty clears it."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str) or not _VERSION_RE.match(raw.strip()):
        msg = f"Malformed version string: {raw!r} (expected MAJOR.MINOR.PATCH)"
        raise InvalidArgument(msg)
    return raw.strip()


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse a stored creation time to an aware UTC datetime.

    Accepts ISO-8601 strings (any offset; naive values are taken as UTC) and
    epoch numbers in seconds or milliseconds, as numbers or numeric strings.
    Returns None for missing or unparseable values.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            raw = float(text)
        except ValueError:
            try:
                dt = datetime.fromisoformat(text)
            except ValueError:
                return None
            return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)
    if not isinstance(raw, (int, float)):
        return None
    seconds = raw / 1000 if abs(raw) >= _EPOCH_MS_THRESHOLD else raw
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Bulk import rows
# ---------------------------------------------------------------------------


class ImportRow(TypedDict):
    title: str
    severity: str
    status: str
    type: str | None
    app: str | None
    description: str
    source: str | None
    notes: str | None
    user_id: str | None


def _opt_str(row: Mapping[str, Any], key: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_import_row(row: Mapping[str, Any]) -> tuple[ImportRow | None, list[str]]:
    """Validate one import row.

    Returns (row, []) on success or (None, errors). ``category`` maps to the
    issue type, ``summary`` to the description and ``createdBy`` to the user id.
    """
    errors: list[str] = []
    if not isinstance(row, Mapping):
        return None, ["row must be an object"]

    title = _opt_str(row, "title") or ""
    if not title:
        errors.append("title is required")

    raw_severity = row.get("severity")
    severity = normalize_severity(raw_severity)
    if not severity:
        errors.append("severity is required")
    elif severity not in VALID_SEVERITIES:
        errors.append(f'severity "{raw_severity}" is invalid (must be S1-S4)')

    if errors:
        return None, errors
    return (
        ImportRow(
            title=title,
            severity=severity,
            status=normalize_status(_opt_str(row, "status")),
            type=_opt_str(row, "category"),
            app=_opt_str(row, "app"),
            description=_opt_str(row, "summary") or "",
            source=_opt_str(row, "source"),
            notes=_opt_str(row, "notes"),
            user_id=_opt_str(row, "createdBy"),
        ),
        [],
    )
