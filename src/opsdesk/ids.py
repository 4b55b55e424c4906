"""Display-identifier parsing and allocation over an in-memory record set.

Pure functions. The DB layer (``db_ids.IdentityMixin``) feeds these with
full-collection scans; nothing here touches storage.

A display id looks like ``EC-42``: a registered app prefix, a dash, and a
positive integer suffix that is unique per prefix.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from datetime import UTC, datetime
from typing import Any, TypedDict

from opsdesk.errors import InvalidArgument
from opsdesk.validation import parse_timestamp


class AppEntry(TypedDict):
    label: str
    prefix: str


# Keys are stored values, labels are for display, prefixes are for issue ids.
APP_REGISTRY: dict[str, AppEntry] = {
    "admin-core": {"label": "Admin Core", "prefix": "AC"},
    "exam-coach": {"label": "Exam Coach", "prefix": "EC"},
}
APP_KEYS: tuple[str, ...] = ("admin-core", "exam-coach")
DEFAULT_APP = "exam-coach"
KNOWN_PREFIXES: frozenset[str] = frozenset(entry["prefix"] for entry in APP_REGISTRY.values())

# Older writers stored the identifier under these document keys.
LEGACY_ID_KEYS: tuple[str, ...] = ("displayId", "issueId", "issue_id")

_DISPLAY_ID_RE = re.compile(r"^([A-Z][A-Z0-9]*)-(\d+)$")
_NO_TIMESTAMP = datetime.min.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# App registry
# ---------------------------------------------------------------------------


def get_app_prefix(app_key: str) -> str:
    """Return the prefix for a canonical app key. No silent default."""
    entry = APP_REGISTRY.get(app_key)
    if entry is None:
        msg = f"Unknown app key: {app_key!r}. Valid keys: {', '.join(APP_KEYS)}"
        raise InvalidArgument(msg)
    return entry["prefix"]


def canonical_app(value: str | None) -> str | None:
    """Map an app spelling ("Exam Coach", "examcoach") to its canonical key, or None if unknown."""
    if not value:
        return None
    compact = "".join(value.lower().split())
    if compact in ("admincore", "admin-core"):
        return "admin-core"
    if compact in ("examcoach", "exam-coach"):
        return "exam-coach"
    return None


def normalize_app_value(value: str | None) -> str:
    """Like ``canonical_app``, but missing or unrecognised values fall back to DEFAULT_APP.

    For legacy records already in the store, which must always land under some prefix.
    """
    return canonical_app(value) or DEFAULT_APP


def prefix_for_app(app: str | None) -> str:
    return get_app_prefix(normalize_app_value(app))


def validate_prefix(prefix: str) -> str:
    if not isinstance(prefix, str) or prefix not in KNOWN_PREFIXES:
        msg = f"Unknown prefix: {prefix!r}. Valid prefixes: {', '.join(sorted(KNOWN_PREFIXES))}"
        raise InvalidArgument(msg)
    return prefix


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_display_id(value: Any) -> tuple[str, int] | None:
    """Split ``"EC-42"`` into ``("EC", 42)``. Returns None for anything else."""
    if not isinstance(value, str):
        return None
    match = _DISPLAY_ID_RE.match(value.strip())
    if match is None:
        return None
    number = int(match.group(2))
    if number <= 0:
        return None
    return match.group(1), number


def format_display_id(prefix: str, number: int) -> str:
    return f"{prefix}-{number}"


def candidate_ids(record: Mapping[str, Any]) -> Iterator[str]:
    """Yield every identifier-looking value a record carries, most authoritative first.

    Order: ``display_id``, the legacy document keys, then the storage key
    itself (legacy imports used ``EC-12`` as the document id).
    """
    value = record.get("display_id")
    if isinstance(value, str) and value:
        yield value
    fields = record.get("fields") or {}
    for key in LEGACY_ID_KEYS:
        value = fields.get(key)
        if isinstance(value, str) and value:
            yield value
    storage_key = record.get("id")
    if isinstance(storage_key, str) and parse_display_id(storage_key) is not None:
        yield storage_key


def extract_display_id(record: Mapping[str, Any]) -> str | None:
    """Return the record's effective display id, or None if it has no parsable one."""
    for value in candidate_ids(record):
        if parse_display_id(value) is not None:
            return value.strip()
    return None


def max_suffix(records: Iterable[Mapping[str, Any]], prefix: str) -> int:
    """Highest numeric suffix observed for *prefix* across all candidate ids.

    Every candidate counts, not only the effective one, so a suffix that was
    ever observed is never handed out again.
    """
    highest = 0
    for record in records:
        for value in candidate_ids(record):
            parsed = parse_display_id(value)
            if parsed is not None and parsed[0] == prefix and parsed[1] > highest:
                highest = parsed[1]
    return highest


def max_suffixes(records: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    """Per-prefix maxima for every registered prefix, from a single pass."""
    highest = dict.fromkeys(KNOWN_PREFIXES, 0)
    for record in records:
        for value in candidate_ids(record):
            parsed = parse_display_id(value)
            if parsed is None or parsed[0] not in highest:
                continue
            if parsed[1] > highest[parsed[0]]:
                highest[parsed[0]] = parsed[1]
    return highest


def next_display_id_from(records: Iterable[Mapping[str, Any]], prefix: str) -> str:
    """Allocate ``<prefix>-(max+1)`` against *records*. Independent of record order."""
    validate_prefix(prefix)
    return format_display_id(prefix, max_suffix(records, prefix) + 1)


def creation_key(record: Mapping[str, Any]) -> tuple[int, datetime, str]:
    """Creation order by instant: undated records first, ties by storage id.

    Offsets and epoch numbers are compared as the moments they denote, never
    as raw strings.
    """
    created = parse_timestamp(record.get("created_at"))
    if created is None:
        return (0, _NO_TIMESTAMP, str(record["id"]))
    return (1, created, str(record["id"]))
