"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import Any, NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .opsdesk/config.json."""

    default_app: str
    version: int
    batch_limit: int


class NoteRecord(TypedDict):
    id: int
    author: str
    text: str
    created_at: ISOTimestamp


class IssueDict(TypedDict):
    id: str
    display_id: str | None
    app: str | None
    title: str
    description: str
    severity: str | None
    status: str | None
    type: str | None
    classification: str | None
    user_id: str | None
    planned_for_version: str | None
    deleted: bool
    created_at: ISOTimestamp | None
    updated_at: ISOTimestamp | None
    fields: dict[str, Any]
    notes: list[NoteRecord]


class UserRecord(TypedDict):
    uid: str
    email: str
    role: str
    created_at: ISOTimestamp
