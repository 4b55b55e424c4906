# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, or any mixin; the types stay import-cycle free.
"""Typed return-value contracts for opsdesk core and API layers."""

from __future__ import annotations

from opsdesk.types.api import (
    AuditRecord,
    ErrorResponse,
    OperatorReport,
    RepairResult,
    ReportItem,
    SeverityCounts,
    TriageSummary,
)
from opsdesk.types.core import (
    ISOTimestamp,
    IssueDict,
    NoteRecord,
    ProjectConfig,
    UserRecord,
)

__all__ = [
    "AuditRecord",
    "ErrorResponse",
    "ISOTimestamp",
    "IssueDict",
    "NoteRecord",
    "OperatorReport",
    "ProjectConfig",
    "RepairResult",
    "ReportItem",
    "SeverityCounts",
    "TriageSummary",
    "UserRecord",
]
