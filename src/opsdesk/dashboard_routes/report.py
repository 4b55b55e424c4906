"""Operator report route handler."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import APIRouter

from opsdesk.core import OpsDeskDB
from opsdesk.report import generate_report


def create_router() -> APIRouter:
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from opsdesk.dashboard import _get_db

    router = APIRouter()

    @router.get("/report")
    async def api_report(db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        """Fix-Now / Fix-Next / Parked with the triage summary."""
        return JSONResponse(generate_report(db))

    return router
