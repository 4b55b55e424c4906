"""Identifier maintenance route handlers: next id, backfill, repair, import, audit."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.requests import Request

if TYPE_CHECKING:
    from fastapi import APIRouter

from opsdesk.core import OpsDeskDB
from opsdesk.dashboard_routes.common import (
    _error_from,
    _error_response,
    _parse_json_body,
    _safe_int,
    _validate_actor,
)
from opsdesk.errors import OpsDeskError

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from opsdesk.dashboard import _get_db

    router = APIRouter()

    @router.get("/next-id/{prefix}")
    async def api_next_id(prefix: str, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        try:
            display_id = db.next_display_id(prefix)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse({"prefix": prefix, "next_id": display_id})

    @router.post("/maintenance/backfill")
    async def api_backfill(request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        try:
            count = db.assign_missing_ids(actor)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse({"assigned": count})

    @router.post("/maintenance/repair")
    async def api_repair(request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        try:
            result = db.repair_duplicate_ids(actor)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse(dict(result))

    @router.post("/import")
    async def api_import(request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        """Bulk import: ``{"actor": ..., "rows": [...]}``. All rows or none."""
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        rows = body.get("rows")
        if not isinstance(rows, list):
            return _error_response("rows must be an array of objects", "INVALID_ARGUMENT", 400)
        try:
            created = db.import_issues(rows, actor=actor)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse({"imported": len(created), "issues": [i.to_dict() for i in created]}, status_code=201)

    @router.get("/audit")
    async def api_audit(request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        params = request.query_params
        limit = _safe_int(params.get("limit", "50"), "limit", min_value=1)
        if not isinstance(limit, int):
            return limit
        records = db.get_audit_log(limit=limit, action=params.get("action"), target_id=params.get("target"))
        return JSONResponse(records)

    return router
