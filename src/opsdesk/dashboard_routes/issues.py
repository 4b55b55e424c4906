"""Issue CRUD and note route handlers."""

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
    _parse_pagination,
    _validate_actor,
)
from opsdesk.errors import OpsDeskError

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def create_router() -> APIRouter:
    """Build the APIRouter for issue endpoints.

    NOTE: All handlers are async despite doing synchronous SQLite I/O. This
    serializes DB access on the event loop thread, avoiding concurrent
    multi-thread access to the shared DB connection.
    """
    from fastapi import APIRouter, Depends
    from fastapi.responses import JSONResponse

    from opsdesk.dashboard import _get_db

    router = APIRouter()

    @router.get("/issues")
    async def api_issues(request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        params = request.query_params
        page = _parse_pagination(params)
        if not isinstance(page, tuple):
            return page
        limit, offset = page
        issues = db.list_issues(
            status=params.get("status"),
            app=params.get("app"),
            include_deleted=params.get("include_deleted", "").lower() in _TRUE_VALUES,
            limit=limit,
            offset=offset,
        )
        return JSONResponse([i.to_dict() for i in issues])

    @router.post("/issues")
    async def api_create_issue(request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        """Report a new issue. The display id is assigned before this returns."""
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        title = body.get("title")
        if not isinstance(title, str):
            return _error_response("title is required", "INVALID_ARGUMENT", 400)
        fields = body.get("fields")
        if fields is not None and not isinstance(fields, dict):
            return _error_response("fields must be an object", "INVALID_ARGUMENT", 400)
        actor, err = _validate_actor(body.get("actor", body.get("user_id", "anonymous")))
        if err:
            return err
        try:
            issue = db.create_issue(
                title,
                app=body.get("app"),
                severity=body.get("severity"),
                status=str(body.get("status") or "new"),
                type=body.get("type"),
                classification=body.get("classification"),
                planned_for_version=body.get("planned_for_version"),
                description=str(body.get("description") or ""),
                user_id=body.get("user_id"),
                fields=fields,
                actor=actor,
            )
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse(issue.to_dict(), status_code=201)

    @router.get("/issue/{issue_ref}")
    async def api_issue_detail(issue_ref: str, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        """Issue detail by storage id or display id."""
        try:
            issue = db.resolve_issue(issue_ref)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse(issue.to_dict())

    @router.patch("/issue/{issue_ref}")
    async def api_update_issue(issue_ref: str, request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        """Admin update. Identity keys in the body are ignored."""
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        actor, err = _validate_actor(body.pop("actor", None))
        if err:
            return err
        try:
            issue = db.resolve_issue(issue_ref)
            updated = db.update_issue(issue.id, body, actor=actor)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse(updated.to_dict())

    @router.delete("/issue/{issue_ref}")
    async def api_delete_issue(issue_ref: str, request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        actor, err = _validate_actor(request.query_params.get("actor"))
        if err:
            return err
        try:
            issue = db.resolve_issue(issue_ref)
            deleted = db.soft_delete_issue(issue.id, actor=actor)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse(deleted.to_dict())

    @router.post("/issue/{issue_ref}/notes")
    async def api_add_note(issue_ref: str, request: Request, db: OpsDeskDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if not isinstance(body, dict):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        text = body.get("text")
        if not isinstance(text, str):
            return _error_response("text is required", "INVALID_ARGUMENT", 400)
        try:
            issue = db.resolve_issue(issue_ref)
            note = db.add_note(issue.id, text, actor=actor)
        except OpsDeskError as e:
            return _error_from(e)
        return JSONResponse(dict(note), status_code=201)

    return router
