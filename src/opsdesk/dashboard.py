"""HTTP API for opsdesk.

A module-level ``_db`` is set at startup and injected into handlers via
``Depends(_get_db)``. Route modules live in ``dashboard_routes/``.

Usage:
    opsdesk serve                    # http://127.0.0.1:8377
    opsdesk serve --port 9000        # Custom port
"""

from __future__ import annotations

import logging
from typing import Any

from opsdesk import __version__
from opsdesk.core import DB_FILENAME, MAX_BATCH_WRITES, OpsDeskDB, find_opsdesk_root, read_config
from opsdesk.ids import DEFAULT_APP
from opsdesk.logging import setup_logging

DEFAULT_PORT = 8377

logger = logging.getLogger(__name__)

_db: OpsDeskDB | None = None


def _get_db() -> OpsDeskDB:
    """Return the active database connection."""
    from fastapi import HTTPException

    if _db is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return _db


def create_app() -> Any:
    """Create the FastAPI application with all API endpoints."""
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    from opsdesk.dashboard_routes import issues, maintenance, report

    app = FastAPI(title="Opsdesk", version=__version__, docs_url=None, redoc_url=None)

    app.include_router(issues.create_router(), prefix="/api")
    app.include_router(maintenance.create_router(), prefix="/api")
    app.include_router(report.create_router(), prefix="/api")

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    return app


def main(port: int = DEFAULT_PORT, *, host: str = "127.0.0.1") -> None:
    """Open the project store and serve the API until interrupted."""
    import uvicorn

    global _db

    opsdesk_dir = find_opsdesk_root()
    setup_logging(opsdesk_dir)
    config = read_config(opsdesk_dir)
    _db = OpsDeskDB(
        opsdesk_dir / DB_FILENAME,
        default_app=config.get("default_app", DEFAULT_APP),
        batch_limit=config.get("batch_limit", MAX_BATCH_WRITES),
        check_same_thread=False,
    )
    _db.initialize()

    app = create_app()
    print(f"Opsdesk API: http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    finally:
        _db.close()
        _db = None
