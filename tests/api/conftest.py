"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

import opsdesk.dashboard as dash_module
from opsdesk.core import OpsDeskDB
from opsdesk.dashboard import create_app
from tests._db_factory import make_db


@pytest.fixture
def api_db(tmp_path: Path) -> Generator[OpsDeskDB, None, None]:
    """Store opened with check_same_thread=False, as the server opens it."""
    d = make_db(tmp_path, check_same_thread=False)
    yield d
    d.close()


@pytest.fixture
async def client(api_db: OpsDeskDB) -> AsyncIterator[AsyncClient]:
    """Create a test client backed by ``api_db``."""
    dash_module._db = api_db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    dash_module._db = None
