"""Shared pytest fixtures for opsdesk tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from opsdesk.core import OpsDeskDB
from tests._db_factory import make_db


@pytest.fixture
def db(tmp_path: Path) -> Generator[OpsDeskDB, None, None]:
    """Fresh OpsDeskDB with a single admin user for each test."""
    d = make_db(tmp_path)
    yield d
    d.close()


@pytest.fixture
def small_batch_db(tmp_path: Path) -> Generator[OpsDeskDB, None, None]:
    """OpsDeskDB whose batch limit is 2, for ceiling tests."""
    d = make_db(tmp_path, batch_limit=2)
    yield d
    d.close()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
