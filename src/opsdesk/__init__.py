"""Opsdesk — issue identity and operator triage over a shared SQLite store."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("opsdesk")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from opsdesk.core import Issue, OpsDeskDB

__all__ = ["Issue", "OpsDeskDB", "__version__"]
