"""Error taxonomy shared by the DB layer, CLI and dashboard.

Each error also inherits the builtin that callers already catch
(``ValueError`` for bad input, ``KeyError`` for missing records), so code
written against plain builtins keeps working.
"""

from __future__ import annotations


class OpsDeskError(Exception):
    """Base class. ``code`` is the stable machine-readable name."""

    code = "INTERNAL"
    http_status = 500


class PermissionDenied(OpsDeskError, PermissionError):
    code = "PERMISSION_DENIED"
    http_status = 403


class InvalidArgument(OpsDeskError, ValueError):
    code = "INVALID_ARGUMENT"
    http_status = 400


class NotFound(OpsDeskError, KeyError):
    code = "NOT_FOUND"
    http_status = 404

    def __str__(self) -> str:
        # KeyError.__str__ repr()-quotes the message
        return str(self.args[0]) if self.args else ""


class PreconditionFailed(OpsDeskError):
    code = "PRECONDITION_FAILED"
    http_status = 409


class Internal(OpsDeskError):
    code = "INTERNAL"
    http_status = 500
