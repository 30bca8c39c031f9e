"""Standardised API error responses.

Usage
-----
    from maintrack.utils.errors import api_error, E

    return api_error(err)                                   # render a ServiceError
    return api_error(validation("action_date is required")) # ad-hoc input check
"""

from __future__ import annotations

from flask import jsonify

from maintrack.core.errors import ErrorKind, ServiceError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT = "ERR_CONFLICT"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    PRECONDITION_FAILED = "ERR_PRECONDITION_FAILED"
    VALIDATION = "ERR_VALIDATION"
    INTERNAL = "ERR_INTERNAL"


_CODE: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHENTICATED: E.UNAUTHENTICATED,
    ErrorKind.FORBIDDEN: E.FORBIDDEN,
    ErrorKind.NOT_FOUND: E.NOT_FOUND,
    ErrorKind.CONFLICT: E.CONFLICT,
    ErrorKind.INVALID_TRANSITION: E.INVALID_TRANSITION,
    ErrorKind.PRECONDITION_FAILED: E.PRECONDITION_FAILED,
    ErrorKind.VALIDATION: E.VALIDATION,
    ErrorKind.INTERNAL: E.INTERNAL,
}

# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.PRECONDITION_FAILED: 422,
    ErrorKind.VALIDATION: 400,
    ErrorKind.INTERNAL: 500,
}


def status_for(kind: ErrorKind) -> int:
    return _DEFAULT_STATUS.get(kind, 400)


def api_error(err: ServiceError, *, status: int | None = None):
    """Return a standard JSON error response for *err*.

    Parameters
    ----------
    err : ServiceError
        The failure returned by a service call.
    status : int, optional
        HTTP status override.  Falls back to the per-kind default.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or status_for(err.kind)

    body: dict = {
        "success": False,
        "error": err.message,
        "code": _CODE.get(err.kind, E.INTERNAL),
    }
    # Internal failures stay opaque; details never leak infrastructure state.
    if err.details and err.kind is not ErrorKind.INTERNAL:
        body["details"] = err.details

    return jsonify(body), http_status


def api_ok(data=None, *, status: int = 200, message: str | None = None):
    """Return the success envelope used by every endpoint."""
    body: dict = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status
