"""Standardised API error responses.

Usage
-----
    from dataroom.utils.errors import api_error, error_response, E

    return api_error(E.NOT_FOUND, "Share session not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")
    return error_response(exc)          # any DataRoomError
"""

from __future__ import annotations

from flask import jsonify

from dataroom.core.exceptions import (
    AccessDeniedError,
    DataRoomError,
    ExpiredError,
    InvalidEntryError,
    InvalidInputError,
    NotFoundError,
    RevokedError,
    UnauthorizedError,
    WorkflowClosedError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_ENTRY = "ERR_INVALID_ENTRY"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Gone – HTTP 410
    EXPIRED = "ERR_EXPIRED"
    REVOKED = "ERR_REVOKED"

    # Conflict – HTTP 409
    WORKFLOW_CLOSED = "ERR_WORKFLOW_CLOSED"

    # Permissions – HTTP 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    ACCESS_DENIED = "ERR_ACCESS_DENIED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_ENTRY: 400,
    E.NOT_FOUND: 404,
    E.EXPIRED: 410,
    E.REVOKED: 410,
    E.WORKFLOW_CLOSED: 409,
    E.UNAUTHORIZED: 403,
    E.ACCESS_DENIED: 403,
    E.INTERNAL: 500,
}

# Most specific first: InvalidEntryError before InvalidInputError.
_EXCEPTION_CODES: tuple[tuple[type[DataRoomError], str], ...] = (
    (InvalidEntryError, E.INVALID_ENTRY),
    (InvalidInputError, E.VALIDATION_INVALID),
    (NotFoundError, E.NOT_FOUND),
    (ExpiredError, E.EXPIRED),
    (RevokedError, E.REVOKED),
    (UnauthorizedError, E.UNAUTHORIZED),
    (WorkflowClosedError, E.WORKFLOW_CLOSED),
    (AccessDeniedError, E.ACCESS_DENIED),
)


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current stage, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_code_for(exc: DataRoomError) -> str:
    for exc_type, code in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            return code
    return E.INTERNAL


def error_response(exc: DataRoomError):
    """Translate a governance exception into the standard envelope."""
    return api_error(error_code_for(exc), str(exc), details=getattr(exc, "details", None))
