"""Standardised API error responses.

Usage
-----
    from goaltrack.utils.errors import api_error, api_domain_error, E

    return api_error(E.NOT_FOUND, "Goal not found")
    return api_error(E.VALIDATION_REQUIRED, "command is required")
    return api_domain_error(exc)   # any goaltrack.core.exceptions.DomainError
"""

from __future__ import annotations

from flask import jsonify

from goaltrack.core.exceptions import (
    DeadlineChangeLimitExceeded,
    DomainError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Lifecycle conflicts – HTTP 409
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    DEADLINE_LIMIT = "ERR_DEADLINE_CHANGE_LIMIT"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.DEADLINE_LIMIT: 409,
    E.FORBIDDEN: 403,
    E.INTERNAL: 500,
}


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
        Extra structured payload (field errors, limits, etc.).

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


def api_domain_error(exc: DomainError):
    """Map a core exception onto the standard error envelope."""
    if isinstance(exc, DeadlineChangeLimitExceeded):
        code = E.DEADLINE_LIMIT
    elif isinstance(exc, InvalidTransition):
        code = E.INVALID_TRANSITION
    elif isinstance(exc, PermissionDenied):
        code = E.FORBIDDEN
    elif isinstance(exc, NotFoundError):
        code = E.NOT_FOUND
    elif isinstance(exc, ValidationError):
        code = E.VALIDATION_INVALID
    else:
        code = E.INTERNAL
    details = {"kind": exc.kind, **exc.details}
    return api_error(code, exc.message, details=details)
