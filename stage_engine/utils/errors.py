"""Standardised error payloads for services and API responses.

Usage
-----
    from stage_engine.utils.errors import api_error, service_error, E

    return None, service_error(E.NOT_FOUND, "Stage not found")
    return api_error(E.VALIDATION_CONSTRAINT, "Cannot delete Round 1")
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 (malformed) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_IN_PROGRESS = "ERR_CONFLICT_IN_PROGRESS"

    # Server – HTTP 500 / 503
    STAGE_SYNC = "ERR_STAGE_SYNC"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_IN_PROGRESS: 409,
    E.STAGE_SYNC: 500,
    E.DATABASE: 503,
    E.INTERNAL: 500,
}

# Codes a caller may simply retry
RETRYABLE_CODES = frozenset({E.CONFLICT_IN_PROGRESS, E.DATABASE})


def service_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
) -> dict:
    """Build the ``err`` half of a service ``(result, err)`` tuple.

    Shape: ``{"error", "code", "status", "retryable"[, "details"]}``.
    """
    err = {
        "error": message,
        "code": code,
        "status": status or _DEFAULT_STATUS.get(code, 400),
        "retryable": code in RETRYABLE_CODES,
    }
    if details:
        err["details"] = details
    return err


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
        Extra structured payload.

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
    if code in RETRYABLE_CODES:
        body["retryable"] = True
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_response(err: dict):
    """Translate a service ``err`` dict into a Flask response tuple."""
    return api_error(
        err.get("code", E.INTERNAL),
        err.get("error", "Unexpected error"),
        status=err.get("status"),
        details=err.get("details"),
    )
