"""JSON error envelope shared by every blueprint.

Body shape::

    {"error": "<message for humans>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty. Each code has one default HTTP status,
so views normally pass only the code and message.

    return api_error(E.MISSING_FIELD, "from_status required", details={"from_status": "required"})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes."""

    # 400: request is malformed or incomplete
    MISSING_FIELD = "ERR_MISSING_FIELD"
    BAD_REQUEST = "ERR_BAD_REQUEST"

    # 401: cron secret missing or wrong
    UNAUTHORIZED = "ERR_UNAUTHORIZED"

    # 403: status policy or organization boundary said no
    FORBIDDEN = "ERR_FORBIDDEN"

    NOT_FOUND = "ERR_NOT_FOUND"

    # 409: proposal status moved under the caller
    STATUS_CONFLICT = "ERR_STATUS_CONFLICT"

    # 422: well-formed request that breaks a business rule
    BUSINESS_RULE = "ERR_BUSINESS_RULE"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


STATUS_FOR_CODE: dict[str, int] = {
    E.MISSING_FIELD: 400,
    E.BAD_REQUEST: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.STATUS_CONFLICT: 409,
    E.BUSINESS_RULE: 422,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a Flask view or error handler.

    ``status`` overrides the code's default; unknown codes fall back to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_FOR_CODE.get(code, 400)
