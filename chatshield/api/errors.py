"""Error codes and response bodies shared by routes and middleware.

Every non-2xx JSON body has the same shape::

    {"error": {"code": "rate_limit_exceeded", "message": "...", "details": {...}}}

``details`` is present only when the error carries structured data (retry
delay, quota usage). Clients branch on ``error.code``; the HTTP status for
each code is fixed in ``HTTP_STATUS``.
"""

from enum import Enum


class ErrorCode(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limit_exceeded"
    QUOTA_EXCEEDED = "quota_exceeded"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    VALIDATION_ERROR = "validation_error"
    PROVIDER_ERROR = "provider_error"
    INTERNAL_ERROR = "internal_error"


HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.QUOTA_EXCEEDED: 429,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.PROVIDER_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}


def error_response(code: ErrorCode, message: str, details: dict | None = None) -> dict:
    """Build the JSON error body for ``code``.

    Args:
        code: Error code clients switch on.
        message: Human-readable description. Must not contain message text.
        details: Optional structured data, omitted when empty.
    """
    error = {"code": code.value, "message": message}
    if details:
        error["details"] = details
    return {"error": error}
