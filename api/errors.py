"""
api/errors.py -- HTTP error taxonomy.

Every error the API returns is one of these HTTPException subclasses. Each
carries a stable machine-readable code (e.g. INVALID_CREDENTIALS) and a
human message; api/main.py renders them into the ErrorResponse envelope:

    {"error": {"code": "...", "message": "..."}}

Extra top-level fields (retryAfter on 429) are passed as keyword arguments
and rendered next to "error".

Route handlers and the auth dependencies raise these directly. No raw driver
message or traceback is ever placed in a message.
"""

from __future__ import annotations

from fastapi import HTTPException


class ApiError(HTTPException):
    status: int = 500

    def __init__(self, code: str, message: str, headers: dict[str, str] | None = None, **extra) -> None:
        super().__init__(
            status_code=self.status,
            detail={"code": code, "message": message},
            headers=headers,
        )
        self.code = code
        self.message = message
        self.extra = extra


class ValidationError(ApiError):
    status = 400


class AuthError(ApiError):
    status = 401


class ForbiddenError(ApiError):
    status = 403


class NotFoundError(ApiError):
    status = 404


class ConflictError(ApiError):
    status = 409


class RateLimitError(ApiError):
    status = 429

    def __init__(self, retry_after: int, message: str = "Too many requests. Try again later.") -> None:
        super().__init__(
            "RATE_LIMIT_EXCEEDED",
            message,
            headers={"Retry-After": str(retry_after)},
            retryAfter=retry_after,
        )
        self.retry_after = retry_after


class InternalError(ApiError):
    status = 500


_BY_STATUS: dict[int, type[ApiError]] = {
    400: ValidationError,
    401: AuthError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    500: InternalError,
}


def error_for_status(status_code: int, code: str, message: str) -> ApiError:
    """Build the taxonomy error matching status_code (500 for unknown statuses)."""
    return _BY_STATUS.get(status_code, InternalError)(code, message)
