from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions surfaced at the HTTP edge.

    Each exception class carries an HTTP status_code and a stable error_code:
    - unauthorized (401)
    - forbidden (403)
    - csrf_failed (403)
    """

    status_code: int = 400
    error_code: str = "bad_request"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """No valid session (401)."""
    status_code = 401
    error_code = "unauthorized"


class SessionExpiredError(AuthenticationError):
    """Session idled past its lifetime (401)."""
    pass


class ForbiddenError(ServiceError):
    """Access denied - permission not held (403)."""
    status_code = 403
    error_code = "forbidden"


class CsrfError(ForbiddenError):
    """Missing or mismatched anti-forgery token (403)."""
    error_code = "csrf_failed"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "SessionExpiredError",
    "ForbiddenError",
    "CsrfError",
]
