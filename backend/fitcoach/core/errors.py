# fitcoach/core/errors.py
"""
Application error taxonomy.

Every error raised toward the HTTP layer is an AppError; the handlers
registered in main.py render it as
``{"success": false, "error": ..., "code": ..., "details": ...}``.
"""
from typing import Any, Optional

from fastapi import status


class AppError(Exception):
    """Base error carrying an HTTP status, a stable code and optional details."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.headers = headers
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Validation failed"


class AuthenticationFailed(AppError):
    """
    Credential or token problem (401).

    ``kind`` is one of ``missing``, ``invalid``, ``expired``, ``revoked``
    or ``unknown_user``; each kind has its own code so callers can tell
    them apart.
    """

    status_code = status.HTTP_401_UNAUTHORIZED
    KINDS = {
        "missing": ("AUTH_REQUIRED", "Access denied. No token provided."),
        "invalid": ("AUTH_INVALID_TOKEN", "Invalid token"),
        "expired": ("AUTH_TOKEN_EXPIRED", "Token has expired"),
        "revoked": ("AUTH_TOKEN_REVOKED", "Token has been revoked. Please login again."),
        "unknown_user": ("AUTH_USER_NOT_FOUND", "User not found. Token invalid."),
    }

    def __init__(self, kind: str = "invalid", message: Optional[str] = None):
        code, default_message = self.KINDS[kind]
        self.kind = kind
        super().__init__(
            message or default_message,
            code=code,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentials(AppError):
    # Login with unknown email or wrong password; 400 like the rest of the form errors
    status_code = status.HTTP_400_BAD_REQUEST
    code = "AUTH_INVALID_CREDENTIALS"
    message = "Invalid credentials"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "Access denied"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class Conflict(AppError):
    """Booking invariant or uniqueness violation. Booking conflicts are 400, duplicates 409."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "CONFLICT"
    message = "Conflict"


class DuplicateEmail(Conflict):
    status_code = status.HTTP_409_CONFLICT
    code = "EMAIL_EXISTS"
    message = "User already exists."


class AccountLocked(AppError):
    status_code = status.HTTP_423_LOCKED
    code = "ACCOUNT_LOCKED"
    message = "Account is temporarily locked due to too many failed login attempts"


class StoreUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "STORE_UNAVAILABLE"
    message = "Data store temporarily unavailable"

    def __init__(self, message: Optional[str] = None, retry_after: int = 5):
        super().__init__(
            message,
            details={"retryAfter": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class ServerMisconfigured(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "SERVER_MISCONFIGURED"
    message = "Internal server error"
