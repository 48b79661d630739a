from typing import Any, Optional


class AppError(Exception):
    """Base error rendered as ``{"success": false, "message", "code"}``."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, errors: Optional[list[Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.errors = errors
        super().__init__(message)


class ValidationFailed(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationFailed(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class PermissionDenied(AppError):
    status_code = 403
    code = "PERMISSION_DENIED"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
