"""
Custom exception hierarchy for consistent error responses.

Usage:
    from provisioner.exceptions import ConflictError, InvalidIdentifierError

    raise ConflictError("app 'shop1' already exists")
    raise InvalidIdentifierError("app_name must be 3-32 chars, ...")
    raise ProvisionFailedError("database creation failed", cause=exc)

These exceptions are caught by the handler registered in main.py and
converted to consistent JSON error responses with the shape:
    {"error": "<message>"}

Messages are short and categorical; backend error text is only logged.
"""

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base application error with a default status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            status_code=self.__class__.status_code,
            detail=message,
        )
        self.message = message
        self.extra_detail = detail


class UnauthorizedError(AppError):
    """Unauthorized access (401)."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "unauthorized"):
        super().__init__(message)


class ConflictError(AppError):
    """Resource conflict (409)."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str):
        super().__init__(message)


class ValidationError(AppError):
    """Validation error (400)."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)


class InvalidIdentifierError(ValidationError):
    """Tenant name is not a valid identifier (400)."""


class BackendUnavailableError(AppError):
    """PostgreSQL or PgBouncer unreachable or timed out (503)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "database unavailable"):
        super().__init__(message)


class ProvisionFailedError(AppError):
    """Unexpected DDL failure while provisioning (500)."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "provisioning failed", cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class SyncFailedError(AppError):
    """Userlist sync failed (500)."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "userlist sync failed", cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
