"""Typed application errors.

Services raise these; the FastAPI exception handler turns them into
``{"detail": message}`` responses carrying ``status_code``.
"""


class AppError(Exception):
    """Base error with a user-safe message and an HTTP status code."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(AppError):
    status_code = 400


class AuthError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class UnprocessableError(AppError):
    status_code = 422


class InternalError(AppError):
    status_code = 500
