"""
Error taxonomy shared by services, guards and routes.

Routes never build HTTP errors for these by hand: the handler registered in
main.py turns any AppError into a JSON response using `http_status` and `code`.
"""
from fastapi import status


class AppError(Exception):
    """Base error for expected failures."""

    http_status: int = status.HTTP_400_BAD_REQUEST
    code: str = "APP_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFoundError(AppError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ValidationError(AppError):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class ForbiddenError(AppError):
    http_status = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class InternalFailure(AppError):
    """Unexpected failure. The message must already be safe to show to callers."""

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"
