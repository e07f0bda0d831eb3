"""Error taxonomy for lending, catalog and account operations.

Every failure the services can report derives from ``LendingError`` and
carries the HTTP status it maps to. The API layer installs one handler that
renders them as ``{"error": message}``.
"""
from typing import Optional

from fastapi import status


class LendingError(Exception):
    """Base class for expected, request-scoped failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(LendingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InsufficientStock(LendingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Not enough stock available"


class AlreadyReturned(LendingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Book already returned"


class Forbidden(LendingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class InvalidArgument(LendingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid argument"


class Conflict(LendingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Resource already exists"


class InvalidCredentials(LendingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid credentials"


class ServerError(LendingError):
    """Unexpected storage failure; any partial mutation has been rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"


def book_not_found() -> NotFound:
    return NotFound("Book not found")


def transaction_not_found() -> NotFound:
    return NotFound("Transaction not found")


def user_not_found() -> NotFound:
    return NotFound("User not found")
