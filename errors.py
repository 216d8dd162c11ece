"""
Error kinds raised by the stores and services.

Every failure that leaves a service is an ``AppError`` tagged with an
``ErrorKind``. The HTTP layer translates the kind into a status code in one
place (see ``main.STATUS_BY_KIND``); nothing below that layer knows about HTTP.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_CREDENTIALS = "invalid_credentials"
    USER_NOT_FOUND = "user_not_found"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORE_UNAVAILABLE = "store_unavailable"
    INTERNAL = "internal"


class AppError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        field_errors: Optional[dict[str, str]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.field_errors = field_errors

    def __repr__(self):
        return f"AppError({self.kind.value!r}, {self.message!r})"


def validation_error(field_errors: dict[str, str]) -> AppError:
    return AppError(ErrorKind.VALIDATION, "Validation Failed", field_errors)


def unauthenticated(message: str = "Authentication required") -> AppError:
    return AppError(ErrorKind.UNAUTHENTICATED, message)


def invalid_credentials() -> AppError:
    # Same message whether the username or the password was wrong.
    return AppError(ErrorKind.INVALID_CREDENTIALS, "Invalid username or password")


def user_not_found(username: str) -> AppError:
    return AppError(ErrorKind.USER_NOT_FOUND, f"User not found: {username}")


def expense_not_found(expense_id: int) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, f"Expense not found with id: {expense_id}")


def forbidden(action: str) -> AppError:
    return AppError(
        ErrorKind.FORBIDDEN, f"You are not authorized to {action} this expense"
    )


def store_unavailable() -> AppError:
    return AppError(
        ErrorKind.STORE_UNAVAILABLE, "An unexpected internal server error occurred."
    )
