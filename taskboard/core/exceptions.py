"""
Application exceptions.

These are raised at the point a business rule, authorization rule or input
constraint is violated and travel unchanged through the request pipeline to
the HTTP layer, which renders them as the error envelope.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class FieldError:
    """A single failed input constraint."""

    field: str
    message: str


class TaskboardException(Exception):
    """Base exception for all taskboard errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(TaskboardException):
    """Raised when a requested resource does not exist."""

    def __init__(self, entity: str, key: Any):
        super().__init__(
            message=f'Entity "{entity}" ({key}) was not found.',
            details={"entity": entity, "key": str(key)},
        )


class ForbiddenAccessException(TaskboardException):
    """Raised when an authenticated actor may not touch a resource."""

    def __init__(self, message: str = "Access to the requested resource is forbidden."):
        super().__init__(message=message)


class ConflictException(TaskboardException):
    """Raised when a write would violate a uniqueness rule."""


class ValidationFailedException(TaskboardException):
    """Raised with every input constraint that failed for a request."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        super().__init__(
            message="Validation failed.",
            details={"errors": [(e.field, e.message) for e in self.errors]},
        )


class UnauthenticatedException(TaskboardException):
    """Raised when a request carries no valid credential."""

    def __init__(self, message: str = "Authentication failed."):
        super().__init__(message=message)
