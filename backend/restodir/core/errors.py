"""Typed errors raised by the lifecycle and discovery services.

The API layer maps each class to an HTTP status via ``http_status``; services
never translate them into HTTP concerns themselves.
"""

from __future__ import annotations


class DirectoryError(Exception):
    """Base exception for all domain errors."""

    code = "directory_error"
    http_status = 400

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationError(DirectoryError):
    """Malformed or out-of-range input."""

    code = "validation_error"
    http_status = 422

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidCoordinates(ValidationError):
    code = "invalid_coordinates"


class InvalidRadius(ValidationError):
    code = "invalid_radius"


class InvalidBounds(ValidationError):
    code = "invalid_bounds"


class InvalidFilterValue(ValidationError):
    code = "invalid_filter_value"


class DuplicateName(ValidationError):
    """Partner already owns a live establishment with this name."""

    code = "duplicate_name"
    http_status = 409


class Forbidden(DirectoryError):
    """Caller lacks ownership or role for the mutation."""

    code = "forbidden"
    http_status = 403


class IllegalTransition(DirectoryError):
    """Requested status change is not in the transition table."""

    code = "illegal_transition"
    http_status = 409

    def __init__(self, message: str, current: str | None = None, action: str | None = None) -> None:
        super().__init__(message)
        self.current = current
        self.action = action


class StaleState(DirectoryError):
    """Optimistic-concurrency loss: the record changed since it was read."""

    code = "stale_state"
    http_status = 409

    def __init__(self, entity_id: str, expected_status: str | None = None) -> None:
        super().__init__(
            f"Establishment {entity_id} was modified concurrently. Reload and try again."
        )
        self.entity_id = entity_id
        self.expected_status = expected_status


class NotFound(DirectoryError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity_id: str) -> None:
        super().__init__(f"Establishment {entity_id} not found")
        self.entity_id = entity_id
