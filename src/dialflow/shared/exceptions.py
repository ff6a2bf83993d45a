"""
Custom exceptions for the application.
"""

from typing import Any
from uuid import UUID


class AppError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, code: str = "APP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(AppError):
    """Requested entity does not exist."""

    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code)


class BroadcastNotFoundError(NotFoundError):
    """Broadcast not found."""

    def __init__(self, broadcast_id: UUID) -> None:
        super().__init__(
            f"Broadcast with ID {broadcast_id} not found",
            "BROADCAST_NOT_FOUND",
        )
        self.broadcast_id = broadcast_id


class WorkItemNotFoundError(NotFoundError):
    """Work item not found."""

    def __init__(self, identifier: UUID | str) -> None:
        super().__init__(
            f"Work item not found: {identifier}",
            "WORK_ITEM_NOT_FOUND",
        )
        self.identifier = identifier


class InvalidStatusTransitionError(AppError):
    """Status change not allowed by the transition table."""

    def __init__(
        self,
        current_status: Any,
        target_status: Any,
        valid_transitions: set[Any] | frozenset[Any],
    ) -> None:
        valid_str = (
            ", ".join(sorted(s.value for s in valid_transitions))
            if valid_transitions
            else "none"
        )
        super().__init__(
            f"Cannot transition from '{current_status.value}' to '{target_status.value}'. "
            f"Valid transitions: {valid_str}",
            "INVALID_STATUS_TRANSITION",
        )
        self.current_status = current_status
        self.target_status = target_status
        self.valid_transitions = valid_transitions


class ValidationError(AppError):
    """Validation error."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "VALIDATION_ERROR")
