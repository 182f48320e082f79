"""
Domain-specific exception hierarchy for the booking engine.

Every error carries the identifiers a caller needs to render a precise
message; nothing here is retried or recovered inside the core.
"""

from __future__ import annotations

from typing import Optional


class BookingError(Exception):
    """Base class for all application-level errors."""


class ValidationError(BookingError):
    """Raised when input or a schedule is malformed."""

    def __init__(self, field: str, reason: str, message: Optional[str] = None):
        self.field = field
        self.reason = reason
        super().__init__(message or f"Invalid {field}: {reason}")


class ConflictError(BookingError):
    """Raised when the requested interval overlaps an active appointment."""

    def __init__(self, provider_id: str, requested_interval):
        self.provider_id = provider_id
        self.requested_interval = requested_interval
        super().__init__(
            f"Requested interval {requested_interval} is no longer free for "
            f"provider {provider_id}; choose another slot"
        )


class NotFoundError(BookingError):
    """Raised when a provider, service or appointment does not exist."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"Unknown {resource}: {identifier}")


class ScheduleNotFound(NotFoundError):
    """Raised when a provider has no working schedule."""

    def __init__(self, provider_id: str):
        super().__init__("schedule", provider_id)


class InvalidTransitionError(BookingError):
    """Raised when an appointment status change breaks the state machine."""

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot change appointment status from {getattr(from_status, 'value', from_status)} "
            f"to {getattr(to_status, 'value', to_status)}"
        )


class StoreUnavailableError(BookingError):
    """Raised when the backing store fails and the operation was not applied."""

    def __init__(self, operation: str, attempts: int = 1, message: Optional[str] = None):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            message or f"Store unavailable during {operation} after {attempts} attempt(s)"
        )
