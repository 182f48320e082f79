"""
Domain layer - Pure business logic without external dependencies.
"""

from .exceptions import (
    BookingError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ScheduleNotFound,
    StoreUnavailableError,
    ValidationError,
)
from .models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    AvailableSlot,
    CustomerRef,
    Schedule,
    Service,
    TimeRange,
    Weekday,
    validate_schedule,
)
from .slot_generator import SlotGenerator, generate_slots

__all__ = [
    "ACTIVE_STATUSES",
    "Appointment",
    "AppointmentStatus",
    "AvailableSlot",
    "BookingError",
    "ConflictError",
    "CustomerRef",
    "InvalidTransitionError",
    "NotFoundError",
    "Schedule",
    "ScheduleNotFound",
    "Service",
    "SlotGenerator",
    "StoreUnavailableError",
    "TimeRange",
    "ValidationError",
    "Weekday",
    "generate_slots",
    "validate_schedule",
]
