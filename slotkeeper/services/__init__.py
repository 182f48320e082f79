"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .availability import AvailabilityService
from .booking import BookingService
from .engine import BookingEngine
from .repositories import AppointmentStore, Clock, ScheduleRepository, ServiceCatalog

__all__ = [
    "AppointmentStore",
    "AvailabilityService",
    "BookingEngine",
    "BookingService",
    "Clock",
    "ScheduleRepository",
    "ServiceCatalog",
]
