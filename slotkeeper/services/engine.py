"""
Public entry point used by the web front end and the CLI.

``BookingEngine`` resolves ids through the collaborators and delegates to
the availability and booking services.
"""

from __future__ import annotations

from datetime import date
from typing import Collection, List, Optional

import pendulum

from ..domain.exceptions import NotFoundError, ValidationError
from ..domain.models import (
    Appointment,
    AppointmentStatus,
    AvailableSlot,
    CustomerRef,
    Service,
)
from .availability import AvailabilityService, day_bounds
from .booking import BookingService
from .repositories import AppointmentStore, Clock, ScheduleRepository, ServiceCatalog


class BookingEngine:
    """
    Facade over availability lookups, bookings and status changes.
    """

    def __init__(
        self,
        schedules: ScheduleRepository,
        services: ServiceCatalog,
        appointments: AppointmentStore,
        clock: Clock = pendulum.now,
    ) -> None:
        self.schedules = schedules
        self.services = services
        self.appointments = appointments
        self.availability = AvailabilityService(schedules, appointments, clock=clock)
        self.booking = BookingService(self.availability, appointments, clock=clock)

    def get_service(self, service_id: str) -> Service:
        service = self.services.get(service_id)
        if service is None:
            raise NotFoundError("service", service_id)
        return service

    def get_available_slots(
        self, provider_id: str, day: date, service_id: str
    ) -> List[AvailableSlot]:
        """Free/busy candidate slots for a provider, date and service."""
        service = self.get_service(service_id)
        return self.availability.get_available_slots(provider_id, day, service)

    def create_appointment(
        self,
        provider_id: str,
        service_id: str,
        starts_at,
        customer: CustomerRef,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        idempotency_key: Optional[str] = None,
    ) -> Appointment:
        """Book a slot; see ``BookingService.book`` for the failure modes."""
        service = self.get_service(service_id)
        return self.booking.book(
            provider_id,
            customer,
            service,
            starts_at,
            status=status,
            idempotency_key=idempotency_key,
        )

    def update_appointment_status(self, appointment_id: str, new_status) -> Appointment:
        return self.booking.update_status(appointment_id, new_status)

    def list_appointments(
        self,
        provider_id: str,
        from_date: date,
        statuses: Optional[Collection[AppointmentStatus]] = None,
        days: Optional[int] = None,
    ) -> List[Appointment]:
        """
        Provider agenda starting at ``from_date`` (provider's local midnight),
        all statuses unless ``statuses`` is given, ordered by start time.
        ``days`` limits the window; None means no upper bound.

        Raises:
            ValidationError: ``days`` is less than 1
        """
        if days is not None and days < 1:
            raise ValidationError("days", "invalid_range", f"days must be at least 1, got {days}")
        schedule = self.availability.load_schedule(provider_id)
        start, _ = day_bounds(from_date, schedule.timezone)
        end = start.add(days=days) if days is not None else start.add(years=100)
        wanted = set(statuses) if statuses is not None else set(AppointmentStatus)
        return self.appointments.find_overlapping(provider_id, start, end, statuses=wanted)
