"""
Booking transaction and appointment lifecycle.

``BookingService.book`` re-derives the slot from the provider's schedule,
then hands the appointment to the store's atomic ``reserve``. The
availability pre-check only gives early feedback; ``reserve`` is what
guarantees that two concurrent bookers never both win.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..domain.models import (
    ACTIONS,
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    CustomerRef,
    Service,
    TimeRange,
)
from .availability import AvailabilityService
from .repositories import AppointmentStore, Clock

logger = logging.getLogger(__name__)


def coerce_instant(value, field: str = "starts_at") -> DateTime:
    """Turn an aware datetime into a pendulum DateTime."""
    if not isinstance(value, datetime):
        raise ValidationError(field, "invalid_time", f"{field} must be a datetime, got {value!r}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(field, "naive_datetime", f"{field} must be timezone-aware")
    return pendulum.instance(value)


class BookingService:
    """
    Creates appointments without double-booking and drives their status.
    """

    def __init__(
        self,
        availability: AvailabilityService,
        appointments: AppointmentStore,
        clock: Clock = pendulum.now,
    ) -> None:
        self._availability = availability
        self._appointments = appointments
        self._clock = clock

    def book(
        self,
        provider_id: str,
        customer: CustomerRef,
        service: Service,
        starts_at,
        *,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        idempotency_key: Optional[str] = None,
    ) -> Appointment:
        """
        Reserve ``service`` for ``customer`` at ``starts_at``.

        ``status`` is ``pending`` for customer self-booking and
        ``confirmed`` for appointments entered by the provider; both go
        through the same checks.

        Raises:
            ValidationError: bad input, past start, or a start that is not
                a schedule-valid slot for this service
            ConflictError: the interval overlaps an active appointment
            ScheduleNotFound: the provider has no schedule
            StoreUnavailableError: the store failed; nothing was written
        """
        status = AppointmentStatus.parse(status)
        if status not in ACTIVE_STATUSES:
            raise ValidationError(
                "status",
                "invalid_status",
                f"New appointments must be pending or confirmed, not {status.value}",
            )
        service.validate()
        if not service.is_active:
            raise ValidationError(
                "service_id", "inactive_service", f"Service {service.name} is not bookable"
            )
        customer.validate()
        starts_at = coerce_instant(starts_at)

        previous = self._replay(provider_id, idempotency_key)
        if previous is not None:
            return previous

        now = self._clock()
        if starts_at <= now:
            raise ValidationError(
                "starts_at", "in_past", f"Cannot book {starts_at.to_iso8601_string()}: it is in the past"
            )

        schedule = self._availability.load_schedule(provider_id)
        local_start = starts_at.in_timezone(schedule.timezone)
        slots = self._availability.slots_for_schedule(
            provider_id, schedule, local_start.date(), service
        )
        slot = next((candidate for candidate in slots if candidate.starts_at == starts_at), None)
        if slot is None:
            raise ValidationError(
                "starts_at",
                "outside_schedule",
                f"{local_start.format('DD.MM.YYYY HH:mm')} is not a bookable start "
                f"for {service.name} ({service.duration_minutes} min)",
            )

        requested = TimeRange(start=slot.starts_at, end=slot.ends_at)
        if slot.conflicts:
            # a concurrent retry with the same key may have just landed
            previous = self._replay(provider_id, idempotency_key)
            if previous is not None:
                return previous
            logger.warning(
                "Booking rejected for provider %s: %s overlaps %s",
                provider_id,
                requested,
                ", ".join(slot.conflicts),
            )
            raise ConflictError(provider_id, requested)

        appointment = Appointment(
            id=str(uuid.uuid4()),
            provider_id=provider_id,
            service_id=service.id,
            customer=customer,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            status=status,
            created_at=now,
            idempotency_key=idempotency_key,
        )

        try:
            stored = self._appointments.reserve(appointment)
        except ConflictError:
            logger.warning("Booking lost race for provider %s at %s", provider_id, requested)
            raise

        logger.info(
            "Booked %s for %s with provider %s at %s (%s)",
            stored.id,
            customer.display_name(),
            provider_id,
            requested,
            stored.status.value,
        )
        return stored

    def _replay(self, provider_id: str, idempotency_key: Optional[str]) -> Optional[Appointment]:
        if not idempotency_key:
            return None
        previous = self._appointments.get_by_idempotency_key(provider_id, idempotency_key)
        if previous is not None:
            logger.info(
                "Replayed booking %s for provider %s (key %s)",
                previous.id,
                provider_id,
                idempotency_key,
            )
        return previous

    def get(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError("appointment", appointment_id)
        return appointment

    def update_status(self, appointment_id: str, new_status) -> Appointment:
        """
        Apply a status change allowed by the lifecycle table.

        Raises:
            NotFoundError: unknown appointment
            InvalidTransitionError: the change is not allowed from the
                current status
            ValidationError: ``new_status`` is not a known status
        """
        target = AppointmentStatus.parse(new_status)
        current = self.get(appointment_id)
        if not current.status.can_transition_to(target):
            logger.warning(
                "Rejected status change for %s: %s -> %s",
                appointment_id,
                current.status.value,
                target.value,
            )
            raise InvalidTransitionError(current.status, target)

        updated = self._appointments.update_status(appointment_id, current.status, target)
        logger.info(
            "Appointment %s: %s -> %s", appointment_id, current.status.value, target.value
        )
        return updated

    def apply_action(self, appointment_id: str, action: str) -> Appointment:
        """Run a named provider action (confirm, reject, complete, cancel)."""
        try:
            sources, target = ACTIONS[action]
        except KeyError:
            raise ValidationError("action", "invalid_status", f"Unknown action: {action!r}") from None

        current = self.get(appointment_id)
        if current.status not in sources:
            raise InvalidTransitionError(current.status, target)
        return self.update_status(appointment_id, target)

    def confirm(self, appointment_id: str) -> Appointment:
        return self.apply_action(appointment_id, "confirm")

    def reject(self, appointment_id: str) -> Appointment:
        return self.apply_action(appointment_id, "reject")

    def complete(self, appointment_id: str) -> Appointment:
        return self.apply_action(appointment_id, "complete")

    def cancel(self, appointment_id: str) -> Appointment:
        return self.apply_action(appointment_id, "cancel")
