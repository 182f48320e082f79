"""
Collaborator protocols the booking services depend on.

Adapters in ``slotkeeper.adapters`` implement these; tests can plug in
anything with the same shape.
"""

from __future__ import annotations

from typing import Callable, Collection, List, Optional, Protocol

from pendulum import DateTime

from ..domain.models import Appointment, AppointmentStatus, Schedule, Service

Clock = Callable[[], DateTime]


class ScheduleRepository(Protocol):
    """Working schedules keyed by provider id."""

    def get(self, provider_id: str) -> Optional[Schedule]:
        """Return the provider's schedule, or None."""

    def save(self, provider_id: str, schedule: Schedule) -> None:
        """Validate and store a schedule, replacing any previous one."""


class ServiceCatalog(Protocol):
    """Service definitions keyed by service id."""

    def get(self, service_id: str) -> Optional[Service]:
        """Return the service, or None."""

    def list(self, include_inactive: bool = False) -> List[Service]:
        """Return services ordered by name."""

    def save(self, service: Service) -> None:
        """Validate and store a service."""


class AppointmentStore(Protocol):
    """
    Persisted appointments.

    ``reserve`` is the single atomic check-and-insert operation: it must
    never let two active appointments of one provider overlap, whatever
    the number of concurrent callers.
    """

    def get(self, appointment_id: str) -> Optional[Appointment]:
        """Return one appointment, or None."""

    def get_by_idempotency_key(self, provider_id: str, key: str) -> Optional[Appointment]:
        """Return the appointment created with this client key, or None."""

    def find_overlapping(
        self,
        provider_id: str,
        starts_at: DateTime,
        ends_at: DateTime,
        statuses: Optional[Collection[AppointmentStatus]] = None,
    ) -> List[Appointment]:
        """
        Appointments of one provider intersecting [starts_at, ends_at),
        ordered by start. ``statuses`` defaults to the active states.
        """

    def reserve(self, appointment: Appointment) -> Appointment:
        """
        Insert ``appointment`` unless an active one overlaps it.

        Returns the stored appointment, or the earlier appointment with the
        same idempotency key.

        Raises:
            ConflictError: the interval is already taken
            StoreUnavailableError: the store failed; nothing was written
        """

    def update_status(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        new_status: AppointmentStatus,
    ) -> Appointment:
        """
        Move an appointment from ``expected`` to ``new_status``.

        Raises:
            NotFoundError: unknown appointment
            InvalidTransitionError: the stored status is no longer ``expected``
        """
