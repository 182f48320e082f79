"""
In-process repositories for tests, demos and single-process deployments.
"""

from __future__ import annotations

import logging
import threading
from typing import Collection, Dict, List, Optional

from pendulum import DateTime

from ..domain.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from ..domain.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    Schedule,
    Service,
    find_overlapping,
    validate_schedule,
)

logger = logging.getLogger(__name__)


class InMemoryScheduleRepository:
    """Schedules keyed by provider id."""

    def __init__(self, schedules: Optional[Dict[str, Schedule]] = None):
        self._schedules: Dict[str, Schedule] = {}
        for provider_id, schedule in (schedules or {}).items():
            self.save(provider_id, schedule)

    def get(self, provider_id: str) -> Optional[Schedule]:
        return self._schedules.get(provider_id)

    def save(self, provider_id: str, schedule: Schedule) -> None:
        validate_schedule(schedule)
        self._schedules[provider_id] = schedule


class InMemoryServiceCatalog:
    """Services keyed by id."""

    def __init__(self, services: Optional[List[Service]] = None):
        self._services: Dict[str, Service] = {}
        for service in services or []:
            self.save(service)

    def get(self, service_id: str) -> Optional[Service]:
        return self._services.get(service_id)

    def list(self, include_inactive: bool = False) -> List[Service]:
        services = [
            service for service in self._services.values()
            if include_inactive or service.is_active
        ]
        return sorted(services, key=lambda s: s.name)

    def save(self, service: Service) -> None:
        service.validate()
        self._services[service.id] = service


class InMemoryAppointmentStore:
    """
    Appointment store whose ``reserve`` runs the idempotency lookup, the
    overlap check and the insert under one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._appointments: Dict[str, Appointment] = {}

    def get(self, appointment_id: str) -> Optional[Appointment]:
        with self._lock:
            return self._appointments.get(appointment_id)

    def get_by_idempotency_key(self, provider_id: str, key: str) -> Optional[Appointment]:
        with self._lock:
            return self._lookup_key(provider_id, key)

    def find_overlapping(
        self,
        provider_id: str,
        starts_at: DateTime,
        ends_at: DateTime,
        statuses: Optional[Collection[AppointmentStatus]] = None,
    ) -> List[Appointment]:
        wanted = ACTIVE_STATUSES if statuses is None else frozenset(statuses)
        with self._lock:
            matches = [
                appointment for appointment in self._appointments.values()
                if appointment.provider_id == provider_id
                and appointment.status in wanted
                and appointment.overlaps(starts_at, ends_at)
            ]
        return sorted(matches, key=lambda a: a.starts_at)

    def reserve(self, appointment: Appointment) -> Appointment:
        with self._lock:
            if appointment.idempotency_key:
                previous = self._lookup_key(appointment.provider_id, appointment.idempotency_key)
                if previous is not None:
                    return previous

            same_provider = (
                existing for existing in self._appointments.values()
                if existing.provider_id == appointment.provider_id
            )
            clash = find_overlapping(same_provider, appointment.starts_at, appointment.ends_at)
            if clash is not None:
                logger.debug("Reserve %s blocked by %s", appointment.id, clash.id)
                raise ConflictError(appointment.provider_id, appointment.time_range)

            self._appointments[appointment.id] = appointment
            return appointment

    def update_status(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        new_status: AppointmentStatus,
    ) -> Appointment:
        with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise NotFoundError("appointment", appointment_id)
            if current.status != expected:
                raise InvalidTransitionError(current.status, new_status)
            updated = current.with_status(new_status)
            self._appointments[appointment_id] = updated
            return updated

    def _lookup_key(self, provider_id: str, key: str) -> Optional[Appointment]:
        for appointment in self._appointments.values():
            if appointment.provider_id == provider_id and appointment.idempotency_key == key:
                return appointment
        return None
