"""
Availability service: which start times can a service be booked at.

Combines the provider's schedule, the slot grid and the provider's active
appointments for the day. The store is only read here; isolation for
this path can be relaxed.
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import List, Optional, Sequence

import pendulum
from pendulum import DateTime

from ..domain.exceptions import ScheduleNotFound
from ..domain.models import (
    Appointment,
    AvailableSlot,
    Schedule,
    Service,
    intervals_overlap,
    minutes_of,
)
from ..domain.slot_generator import SlotGenerator
from .repositories import AppointmentStore, Clock, ScheduleRepository

logger = logging.getLogger(__name__)


def local_datetime(day: date, moment: time, timezone: str) -> DateTime:
    """Combine a calendar date and a time of day in a provider's timezone."""
    return pendulum.datetime(
        day.year, day.month, day.day, moment.hour, moment.minute, tz=timezone
    )


def day_bounds(day: date, timezone: str):
    """[start, end) of a calendar day in the given timezone."""
    start = pendulum.datetime(day.year, day.month, day.day, tz=timezone)
    return start, start.add(days=1)


class AvailabilityService:
    """
    Computes bookable slots for (provider, date, service).

    Every candidate that fits the working day is returned with an
    ``is_available`` flag; candidates that would run past closing time or
    into lunch are left out.
    """

    def __init__(
        self,
        schedules: ScheduleRepository,
        appointments: AppointmentStore,
        clock: Clock = pendulum.now,
    ) -> None:
        self._schedules = schedules
        self._appointments = appointments
        self._clock = clock

    def load_schedule(self, provider_id: str) -> Schedule:
        schedule = self._schedules.get(provider_id)
        if schedule is None:
            raise ScheduleNotFound(provider_id)
        return schedule

    def get_available_slots(
        self,
        provider_id: str,
        day: date,
        service: Service,
    ) -> List[AvailableSlot]:
        """
        Return the day's candidate slots for ``service`` in ascending order.

        Raises:
            ScheduleNotFound: the provider has no schedule
            ValidationError: the service definition is invalid
        """
        schedule = self.load_schedule(provider_id)
        return self.slots_for_schedule(provider_id, schedule, day, service)

    def slots_for_schedule(
        self,
        provider_id: str,
        schedule: Schedule,
        day: date,
        service: Service,
    ) -> List[AvailableSlot]:
        """Same as ``get_available_slots`` with an already loaded schedule."""
        service.validate()

        starts = self.feasible_starts(schedule, day, service.duration_minutes)
        if not starts:
            return []

        day_start, day_end = day_bounds(day, schedule.timezone)
        busy = self._appointments.find_overlapping(provider_id, day_start, day_end)

        return self.calculate_slots(
            schedule=schedule,
            day=day,
            starts=starts,
            duration_minutes=service.duration_minutes,
            busy=busy,
            now=self._clock(),
        )

    @staticmethod
    def feasible_starts(schedule: Schedule, day: date, duration_minutes: int) -> List[time]:
        """
        Grid start points where the whole service fits before closing time
        and clear of the lunch window.
        """
        end = minutes_of(schedule.end_time)
        lunch = schedule.lunch_minutes()

        feasible: List[time] = []
        for start in SlotGenerator(schedule).generate_slots(day):
            start_minute = minutes_of(start)
            finish = start_minute + duration_minutes
            if finish > end:
                continue
            if lunch is not None and intervals_overlap(start_minute, finish, *lunch):
                continue
            feasible.append(start)
        return feasible

    @staticmethod
    def calculate_slots(
        *,
        schedule: Schedule,
        day: date,
        starts: Sequence[time],
        duration_minutes: int,
        busy: Sequence[Appointment],
        now: Optional[DateTime] = None,
    ) -> List[AvailableSlot]:
        """
        Mark each start as free or busy against existing appointments.
        Starts that fall into a DST gap do not exist locally and are dropped.
        """
        active = [appointment for appointment in busy if appointment.is_active]
        slots: List[AvailableSlot] = []

        for start in starts:
            starts_at = local_datetime(day, start, schedule.timezone)
            if (starts_at.hour, starts_at.minute) != (start.hour, start.minute):
                # wall-clock time skipped by a DST transition
                logger.debug("%s %s does not exist in %s", day.isoformat(), start, schedule.timezone)
                continue
            ends_at = starts_at.add(minutes=duration_minutes)
            conflicts = tuple(
                appointment.id
                for appointment in active
                if appointment.overlaps(starts_at, ends_at)
            )
            is_past = now is not None and starts_at <= now
            slots.append(
                AvailableSlot(
                    start_time=start,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    is_available=not conflicts and not is_past,
                    conflicts=conflicts,
                )
            )

        logger.debug(
            "%s: %d candidate slot(s), %d free",
            day.isoformat(),
            len(slots),
            sum(1 for slot in slots if slot.is_available),
        )
        return slots
