"""
Candidate slot generation for a provider's working day.

Pure domain logic: no store access, no clock. The generator only emits
start points on the schedule's grid; whether a particular service fits
at a start point is decided by the availability service.
"""

from datetime import date, time
from typing import Iterator, List

from .models import Schedule, intervals_overlap, minutes_of, time_from_minutes


class SlotGenerator:
    """
    Produces the ordered candidate start times for a date.

    Algorithm:
    1. Days off yield nothing
    2. Walk from start_time towards end_time in granularity steps
    3. Drop every step whose grid cell touches the lunch window
    """

    def __init__(self, schedule: Schedule):
        self.schedule = schedule

    def generate_slots(self, day: date) -> List[time]:
        """
        Return candidate start times for ``day`` in ascending order.

        A fresh list is built on every call, so the result can be iterated
        any number of times.
        """
        if self.schedule.is_day_off(day):
            return []
        return list(self._walk_grid())

    def _walk_grid(self) -> Iterator[time]:
        step = self.schedule.slot_granularity_minutes
        end = minutes_of(self.schedule.end_time)
        lunch = self.schedule.lunch_minutes()

        current = minutes_of(self.schedule.start_time)
        while current < end:
            if lunch is None or not intervals_overlap(current, current + step, *lunch):
                yield time_from_minutes(current)
            current += step


def generate_slots(schedule: Schedule, day: date) -> List[time]:
    """Convenience wrapper around ``SlotGenerator``."""
    return SlotGenerator(schedule).generate_slots(day)
