"""
Tests for the AvailabilityService.
"""

from datetime import time

import pendulum
import pytest

from slotkeeper.adapters.memory_store import InMemoryAppointmentStore, InMemoryScheduleRepository
from slotkeeper.domain.exceptions import ScheduleNotFound, ValidationError
from slotkeeper.domain.models import (
    Appointment,
    AppointmentStatus,
    CustomerRef,
    Schedule,
    Service,
)
from slotkeeper.services.availability import AvailabilityService

from helpers import MONDAY, SUNDAY, TUESDAY, at, frozen_clock


def _appointment(appointment_id, start, end, status=AppointmentStatus.CONFIRMED, provider="ahmet"):
    return Appointment(
        id=appointment_id,
        provider_id=provider,
        service_id="haircut",
        customer=CustomerRef(name="Ali", phone="05321234567"),
        starts_at=start,
        ends_at=end,
        status=status,
        created_at=at(MONDAY, 7, 0),
    )


def _free_starts(slots):
    return [slot.start_time.strftime("%H:%M") for slot in slots if slot.is_available]


@pytest.fixture
def service_for(schedule, store, now):
    return AvailabilityService(
        InMemoryScheduleRepository({"ahmet": schedule}), store, clock=frozen_clock(now)
    )


class TestAvailabilityService:
    """Tests for AvailabilityService."""

    def test_empty_day(self, service_for, haircut):
        """Scenario A: a Tuesday without bookings."""
        slots = service_for.get_available_slots("ahmet", TUESDAY, haircut)

        assert _free_starts(slots) == [
            "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
            "13:00", "13:30", "14:00", "14:30", "15:00", "15:30",
            "16:00", "16:30", "17:00", "17:30",
        ]
        assert slots[-1].ends_at == at(TUESDAY, 18, 0)

    def test_day_off(self, service_for, haircut):
        """Scenario B: Sunday yields nothing."""
        assert service_for.get_available_slots("ahmet", SUNDAY, haircut) == []

    def test_existing_booking_blocks_slot(self, service_for, store, haircut, combo):
        """Scenario C: a confirmed 10:00-10:30 appointment."""
        store.reserve(_appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30)))

        short = service_for.get_available_slots("ahmet", TUESDAY, haircut)
        long = service_for.get_available_slots("ahmet", TUESDAY, combo)

        assert "10:00" not in _free_starts(short)
        assert "09:30" in _free_starts(short)
        assert "10:30" in _free_starts(short)
        assert "09:30" not in _free_starts(long)
        assert "10:00" not in _free_starts(long)
        assert "09:00" in _free_starts(long)

        busy = next(slot for slot in short if slot.start_time == time(10, 0))
        assert busy.conflicts == ("a1",)

    def test_duration_filtering(self, service_for, combo):
        """A 60 minute service cannot start at 11:30 or 17:30."""
        starts = [slot.start_time.strftime("%H:%M") for slot in
                  service_for.get_available_slots("ahmet", TUESDAY, combo)]

        assert "11:00" in starts
        assert "11:30" not in starts
        assert "17:00" in starts
        assert "17:30" not in starts

    def test_duration_not_multiple_of_grid(self, service_for):
        """45 minutes from 11:30 would run into lunch; from 17:30 past closing."""
        skincare = Service(id="skincare", name="Cilt Bakımı", duration_minutes=45)
        starts = [slot.start_time.strftime("%H:%M") for slot in
                  service_for.get_available_slots("ahmet", TUESDAY, skincare)]

        assert "11:00" in starts
        assert "11:30" not in starts
        assert "17:00" in starts
        assert "17:30" not in starts

    def test_no_slot_overruns_closing(self, service_for):
        for duration in (15, 30, 45, 60, 90, 120, 540):
            service = Service(id=f"s{duration}", name="x", duration_minutes=duration)
            for slot in service_for.get_available_slots("ahmet", TUESDAY, service):
                assert slot.ends_at <= at(TUESDAY, 18, 0)

    def test_cancelled_and_completed_do_not_block(self, service_for, store, haircut):
        store.reserve(
            _appointment("c1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30), AppointmentStatus.CANCELLED)
        )
        store.reserve(
            _appointment("c2", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30), AppointmentStatus.COMPLETED)
        )

        assert "10:00" in _free_starts(service_for.get_available_slots("ahmet", TUESDAY, haircut))

    def test_other_providers_do_not_block(self, service_for, store, haircut):
        store.reserve(
            _appointment("o1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30), provider="mehmet")
        )

        assert "10:00" in _free_starts(service_for.get_available_slots("ahmet", TUESDAY, haircut))

    def test_booking_from_previous_day_blocks_morning(self, store, haircut):
        """An appointment straddling midnight counts on both days."""
        schedule = Schedule(start_time=time(0, 0), end_time=time(2, 0))
        service = AvailabilityService(
            InMemoryScheduleRepository({"ahmet": schedule}), store, clock=frozen_clock(at(MONDAY, 0, 0))
        )
        store.reserve(_appointment("late", at(MONDAY, 23, 30), at(TUESDAY, 0, 30)))

        assert _free_starts(service.get_available_slots("ahmet", TUESDAY, haircut)) == [
            "00:30", "01:00", "01:30",
        ]

    def test_past_slots_are_unavailable(self, schedule, store, haircut):
        service = AvailabilityService(
            InMemoryScheduleRepository({"ahmet": schedule}),
            store,
            clock=frozen_clock(at(TUESDAY, 15, 10)),
        )
        slots = service.get_available_slots("ahmet", TUESDAY, haircut)

        assert _free_starts(slots)[0] == "15:30"
        assert len(slots) == 16

    def test_spring_forward_gap_is_skipped(self, store, haircut):
        """02:00-03:00 does not exist in Berlin on 2024-03-31."""
        day = pendulum.date(2024, 3, 31)
        schedule = Schedule(start_time=time(1, 0), end_time=time(4, 0), timezone="Europe/Berlin")
        service = AvailabilityService(
            InMemoryScheduleRepository({"ahmet": schedule}),
            store,
            clock=frozen_clock(at(day.subtract(days=1), 12, 0, tz="Europe/Berlin")),
        )
        slots = service.get_available_slots("ahmet", day, haircut)
        instants = [slot.starts_at for slot in slots]

        assert [slot.start_time.strftime("%H:%M") for slot in slots] == [
            "01:00", "01:30", "03:00", "03:30",
        ]
        assert instants == sorted(set(instants))
        assert all(slot.is_available for slot in slots)

    def test_results_are_deterministic(self, service_for, store, haircut):
        store.reserve(_appointment("a1", at(TUESDAY, 14, 0), at(TUESDAY, 15, 0)))

        first = service_for.get_available_slots("ahmet", TUESDAY, haircut)
        second = service_for.get_available_slots("ahmet", TUESDAY, haircut)

        assert first == second
        starts = [slot.starts_at for slot in first]
        assert starts == sorted(set(starts))

    def test_unknown_provider(self, service_for, haircut):
        with pytest.raises(ScheduleNotFound) as excinfo:
            service_for.get_available_slots("nobody", TUESDAY, haircut)
        assert excinfo.value.resource == "schedule"
        assert excinfo.value.identifier == "nobody"

    def test_invalid_service(self, service_for):
        with pytest.raises(ValidationError):
            service_for.get_available_slots(
                "ahmet", TUESDAY, Service(id="bad", name="Bad", duration_minutes=0)
            )

    def test_only_scoped_range_is_read(self, schedule, haircut, now):
        """The store is asked for one provider and one day."""

        class RecordingStore(InMemoryAppointmentStore):
            def __init__(self):
                super().__init__()
                self.calls = []

            def find_overlapping(self, provider_id, starts_at, ends_at, statuses=None):
                self.calls.append((provider_id, starts_at, ends_at))
                return super().find_overlapping(provider_id, starts_at, ends_at, statuses)

        recording = RecordingStore()
        service = AvailabilityService(
            InMemoryScheduleRepository({"ahmet": schedule}), recording, clock=frozen_clock(now)
        )
        service.get_available_slots("ahmet", TUESDAY, haircut)

        assert recording.calls == [("ahmet", at(TUESDAY, 0, 0), at(TUESDAY.add(days=1), 0, 0))]
