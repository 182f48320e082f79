"""
Shared fixtures: a reference schedule, a catalog and a frozen clock.
"""

from datetime import time

import pytest

from slotkeeper.adapters.memory_store import (
    InMemoryAppointmentStore,
    InMemoryScheduleRepository,
    InMemoryServiceCatalog,
)
from slotkeeper.domain.models import Schedule, Service, Weekday
from slotkeeper.services.engine import BookingEngine

from helpers import MONDAY, TZ, at, frozen_clock


@pytest.fixture
def schedule():
    """09:00-18:00, lunch 12:00-13:00, closed on Sunday, 30 minute grid."""
    return Schedule(
        start_time=time(9, 0),
        end_time=time(18, 0),
        lunch_start=time(12, 0),
        lunch_end=time(13, 0),
        days_off=frozenset({Weekday.SUNDAY}),
        slot_granularity_minutes=30,
        timezone=TZ,
    )


@pytest.fixture
def haircut():
    return Service(id="haircut", name="Saç Kesimi", duration_minutes=30, price=150)


@pytest.fixture
def combo():
    return Service(id="combo", name="Kombo (Saç + Sakal)", duration_minutes=60, price=300)


@pytest.fixture
def catalog(haircut, combo):
    return InMemoryServiceCatalog(
        [
            haircut,
            combo,
            Service(id="skincare", name="Cilt Bakımı", duration_minutes=45, price=200),
            Service(id="retired", name="Perma", duration_minutes=90, is_active=False),
        ]
    )


@pytest.fixture
def now():
    """Monday morning before the shop opens."""
    return at(MONDAY, 8, 0)


@pytest.fixture
def store():
    return InMemoryAppointmentStore()


@pytest.fixture
def engine(schedule, catalog, store, now):
    schedules = InMemoryScheduleRepository({"ahmet": schedule})
    return BookingEngine(schedules, catalog, store, clock=frozen_clock(now))
