"""
Tests for the SQLAlchemy repositories on SQLite.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from slotkeeper.adapters.sql_store import (
    SqlAppointmentStore,
    SqlScheduleRepository,
    SqlServiceCatalog,
    create_store_engine,
    init_schema,
)
from slotkeeper.domain.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
)
from slotkeeper.domain.models import Appointment, AppointmentStatus, CustomerRef, Service
from slotkeeper.services.engine import BookingEngine

from helpers import MONDAY, TUESDAY, at, frozen_clock


@pytest.fixture
def db_engine(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'slots.db'}", busy_timeout=10)
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_schedules(db_engine, schedule):
    repository = SqlScheduleRepository(db_engine)
    repository.save("ahmet", schedule)
    return repository


@pytest.fixture
def sql_services(db_engine, catalog):
    repository = SqlServiceCatalog(db_engine)
    for service in catalog.list(include_inactive=True):
        repository.save(service)
    return repository


@pytest.fixture
def sql_appointments(db_engine):
    return SqlAppointmentStore(db_engine, retry_backoff_seconds=0)


@pytest.fixture
def sql_engine(sql_schedules, sql_services, sql_appointments, now):
    return BookingEngine(sql_schedules, sql_services, sql_appointments, clock=frozen_clock(now))


def _appointment(appointment_id, start, end, key=None, status=AppointmentStatus.PENDING):
    return Appointment(
        id=appointment_id,
        provider_id="ahmet",
        service_id="haircut",
        customer=CustomerRef(customer_id="c-1", name="Ali", phone="05321234567"),
        starts_at=start,
        ends_at=end,
        status=status,
        created_at=at(MONDAY, 8, 0),
        idempotency_key=key,
    )


class TestSqlScheduleRepository:
    """Tests for schedule persistence."""

    def test_round_trip(self, sql_schedules, schedule):
        assert sql_schedules.get("ahmet") == schedule

    def test_save_replaces(self, sql_schedules, schedule):
        from dataclasses import replace

        changed = replace(schedule, lunch_start=None, lunch_end=None, days_off=frozenset())
        sql_schedules.save("ahmet", changed)

        assert sql_schedules.get("ahmet") == changed

    def test_missing(self, sql_schedules):
        assert sql_schedules.get("nobody") is None


class TestSqlServiceCatalog:
    """Tests for service persistence."""

    def test_round_trip(self, sql_services, haircut):
        assert sql_services.get("haircut") == haircut

    def test_list_hides_inactive(self, sql_services):
        active = [service.id for service in sql_services.list()]
        everything = [service.id for service in sql_services.list(include_inactive=True)]

        assert "retired" not in active
        assert "retired" in everything

    def test_price_is_optional(self, sql_services):
        sql_services.save(Service(id="free", name="Danışma", duration_minutes=15))
        assert sql_services.get("free").price is None


class TestSqlAppointmentStore:
    """Tests for the appointments table."""

    def test_reserve_round_trip(self, sql_appointments):
        appointment = _appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30))
        sql_appointments.reserve(appointment)

        loaded = sql_appointments.get("a1")
        assert loaded == appointment
        assert loaded.starts_at.timezone_name == "UTC"
        assert loaded.customer.phone == "05321234567"

    def test_reserve_conflict(self, sql_appointments):
        sql_appointments.reserve(_appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30)))

        with pytest.raises(ConflictError):
            sql_appointments.reserve(_appointment("a2", at(TUESDAY, 10, 15), at(TUESDAY, 10, 45)))
        assert sql_appointments.get("a2") is None

    def test_inactive_rows_do_not_block(self, sql_appointments):
        sql_appointments.reserve(
            _appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30), status=AppointmentStatus.CANCELLED)
        )
        sql_appointments.reserve(_appointment("a2", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30)))

    def test_reserve_idempotency(self, sql_appointments):
        first = sql_appointments.reserve(
            _appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30), key="k")
        )
        second = sql_appointments.reserve(
            _appointment("a2", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30), key="k")
        )

        assert second.id == first.id
        assert sql_appointments.get_by_idempotency_key("ahmet", "k").id == "a1"
        assert sql_appointments.get("a2") is None

    def test_find_overlapping(self, sql_appointments):
        sql_appointments.reserve(_appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30)))
        sql_appointments.reserve(_appointment("a2", at(TUESDAY, 9, 0), at(TUESDAY, 9, 30)))

        found = sql_appointments.find_overlapping("ahmet", at(TUESDAY, 0, 0), at(TUESDAY, 23, 59))
        touching = sql_appointments.find_overlapping("ahmet", at(TUESDAY, 10, 30), at(TUESDAY, 11, 0))

        assert [appointment.id for appointment in found] == ["a2", "a1"]
        assert touching == []

    def test_update_status_compare_and_set(self, sql_appointments):
        sql_appointments.reserve(_appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30)))

        updated = sql_appointments.update_status(
            "a1", AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED
        )
        assert updated.status is AppointmentStatus.CONFIRMED

        with pytest.raises(InvalidTransitionError):
            sql_appointments.update_status(
                "a1", AppointmentStatus.PENDING, AppointmentStatus.CANCELLED
            )
        assert sql_appointments.get("a1").status is AppointmentStatus.CONFIRMED

    def test_update_status_missing(self, sql_appointments):
        with pytest.raises(NotFoundError):
            sql_appointments.update_status(
                "missing", AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED
            )

    def test_locked_database_is_retried_then_reported(self, sql_appointments, monkeypatch):
        calls = []

        class LockedEngine:
            def begin(self):
                calls.append(1)
                raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))

        monkeypatch.setattr(sql_appointments, "_engine", LockedEngine())

        with pytest.raises(StoreUnavailableError) as excinfo:
            sql_appointments.reserve(_appointment("a1", at(TUESDAY, 10, 0), at(TUESDAY, 10, 30)))
        assert excinfo.value.operation == "reserve"
        assert excinfo.value.attempts == 3
        assert len(calls) == 3


class TestSqlBookingEngine:
    """The booking flow end to end on SQLite."""

    def test_book_and_list(self, sql_engine):
        appointment = sql_engine.create_appointment(
            "ahmet", "combo", at(TUESDAY, 14, 0), CustomerRef(name="Ali")
        )

        assert sql_engine.list_appointments("ahmet", MONDAY) == [appointment]
        free = [
            slot.starts_at for slot in sql_engine.get_available_slots("ahmet", TUESDAY, "haircut")
            if slot.is_available
        ]
        assert at(TUESDAY, 14, 0) not in free
        assert at(TUESDAY, 14, 30) not in free
        assert at(TUESDAY, 15, 0) in free

    def test_concurrent_bookings(self, sql_engine):
        threads = 6
        barrier = threading.Barrier(threads)

        def attempt(index):
            barrier.wait()
            try:
                return sql_engine.create_appointment(
                    "ahmet", "haircut", at(TUESDAY, 10, 0), CustomerRef(name=f"Customer {index}")
                )
            except ConflictError as e:
                return e

        with ThreadPoolExecutor(max_workers=threads) as pool:
            outcomes = list(pool.map(attempt, range(threads)))

        wins = [outcome for outcome in outcomes if isinstance(outcome, Appointment)]
        assert len(wins) == 1
        assert sum(isinstance(outcome, ConflictError) for outcome in outcomes) == threads - 1
        assert [a.id for a in sql_engine.list_appointments("ahmet", MONDAY)] == [wins[0].id]
