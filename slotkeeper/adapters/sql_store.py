"""
SQLAlchemy-backed repositories.

Concurrency model:
- SQLite: every transaction opens with ``BEGIN IMMEDIATE``, so writers are
  serialised and the overlap check and insert in ``reserve`` cannot
  interleave with another booker.
- PostgreSQL: transactions run SERIALIZABLE and the ``appointments`` table
  carries a GiST exclusion constraint on (provider_id, [starts_at, ends_at))
  for pending/confirmed rows.

Lock and serialisation failures are retried with exponential backoff; when
the retries run out the caller gets ``StoreUnavailableError`` and nothing
has been written.

Instants are stored as naive UTC.
"""

from __future__ import annotations

import logging
import time as _time
from datetime import datetime
from typing import Callable, Collection, List, Optional, TypeVar

import pendulum
from pendulum import DateTime
from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Column,
    DateTime as SADateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Time,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import ExcludeConstraint
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.pool import StaticPool

from ..domain.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
)
from ..domain.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    CustomerRef,
    Schedule,
    Service,
    Weekday,
    validate_schedule,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_STATUS_VALUES = sorted(status.value for status in ACTIVE_STATUSES)

metadata = MetaData()

schedules_table = Table(
    "schedules",
    metadata,
    Column("provider_id", String(64), primary_key=True),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("lunch_start", Time),
    Column("lunch_end", Time),
    Column("days_off", String(32), nullable=False, default=""),
    Column("slot_granularity_minutes", Integer, nullable=False),
    Column("timezone", String(64), nullable=False),
)

services_table = Table(
    "services",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("duration_minutes", Integer, nullable=False),
    Column("price", Float),
    Column("is_active", Boolean, nullable=False, default=True),
    CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),
)

appointments_table = Table(
    "appointments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("provider_id", String(64), nullable=False),
    Column("service_id", String(64), nullable=False),
    Column("customer_id", String(64)),
    Column("customer_name", String(255)),
    Column("customer_phone", String(32)),
    Column("starts_at", SADateTime, nullable=False),
    Column("ends_at", SADateTime, nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", SADateTime, nullable=False),
    Column("idempotency_key", String(128)),
    UniqueConstraint("provider_id", "idempotency_key", name="uq_appointments_idempotency_key"),
    CheckConstraint("starts_at < ends_at", name="ck_appointments_interval"),
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'completed', 'cancelled')",
        name="ck_appointments_status",
    ),
    Index("ix_appointments_provider_starts_at", "provider_id", "starts_at"),
)

appointments_table.append_constraint(
    ExcludeConstraint(
        (appointments_table.c.provider_id, "="),
        (func.tsrange(appointments_table.c.starts_at, appointments_table.c.ends_at), "&&"),
        name="ex_appointments_no_overlap",
        using="gist",
        where=text("status IN ('pending', 'confirmed')"),
    ).ddl_if(dialect="postgresql")
)

event.listen(
    metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)


def create_store_engine(url: str, echo: bool = False, busy_timeout: float = 30.0) -> Engine:
    """
    Build an engine configured for atomic bookings.

    SQLite file databases are safe for concurrent use; ``sqlite://``
    in-memory databases share one connection and suit single-threaded use.
    """
    parsed = make_url(url)

    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, pool_pre_ping=True, isolation_level="SERIALIZABLE")

    options = {"connect_args": {"check_same_thread": False, "timeout": busy_timeout}}
    if parsed.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    engine = create_engine(url, echo=echo, **options)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_schema(engine: Engine) -> None:
    """Create missing tables and constraints."""
    metadata.create_all(engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))


def _to_db(moment: datetime) -> datetime:
    utc = pendulum.instance(moment).in_timezone("UTC")
    return datetime(
        utc.year, utc.month, utc.day, utc.hour, utc.minute, utc.second, utc.microsecond
    )


def _from_db(value: datetime) -> DateTime:
    if value.tzinfo is None:
        return pendulum.instance(value, tz="UTC")
    return pendulum.instance(value).in_timezone("UTC")


class _SqlRepository:
    """Shared transaction handling with bounded retry."""

    def __init__(self, engine: Engine, max_retries: int = 3, retry_backoff_seconds: float = 0.05):
        self._engine = engine
        self._max_retries = max(1, max_retries)
        self._retry_backoff_seconds = retry_backoff_seconds

    def _in_transaction(self, operation: str, work: Callable[[Connection], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._engine.begin() as conn:
                    return work(conn)
            except OperationalError as exc:
                if attempt >= self._max_retries:
                    logger.error(
                        "%s failed after %d attempt(s): %s", operation, attempt, exc.orig
                    )
                    raise StoreUnavailableError(operation, attempt) from exc
                delay = self._retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s attempt %d failed (%s); retrying in %.3fs",
                    operation,
                    attempt,
                    exc.orig,
                    delay,
                )
                _time.sleep(delay)


class SqlScheduleRepository(_SqlRepository):
    """Schedules table."""

    def get(self, provider_id: str) -> Optional[Schedule]:
        def work(conn: Connection) -> Optional[Schedule]:
            row = conn.execute(
                select(schedules_table).where(schedules_table.c.provider_id == provider_id)
            ).mappings().first()
            return self._row_to_schedule(row) if row else None

        return self._in_transaction("load schedule", work)

    def save(self, provider_id: str, schedule: Schedule) -> None:
        validate_schedule(schedule)
        values = {
            "provider_id": provider_id,
            "start_time": schedule.start_time,
            "end_time": schedule.end_time,
            "lunch_start": schedule.lunch_start,
            "lunch_end": schedule.lunch_end,
            "days_off": ",".join(str(int(day)) for day in sorted(schedule.days_off)),
            "slot_granularity_minutes": schedule.slot_granularity_minutes,
            "timezone": schedule.timezone,
        }

        def work(conn: Connection) -> None:
            conn.execute(
                delete(schedules_table).where(schedules_table.c.provider_id == provider_id)
            )
            conn.execute(insert(schedules_table).values(**values))

        self._in_transaction("save schedule", work)

    @staticmethod
    def _row_to_schedule(row) -> Schedule:
        days = [Weekday(int(day)) for day in row["days_off"].split(",") if day]
        return Schedule(
            start_time=row["start_time"],
            end_time=row["end_time"],
            lunch_start=row["lunch_start"],
            lunch_end=row["lunch_end"],
            days_off=frozenset(days),
            slot_granularity_minutes=row["slot_granularity_minutes"],
            timezone=row["timezone"],
        )


class SqlServiceCatalog(_SqlRepository):
    """Services table."""

    def get(self, service_id: str) -> Optional[Service]:
        def work(conn: Connection) -> Optional[Service]:
            row = conn.execute(
                select(services_table).where(services_table.c.id == service_id)
            ).mappings().first()
            return self._row_to_service(row) if row else None

        return self._in_transaction("load service", work)

    def list(self, include_inactive: bool = False) -> List[Service]:
        query = select(services_table).order_by(services_table.c.name)
        if not include_inactive:
            query = query.where(services_table.c.is_active.is_(True))

        def work(conn: Connection) -> List[Service]:
            return [self._row_to_service(row) for row in conn.execute(query).mappings()]

        return self._in_transaction("list services", work)

    def save(self, service: Service) -> None:
        service.validate()
        values = {
            "id": service.id,
            "name": service.name,
            "duration_minutes": service.duration_minutes,
            "price": service.price,
            "is_active": service.is_active,
        }

        def work(conn: Connection) -> None:
            conn.execute(delete(services_table).where(services_table.c.id == service.id))
            conn.execute(insert(services_table).values(**values))

        self._in_transaction("save service", work)

    @staticmethod
    def _row_to_service(row) -> Service:
        return Service(
            id=row["id"],
            name=row["name"],
            duration_minutes=row["duration_minutes"],
            price=row["price"],
            is_active=bool(row["is_active"]),
        )


class SqlAppointmentStore(_SqlRepository):
    """Appointments table with atomic ``reserve``."""

    def get(self, appointment_id: str) -> Optional[Appointment]:
        def work(conn: Connection) -> Optional[Appointment]:
            return self._fetch(conn, appointment_id)

        return self._in_transaction("load appointment", work)

    def get_by_idempotency_key(self, provider_id: str, key: str) -> Optional[Appointment]:
        def work(conn: Connection) -> Optional[Appointment]:
            return self._fetch_by_key(conn, provider_id, key)

        return self._in_transaction("load appointment by key", work)

    def find_overlapping(
        self,
        provider_id: str,
        starts_at: DateTime,
        ends_at: DateTime,
        statuses: Optional[Collection[AppointmentStatus]] = None,
    ) -> List[Appointment]:
        wanted = ACTIVE_STATUSES if statuses is None else statuses
        query = (
            select(appointments_table)
            .where(
                appointments_table.c.provider_id == provider_id,
                appointments_table.c.status.in_(sorted(status.value for status in wanted)),
                appointments_table.c.starts_at < _to_db(ends_at),
                appointments_table.c.ends_at > _to_db(starts_at),
            )
            .order_by(appointments_table.c.starts_at)
        )

        def work(conn: Connection) -> List[Appointment]:
            return [self._row_to_appointment(row) for row in conn.execute(query).mappings()]

        return self._in_transaction("query appointments", work)

    def reserve(self, appointment: Appointment) -> Appointment:
        try:
            return self._in_transaction("reserve", lambda conn: self._reserve(conn, appointment))
        except IntegrityError as exc:
            # Lost a race the in-transaction check could not see (PostgreSQL
            # exclusion or idempotency constraint).
            if appointment.idempotency_key:
                previous = self.get_by_idempotency_key(
                    appointment.provider_id, appointment.idempotency_key
                )
                if previous is not None:
                    return previous
            raise ConflictError(appointment.provider_id, appointment.time_range) from exc

    def update_status(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        new_status: AppointmentStatus,
    ) -> Appointment:
        def work(conn: Connection) -> Appointment:
            result = conn.execute(
                update(appointments_table)
                .where(
                    appointments_table.c.id == appointment_id,
                    appointments_table.c.status == expected.value,
                )
                .values(status=new_status.value)
            )
            current = self._fetch(conn, appointment_id)
            if current is None:
                raise NotFoundError("appointment", appointment_id)
            if result.rowcount == 0:
                raise InvalidTransitionError(current.status, new_status)
            return current

        return self._in_transaction("update status", work)

    def _reserve(self, conn: Connection, appointment: Appointment) -> Appointment:
        if appointment.idempotency_key:
            previous = self._fetch_by_key(
                conn, appointment.provider_id, appointment.idempotency_key
            )
            if previous is not None:
                return previous

        clash = conn.execute(
            select(appointments_table.c.id)
            .where(
                appointments_table.c.provider_id == appointment.provider_id,
                appointments_table.c.status.in_(ACTIVE_STATUS_VALUES),
                appointments_table.c.starts_at < _to_db(appointment.ends_at),
                appointments_table.c.ends_at > _to_db(appointment.starts_at),
            )
            .limit(1)
        ).scalar()
        if clash is not None:
            logger.debug("Reserve %s blocked by %s", appointment.id, clash)
            raise ConflictError(appointment.provider_id, appointment.time_range)

        conn.execute(insert(appointments_table).values(**self._appointment_to_row(appointment)))
        return appointment

    def _fetch(self, conn: Connection, appointment_id: str) -> Optional[Appointment]:
        row = conn.execute(
            select(appointments_table).where(appointments_table.c.id == appointment_id)
        ).mappings().first()
        return self._row_to_appointment(row) if row else None

    def _fetch_by_key(self, conn: Connection, provider_id: str, key: str) -> Optional[Appointment]:
        row = conn.execute(
            select(appointments_table).where(
                appointments_table.c.provider_id == provider_id,
                appointments_table.c.idempotency_key == key,
            )
        ).mappings().first()
        return self._row_to_appointment(row) if row else None

    @staticmethod
    def _appointment_to_row(appointment: Appointment) -> dict:
        return {
            "id": appointment.id,
            "provider_id": appointment.provider_id,
            "service_id": appointment.service_id,
            "customer_id": appointment.customer.customer_id,
            "customer_name": appointment.customer.name,
            "customer_phone": appointment.customer.phone,
            "starts_at": _to_db(appointment.starts_at),
            "ends_at": _to_db(appointment.ends_at),
            "status": appointment.status.value,
            "created_at": _to_db(appointment.created_at),
            "idempotency_key": appointment.idempotency_key,
        }

    @staticmethod
    def _row_to_appointment(row) -> Appointment:
        return Appointment(
            id=row["id"],
            provider_id=row["provider_id"],
            service_id=row["service_id"],
            customer=CustomerRef(
                customer_id=row["customer_id"],
                name=row["customer_name"],
                phone=row["customer_phone"],
            ),
            starts_at=_from_db(row["starts_at"]),
            ends_at=_from_db(row["ends_at"]),
            status=AppointmentStatus(row["status"]),
            created_at=_from_db(row["created_at"]),
            idempotency_key=row["idempotency_key"],
        )
