"""
Domain models for schedules, services and appointments.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import time
from enum import Enum, IntEnum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from pendulum import DateTime

from .exceptions import ValidationError

MINUTES_PER_DAY = 24 * 60
DEFAULT_GRANULARITY_MINUTES = 30
DEFAULT_TIMEZONE = "Europe/Istanbul"


def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    """Half-open overlap test: [a_start, a_end) and [b_start, b_end) intersect."""
    return a_start < b_end and a_end > b_start


def minutes_of(value: time) -> int:
    """Minutes since midnight for a time of day."""
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> time:
    """Inverse of ``minutes_of`` for values inside a single day."""
    return time(hour=minutes // 60, minute=minutes % 60)


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


class Weekday(IntEnum):
    """Day of the week, Monday = 0 (matches ``date.weekday()``)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def turkish_name(self) -> str:
        return _TURKISH_NAMES[self]

    @classmethod
    def of(cls, day) -> "Weekday":
        """Weekday of a date or datetime."""
        return cls(day.weekday())

    @classmethod
    def parse(cls, value) -> "Weekday":
        """
        Accept a Weekday, an int 0-6, an English name or abbreviation,
        or one of the Turkish day names stored by the booking front end.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value <= 6:
                return cls(value)
        elif isinstance(value, str):
            key = value.strip().casefold()
            if key.isdigit() and 0 <= int(key) <= 6:
                return cls(int(key))
            if key in _NAME_LOOKUP:
                return _NAME_LOOKUP[key]
        raise ValidationError("days_off", "invalid_weekday", f"Unknown weekday: {value!r}")


_TURKISH_NAMES: Dict[Weekday, str] = {
    Weekday.MONDAY: "Pazartesi",
    Weekday.TUESDAY: "Salı",
    Weekday.WEDNESDAY: "Çarşamba",
    Weekday.THURSDAY: "Perşembe",
    Weekday.FRIDAY: "Cuma",
    Weekday.SATURDAY: "Cumartesi",
    Weekday.SUNDAY: "Pazar",
}

_NAME_LOOKUP: Dict[str, Weekday] = {}
for _day in Weekday:
    _NAME_LOOKUP[_day.name.casefold()] = _day
    _NAME_LOOKUP[_day.name[:3].casefold()] = _day
    _NAME_LOOKUP[_TURKISH_NAMES[_day].casefold()] = _day


@dataclass(frozen=True)
class Schedule:
    """
    A provider's recurring working-hours template.

    A lunch window with ``lunch_start == lunch_end`` (or both unset) is
    disabled. Construction normalises ``days_off`` but does not validate;
    call ``validate_schedule`` before persisting.
    """
    start_time: time
    end_time: time
    lunch_start: Optional[time] = None
    lunch_end: Optional[time] = None
    days_off: FrozenSet[Weekday] = frozenset()
    slot_granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES
    timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self):
        object.__setattr__(
            self, "days_off", frozenset(Weekday.parse(day) for day in self.days_off)
        )

    @property
    def has_lunch(self) -> bool:
        return (
            self.lunch_start is not None
            and self.lunch_end is not None
            and self.lunch_start != self.lunch_end
        )

    def lunch_minutes(self) -> Optional[Tuple[int, int]]:
        """Lunch window in minutes since midnight, or None when disabled."""
        if not self.has_lunch:
            return None
        return minutes_of(self.lunch_start), minutes_of(self.lunch_end)

    def is_day_off(self, day) -> bool:
        return Weekday.of(day) in self.days_off

    def validate(self) -> None:
        validate_schedule(self)


def _check_minute_resolution(name: str, value) -> None:
    if not isinstance(value, time):
        raise ValidationError(name, "invalid_time", f"{name} must be a time of day, got {value!r}")
    if value.second or value.microsecond or value.tzinfo is not None:
        raise ValidationError(
            name, "invalid_time", f"{name} must be a naive time with minute resolution"
        )


def validate_schedule(schedule: Schedule) -> None:
    """
    Reject an inconsistent schedule.

    Raises:
        ValidationError: with reason ``start_after_end``,
            ``lunch_out_of_range``, ``invalid_granularity`` or
            ``invalid_time``.
    """
    _check_minute_resolution("start_time", schedule.start_time)
    _check_minute_resolution("end_time", schedule.end_time)
    if schedule.start_time >= schedule.end_time:
        raise ValidationError(
            "start_time",
            "start_after_end",
            f"Working day must start before it ends "
            f"({schedule.start_time:%H:%M} >= {schedule.end_time:%H:%M})",
        )

    if (schedule.lunch_start is None) != (schedule.lunch_end is None):
        raise ValidationError(
            "lunch_start", "lunch_out_of_range", "lunch_start and lunch_end must be set together"
        )
    if schedule.lunch_start is not None:
        _check_minute_resolution("lunch_start", schedule.lunch_start)
        _check_minute_resolution("lunch_end", schedule.lunch_end)
    if schedule.has_lunch and not (
        schedule.start_time <= schedule.lunch_start <= schedule.lunch_end <= schedule.end_time
    ):
        raise ValidationError(
            "lunch_start",
            "lunch_out_of_range",
            f"Lunch {schedule.lunch_start:%H:%M}-{schedule.lunch_end:%H:%M} must lie within "
            f"working hours {schedule.start_time:%H:%M}-{schedule.end_time:%H:%M}",
        )

    granularity = schedule.slot_granularity_minutes
    if (
        not isinstance(granularity, int)
        or isinstance(granularity, bool)
        or not 0 < granularity <= MINUTES_PER_DAY
    ):
        raise ValidationError(
            "slot_granularity_minutes",
            "invalid_granularity",
            f"Slot granularity must be a positive number of minutes, got {granularity!r}",
        )


@dataclass(frozen=True)
class Service:
    """A bookable service from a provider's catalog."""
    id: str
    name: str
    duration_minutes: int
    price: Optional[float] = None
    is_active: bool = True

    def validate(self) -> None:
        duration = self.duration_minutes
        if not isinstance(duration, int) or isinstance(duration, bool) or duration <= 0:
            raise ValidationError(
                "duration_minutes",
                "invalid_duration",
                f"Service duration must be a positive number of minutes, got {duration!r}",
            )
        if self.price is not None and self.price < 0:
            raise ValidationError("price", "invalid_price", "Service price cannot be negative")


def normalize_phone(value: str) -> str:
    """Strip everything except digits and a leading +."""
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


@dataclass(frozen=True)
class CustomerRef:
    """
    Who an appointment is for: a linked customer account, or an
    anonymous walk-in identified by name and (optionally) phone.
    """
    customer_id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    def __post_init__(self):
        if self.name is not None:
            object.__setattr__(self, "name", self.name.strip())
        if self.phone is not None:
            object.__setattr__(self, "phone", normalize_phone(self.phone) or None)

    def validate(self) -> None:
        if not self.customer_id and not self.name:
            raise ValidationError(
                "customer",
                "invalid_customer",
                "An appointment needs a customer id or a customer name",
            )

    def display_name(self) -> str:
        return self.name or f"customer {self.customer_id}"


class AppointmentStatus(str, Enum):
    """Lifecycle state of an appointment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def blocks_interval(self) -> bool:
        """Whether an appointment in this state occupies its time slot."""
        return self in ACTIVE_STATUSES

    def can_transition_to(self, target: "AppointmentStatus") -> bool:
        return target in TRANSITIONS[self]

    @classmethod
    def parse(cls, value) -> "AppointmentStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValidationError("status", "invalid_status", f"Unknown appointment status: {value!r}")


ACTIVE_STATUSES: FrozenSet[AppointmentStatus] = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}
)

TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

_missing = set(AppointmentStatus) - set(TRANSITIONS)
if _missing:
    raise RuntimeError(f"Transition table is missing states: {sorted(s.value for s in _missing)}")

# Named provider actions: action -> (allowed source states, target state)
ACTIONS: Dict[str, Tuple[FrozenSet[AppointmentStatus], AppointmentStatus]] = {
    "confirm": (frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED),
    "reject": (frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CANCELLED),
    "complete": (frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.COMPLETED),
    "cancel": (frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.CANCELLED),
}


@dataclass(frozen=True)
class Appointment:
    """
    A booked interval on a provider's calendar.

    Invariant: starts_at < ends_at.
    """
    id: str
    provider_id: str
    service_id: str
    customer: CustomerRef
    starts_at: DateTime
    ends_at: DateTime
    status: AppointmentStatus
    created_at: DateTime
    idempotency_key: Optional[str] = None

    def __post_init__(self):
        if self.starts_at >= self.ends_at:
            raise ValidationError(
                "ends_at",
                "start_after_end",
                f"Appointment must start before it ends ({self.starts_at} >= {self.ends_at})",
            )

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.starts_at, end=self.ends_at)

    @property
    def is_active(self) -> bool:
        return self.status.blocks_interval

    def overlaps(self, starts_at: DateTime, ends_at: DateTime) -> bool:
        return intervals_overlap(self.starts_at, self.ends_at, starts_at, ends_at)

    def with_status(self, status: AppointmentStatus) -> "Appointment":
        return replace(self, status=status)


def find_overlapping(
    appointments: Iterable[Appointment], starts_at: DateTime, ends_at: DateTime
) -> Optional[Appointment]:
    """First active appointment overlapping [starts_at, ends_at), if any."""
    for appointment in appointments:
        if appointment.is_active and appointment.overlaps(starts_at, ends_at):
            return appointment
    return None


@dataclass(frozen=True)
class AvailableSlot:
    """
    A feasible start time for a given service on a given date.
    """
    start_time: time
    starts_at: DateTime
    ends_at: DateTime
    is_available: bool
    conflicts: Tuple[str, ...] = field(default=(), compare=False)

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, DD.MM.YYYY | HH:MM – HH:MM (free|busy)
        """
        weekday = Weekday.of(self.starts_at).turkish_name
        date_str = self.starts_at.format("DD.MM.YYYY")
        time_str = f"{self.starts_at.format('HH:mm')} – {self.ends_at.format('HH:mm')}"
        state = "free" if self.is_available else "busy"
        return f"{weekday}, {date_str} | {time_str} ({state})"
