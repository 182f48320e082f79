"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import time
from pathlib import Path
from typing import List, Optional, Union

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.exceptions import ValidationError as DomainValidationError
from .domain.models import (
    DEFAULT_GRANULARITY_MINUTES,
    DEFAULT_TIMEZONE,
    Schedule,
    Service,
    Weekday,
    time_from_minutes,
    validate_schedule,
)

DayValue = Union[int, str]


def _coerce_time(value):
    """
    Accept ``"HH:MM"`` strings and time objects. YAML 1.1 reads an unquoted
    ``12:00`` as the base-60 integer 720, so integers count as minutes.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < 24 * 60:
            raise ValueError(f"Time of day out of range: {value}")
        return time_from_minutes(value)
    return value


def _parse_days(value: List[DayValue]) -> List[int]:
    days: List[int] = []
    for day in value:
        try:
            parsed = int(Weekday.parse(day))
        except DomainValidationError as exc:
            raise ValueError(str(exc)) from None
        if parsed not in days:
            days.append(parsed)
    return days


def _check_timezone(value: str) -> str:
    try:
        pendulum.timezone(value)
    except (ValueError, KeyError) as exc:
        raise ValueError(f"Unknown timezone: {value!r}") from exc
    return value


class DefaultsConfig(BaseModel):
    """Default working day applied to providers without their own schedule."""
    slot_granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES
    start_time: time = time(9, 0)
    end_time: time = time(18, 0)
    lunch_start: Optional[time] = time(12, 0)
    lunch_end: Optional[time] = time(13, 0)
    days_off: List[DayValue] = Field(default_factory=lambda: [int(Weekday.SUNDAY)])

    @field_validator("start_time", "end_time", "lunch_start", "lunch_end", mode="before")
    @classmethod
    def coerce_times(cls, value):
        return _coerce_time(value)

    @field_validator("slot_granularity_minutes")
    @classmethod
    def validate_granularity(cls, value: int) -> int:
        """Ensure slot granularity is positive."""
        if value <= 0:
            raise ValueError("slot_granularity_minutes must be greater than zero")
        return value

    @field_validator("days_off")
    @classmethod
    def validate_days_off(cls, value: List[DayValue]) -> List[int]:
        """Normalise weekday names to 0-6 (Monday = 0), removing duplicates."""
        return _parse_days(value)


class ScheduleConfig(BaseModel):
    """A provider's working schedule; unset fields fall back to the defaults."""
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    lunch_start: Optional[time] = None
    lunch_end: Optional[time] = None
    no_lunch: bool = False
    days_off: Optional[List[DayValue]] = None
    slot_granularity_minutes: Optional[int] = None
    timezone: Optional[str] = None

    @field_validator("start_time", "end_time", "lunch_start", "lunch_end", mode="before")
    @classmethod
    def coerce_times(cls, value):
        return _coerce_time(value)

    @field_validator("days_off")
    @classmethod
    def validate_days_off(cls, value: Optional[List[DayValue]]) -> Optional[List[int]]:
        return None if value is None else _parse_days(value)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_timezone(value)

    def to_schedule(self, defaults: DefaultsConfig, timezone: str) -> Schedule:
        """
        Build and validate the domain schedule.

        Raises:
            ValidationError: (domain) if the merged schedule is inconsistent
        """
        if self.no_lunch:
            lunch_start, lunch_end = None, None
        else:
            lunch_start = self.lunch_start if self.lunch_start is not None else defaults.lunch_start
            lunch_end = self.lunch_end if self.lunch_end is not None else defaults.lunch_end

        schedule = Schedule(
            start_time=self.start_time if self.start_time is not None else defaults.start_time,
            end_time=self.end_time if self.end_time is not None else defaults.end_time,
            lunch_start=lunch_start,
            lunch_end=lunch_end,
            days_off=frozenset(self.days_off if self.days_off is not None else defaults.days_off),
            slot_granularity_minutes=(
                self.slot_granularity_minutes
                if self.slot_granularity_minutes is not None
                else defaults.slot_granularity_minutes
            ),
            timezone=self.timezone or timezone,
        )
        validate_schedule(schedule)
        return schedule


class ProviderConfig(BaseModel):
    """A provider (barber) and their schedule."""
    id: str
    name: str
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


class ServiceConfig(BaseModel):
    """Catalog entry."""
    id: str
    name: str
    duration_minutes: int
    price: Optional[float] = None
    is_active: bool = True

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure service duration is positive."""
        if value <= 0:
            raise ValueError("duration_minutes must be greater than zero")
        return value

    @field_validator("price")
    @classmethod
    def validate_price(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("price cannot be negative")
        return value

    def to_service(self) -> Service:
        return Service(
            id=self.id,
            name=self.name,
            duration_minutes=self.duration_minutes,
            price=self.price,
            is_active=self.is_active,
        )


def _default_services() -> List[ServiceConfig]:
    return [
        ServiceConfig(id="haircut", name="Saç Kesimi", duration_minutes=30, price=150),
        ServiceConfig(id="beard", name="Sakal Tıraşı", duration_minutes=30, price=100),
        ServiceConfig(id="skincare", name="Cilt Bakımı", duration_minutes=45, price=200),
        ServiceConfig(id="combo", name="Kombo (Saç + Sakal)", duration_minutes=60, price=300),
    ]


class DatabaseConfig(BaseModel):
    """Appointment store settings."""
    url: str = "sqlite:///slotkeeper.db"
    echo: bool = False
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    busy_timeout_seconds: float = 30.0

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_retries must be at least 1")
        return value

    @field_validator("retry_backoff_seconds", "busy_timeout_seconds")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("durations cannot be negative")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = DEFAULT_TIMEZONE
    log_level: str = "INFO"
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    services: List[ServiceConfig] = Field(default_factory=_default_services)
    providers: List[ProviderConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return _check_timezone(value)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("services")
    @classmethod
    def validate_services(cls, value: List[ServiceConfig]) -> List[ServiceConfig]:
        """Ensure service ids are unique."""
        seen: set[str] = set()
        for service in value:
            if service.id in seen:
                raise ValueError(f"Duplicate service id detected: {service.id}")
            seen.add(service.id)
        return value

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, value: List[ProviderConfig]) -> List[ProviderConfig]:
        """Ensure provider ids are unique."""
        seen: set[str] = set()
        for provider in value:
            if provider.id in seen:
                raise ValueError(f"Duplicate provider id detected: {provider.id}")
            seen.add(provider.id)
        return value

    @model_validator(mode="after")
    def validate_schedules(self) -> "AppConfig":
        """Every provider schedule must resolve to a consistent working day."""
        for provider in self.providers:
            try:
                provider.schedule.to_schedule(self.defaults, self.timezone)
            except DomainValidationError as exc:
                raise ValueError(f"Provider {provider.id}: {exc}") from None
        return self

    def schedule_for(self, provider: ProviderConfig) -> Schedule:
        return provider.schedule.to_schedule(self.defaults, self.timezone)

    def find_provider(self, identifier: str) -> Optional[ProviderConfig]:
        """Find a provider by id or (case-insensitive) name."""
        for provider in self.providers:
            if provider.id == identifier or provider.name.lower() == identifier.lower():
                return provider
        return None

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
