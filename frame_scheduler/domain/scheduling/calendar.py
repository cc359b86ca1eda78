"""
Calendar & capacity model

Pure configuration consulted by every other scheduling component: working
days and hours, appointment type durations/buffers/capacities, task complexity
defaults and workload thresholds. A `SchedulingConfig` value is threaded
through each engine constructor so several configurations can coexist.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterator, Optional, Union
from zoneinfo import ZoneInfo

from .exceptions import ValidationError


@dataclass(frozen=True)
class AppointmentType:
    name: str
    duration: float  # hours
    buffer_minutes: int  # reserved after the slot, not bookable
    capacity: int  # max appointments sharing one start minute

    @property
    def length(self) -> timedelta:
        return timedelta(hours=self.duration)

    @property
    def reserved_length(self) -> timedelta:
        return timedelta(hours=self.duration, minutes=self.buffer_minutes)


@dataclass(frozen=True)
class ComplexityProfile:
    name: str
    level: int
    max_hours: float  # used as estimate when an order gives none
    default_priority: int


@dataclass(frozen=True)
class WorkloadThresholds:
    light: float = 0.6  # below: light
    normal: float = 0.8  # below: normal
    heavy: float = 1.0  # below: heavy, at or above: overloaded


def default_appointment_types() -> dict[str, AppointmentType]:
    return {
        "consultation": AppointmentType("consultation", 1, 15, 1),
        "pickup": AppointmentType("pickup", 0.25, 5, 4),
        "delivery": AppointmentType("delivery", 0.5, 10, 2),
        "frame_fitting": AppointmentType("frame_fitting", 0.5, 10, 1),
        "custom_consultation": AppointmentType("custom_consultation", 1.5, 15, 1),
    }


def default_complexity_profiles() -> dict[str, ComplexityProfile]:
    return {
        "simple": ComplexityProfile("simple", 1, 2.0, 5),
        "medium": ComplexityProfile("medium", 2, 4.0, 4),
        "complex": ComplexityProfile("complex", 3, 6.0, 3),
    }


@dataclass(frozen=True)
class SchedulingConfig:
    timezone: str = "America/Chicago"
    working_days: frozenset = frozenset({0, 1, 2, 3, 4})  # Monday=0
    day_start: time = time(8, 0)
    day_end: time = time(17, 0)
    max_daily_hours: float = 8.0
    slot_interval_minutes: int = 30
    task_buffer_minutes: int = 15
    horizon_days: int = 60
    confirmation_prefix: str = "JF"
    enforce_daily_capacity: bool = False
    default_reminder_hours: tuple = (24, 2)
    retry_attempts: int = 3
    retry_base_delay: float = 0.1
    thresholds: WorkloadThresholds = field(default_factory=WorkloadThresholds)
    appointment_types: dict = field(default_factory=default_appointment_types)
    complexity_profiles: dict = field(default_factory=default_complexity_profiles)
    # Returns the current naive wall-clock time in `timezone`; injectable for tests
    clock: Optional[Callable[[], datetime]] = None


class Calendar:
    """Deterministic calendar arithmetic over a SchedulingConfig"""

    def __init__(self, config: SchedulingConfig):
        self.config = config
        self.tz = ZoneInfo(config.timezone)

    def now(self) -> datetime:
        if self.config.clock is not None:
            return self.config.clock()
        return datetime.now(self.tz).replace(tzinfo=None, microsecond=0)

    def localize(self, value: datetime) -> datetime:
        """Convert an incoming datetime to naive wall-clock time in the calendar zone"""
        if value.tzinfo is not None:
            return value.astimezone(self.tz).replace(tzinfo=None)
        return value

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.config.working_days

    def window(self, day: date) -> tuple[datetime, datetime]:
        return (
            datetime.combine(day, self.config.day_start),
            datetime.combine(day, self.config.day_end),
        )

    @property
    def step(self) -> timedelta:
        return timedelta(minutes=self.config.slot_interval_minutes)

    @property
    def task_buffer(self) -> timedelta:
        return timedelta(minutes=self.config.task_buffer_minutes)

    def working_days(self, start: date, end: date) -> Iterator[date]:
        """Working days in [start, end)"""
        day = start
        while day < end:
            if self.is_working_day(day):
                yield day
            day += timedelta(days=1)

    def candidate_starts(
        self, day: date, length: timedelta, not_before: Optional[datetime] = None
    ) -> Iterator[datetime]:
        """Grid-aligned starts on `day` whose [start, start+length) fits the working window"""
        day_start, day_end = self.window(day)
        current = day_start
        while current + length <= day_end:
            if not_before is None or current >= not_before:
                yield current
            current += self.step

    def fits_working_window(self, start: datetime, end: datetime) -> bool:
        if not self.is_working_day(start.date()):
            return False
        day_start, day_end = self.window(start.date())
        return day_start <= start and end <= day_end

    def appointment_type(self, name: Optional[str]) -> AppointmentType:
        config = self.config.appointment_types.get(name or "")
        if config is None:
            raise ValidationError("type", f"unknown appointment type '{name}'", name)
        return config

    def complexity_profile(self, value: Union[str, int, None]) -> ComplexityProfile:
        for profile in self.config.complexity_profiles.values():
            if value == profile.name or value == profile.level:
                return profile
        if isinstance(value, str) and value.isdigit():
            return self.complexity_profile(int(value))
        raise ValidationError("complexity", f"unknown complexity '{value}'", value)

    def reserved_interval(self, appointment) -> tuple[datetime, datetime]:
        """An appointment's interval including the buffer reserved after it"""
        type_config = self.config.appointment_types.get(appointment.type)
        buffer = timedelta(minutes=type_config.buffer_minutes) if type_config else timedelta()
        return appointment.appointment_time, appointment.appointment_end + buffer


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap"""
    return start < other_end and other_start < end
