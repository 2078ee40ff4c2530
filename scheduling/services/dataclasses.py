import datetime
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Literal
from zoneinfo import ZoneInfo

from scheduling.constants import WEEKDAY_CODES
from scheduling.exceptions import InvalidPatternError


Interval = tuple[datetime.datetime, datetime.datetime]


@dataclass(frozen=True)
class RecurrencePatternData:
    weekdays: frozenset[str]
    time_of_day: datetime.time
    start_date: datetime.date
    duration_minutes: int
    end_date: datetime.date | None = None
    timezone: str = "UTC"  # IANA timezone string of the organizer

    @property
    def sorted_weekdays(self) -> list[str]:
        return sorted(self.weekdays, key=lambda code: WEEKDAY_CODES.index(code))

    @property
    def duration(self) -> datetime.timedelta:
        return datetime.timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class FixedOccurrence:
    start_time: datetime.datetime
    end_time: datetime.datetime


@dataclass(frozen=True)
class RecurringSeries:
    pattern: RecurrencePatternData


TemplateSchedule = FixedOccurrence | RecurringSeries


@dataclass(frozen=True)
class InstanceOverrideData:
    is_cancelled: bool = False
    capacity: int | None = None


@dataclass(frozen=True)
class EventInstance:
    """A concrete occurrence of an event template. Never persisted by itself."""

    instance_id: str
    template_id: int
    start_time: datetime.datetime
    end_time: datetime.datetime
    timezone: str
    capacity: int
    status: Literal["scheduled", "cancelled"] = "scheduled"

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def local_date(self) -> datetime.date:
        return self.start_time.astimezone(ZoneInfo(self.timezone)).date()


@dataclass(frozen=True)
class PatternViolation:
    field: str
    message: str


@dataclass(frozen=True)
class ValidationResult:
    violations: tuple[PatternViolation, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def as_dict(self) -> dict[str, list[str]]:
        errors: dict[str, list[str]] = {}
        for violation in self.violations:
            errors.setdefault(violation.field, []).append(violation.message)
        return errors

    def raise_if_invalid(self) -> None:
        if not self.is_valid:
            raise InvalidPatternError(
                "; ".join(v.message for v in self.violations), violations=self.violations
            )


@dataclass(frozen=True)
class DayWorkingHours:
    enabled: bool
    start: datetime.time
    end: datetime.time
    # Exact start times offered instead of the start/end window when custom times are on.
    specific_slots: tuple[datetime.time, ...] = ()


@dataclass(frozen=True)
class BlockedDateRangeData:
    start_date: datetime.date
    end_date: datetime.date
    repeat_monthly: bool = False

    def contains(self, day: datetime.date) -> bool:
        if not self.repeat_monthly:
            return self.start_date <= day <= self.end_date

        # Monthly ranges only compare the day of month, and may wrap the month end
        # (e.g. the 28th to the 3rd).
        first, last = self.start_date.day, self.end_date.day
        if first <= last:
            return first <= day.day <= last
        return day.day >= first or day.day <= last


@dataclass(frozen=True)
class WorkingHoursConfigData:
    working_hours: Mapping[str, DayWorkingHours]
    buffer_minutes: int
    allowed_durations: tuple[int, ...]
    allow_weekends: bool
    advance_booking_days: int
    timezone: str = "UTC"
    booking_enabled: bool = True
    blocked_date_ranges: tuple[BlockedDateRangeData, ...] = dataclass_field(default_factory=tuple)
    custom_times: bool = False
    default_time_range: tuple[datetime.time, datetime.time] | None = None

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def hours_for(self, day: datetime.date) -> DayWorkingHours | None:
        return self.working_hours.get(WEEKDAY_CODES[day.weekday()])

    def is_blocked(self, day: datetime.date) -> bool:
        return any(blocked.contains(day) for blocked in self.blocked_date_ranges)

    def window_for(self, hours: DayWorkingHours) -> tuple[datetime.time, datetime.time]:
        # Without custom times every enabled day shares the default range.
        if not self.custom_times and self.default_time_range:
            return self.default_time_range
        return hours.start, hours.end

    def specific_slots_for(self, hours: DayWorkingHours) -> tuple[datetime.time, ...]:
        return tuple(sorted(set(hours.specific_slots))) if self.custom_times else ()


@dataclass(frozen=True)
class AvailableSlot:
    start_time: datetime.datetime
    durations: tuple[int, ...]

    @property
    def local_time(self) -> str:
        return self.start_time.strftime("%H:%M")


@dataclass(frozen=True)
class DayAvailability:
    date: datetime.date
    slots: list[AvailableSlot]


@dataclass(frozen=True)
class CachedAttendeeCount:
    count: int
    recorded_at: float
    ttl_seconds: float

    def is_fresh(self, now: float) -> bool:
        return now - self.recorded_at < self.ttl_seconds


@dataclass(frozen=True)
class RegistrationResult:
    registration_id: int
    template_id: int
    instance_id: str | None
    attendee_id: int
    attendee_count: int
    capacity: int


@dataclass
class EventTemplateInputData:
    title: str
    timezone: str
    description: str = ""
    capacity: int = 0
    start_time: datetime.datetime | None = None
    end_time: datetime.datetime | None = None
    pattern: RecurrencePatternData | None = None


@dataclass
class BookingInputData:
    start_time: datetime.datetime
    duration_minutes: int
    booker_name: str
    booker_email: str
    message: str = ""


@dataclass(frozen=True)
class EventInstanceWithCount:
    instance: EventInstance
    attendee_count: int

    @property
    def spots_remaining(self) -> int | None:
        if not self.instance.capacity:
            return None
        return max(self.instance.capacity - self.attendee_count, 0)


@dataclass(frozen=True)
class NotificationRecipient:
    email: str
    first_name: str = ""
    last_name: str = ""

    @classmethod
    def from_user(cls, user) -> "NotificationRecipient":
        return cls(email=user.email, first_name=user.first_name, last_name=user.last_name)
