import datetime

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from common.models import BaseModel, TimezoneModel
from scheduling.constants import (
    DEFAULT_ADVANCE_BOOKING_DAYS,
    DEFAULT_ALLOWED_DURATIONS,
    DEFAULT_BUFFER_MINUTES,
    DEFAULT_DAY_END,
    DEFAULT_DAY_START,
    WEEKDAY_CODES,
    WEEKEND_CODES,
    BookingStatus,
    RegistrationStatus,
    ScheduleKind,
    TemplateStatus,
)
from scheduling.querysets import BookingQuerySet, EventTemplateQuerySet, RegistrationQuerySet
from scheduling.services.dataclasses import (
    BlockedDateRangeData,
    DayWorkingHours,
    FixedOccurrence,
    InstanceOverrideData,
    RecurrencePatternData,
    RecurringSeries,
    TemplateSchedule,
    WorkingHoursConfigData,
)


def default_working_hours() -> dict[str, dict]:
    return {
        code: {
            "enabled": code not in WEEKEND_CODES,
            "start": DEFAULT_DAY_START,
            "end": DEFAULT_DAY_END,
        }
        for code in WEEKDAY_CODES
    }


def default_allowed_durations() -> list[int]:
    return list(DEFAULT_ALLOWED_DURATIONS)


def default_time_range() -> dict[str, str]:
    return {"start": DEFAULT_DAY_START, "end": DEFAULT_DAY_END}


def parse_hhmm(value: str) -> datetime.time:
    return datetime.datetime.strptime(value, "%H:%M").time()


class RecurrencePattern(BaseModel):
    """
    Weekly recurrence of an event template. The time of day is a wall-clock time in the
    template's timezone.
    """

    weekdays = models.CharField(
        max_length=20, help_text="Comma-separated list of weekdays (e.g., 'MO,WE,FR')"
    )
    time_of_day = models.TimeField()
    start_date = models.DateField()
    end_date = models.DateField(
        null=True, blank=True, help_text="Last date the series may occur on. Empty means open-ended"
    )
    duration_minutes = models.PositiveIntegerField()

    def __str__(self):
        return f"Weekly on {self.weekdays} at {self.time_of_day:%H:%M}"

    @property
    def weekday_list(self) -> list[str]:
        return [code.strip() for code in self.weekdays.split(",") if code.strip()]

    def to_data(self, timezone: str) -> RecurrencePatternData:
        return RecurrencePatternData(
            weekdays=frozenset(self.weekday_list),
            time_of_day=self.time_of_day,
            start_date=self.start_date,
            end_date=self.end_date,
            duration_minutes=self.duration_minutes,
            timezone=timezone,
        )


class EventTemplate(TimezoneModel):
    """
    Definition of an event: either a single fixed occurrence (start_time/end_time set) or a
    recurring series (recurrence_pattern set). Instances of a series are computed, never stored.
    """

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="event_templates"
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    capacity = models.PositiveIntegerField(
        default=0, help_text="Maximum confirmed registrations per occurrence. 0 means unlimited"
    )
    status = models.CharField(
        max_length=20, choices=TemplateStatus, default=TemplateStatus.ACTIVE
    )
    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField(null=True, blank=True)
    recurrence_pattern = models.OneToOneField(
        RecurrencePattern,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="template",
    )

    objects = EventTemplateQuerySet.as_manager()

    def __str__(self):
        return self.title

    def clean(self):
        super().clean()
        has_fixed_times = self.start_time is not None or self.end_time is not None
        if self.recurrence_pattern_id and has_fixed_times:
            raise ValidationError("A recurring event can't have fixed start and end times.")
        if not self.recurrence_pattern_id:
            if self.start_time is None or self.end_time is None:
                raise ValidationError("A fixed event requires start and end times.")
            if self.end_time <= self.start_time:
                raise ValidationError("End time must be after start time.")

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_pattern_id is not None

    @property
    def kind(self) -> ScheduleKind:
        return ScheduleKind.RECURRING if self.is_recurring else ScheduleKind.FIXED

    @property
    def is_active(self) -> bool:
        return self.status == TemplateStatus.ACTIVE

    @property
    def schedule(self) -> TemplateSchedule:
        if self.recurrence_pattern is not None:
            return RecurringSeries(pattern=self.recurrence_pattern.to_data(self.timezone))
        return FixedOccurrence(start_time=self.start_time, end_time=self.end_time)

    def get_overrides(self) -> dict[str, InstanceOverrideData]:
        return {
            override.instance_id: override.to_data()
            for override in self.instance_overrides.all()
        }


class InstanceOverride(BaseModel):
    """
    Per-occurrence modification of a recurring series, keyed by the instance id (which
    embeds the local date of the occurrence).
    """

    template = models.ForeignKey(
        EventTemplate, on_delete=models.CASCADE, related_name="instance_overrides"
    )
    instance_id = models.CharField(max_length=64)
    is_cancelled = models.BooleanField(default=False)
    capacity = models.PositiveIntegerField(
        null=True, blank=True, help_text="Replaces the template capacity for this occurrence"
    )

    class Meta:
        constraints = (
            models.UniqueConstraint(
                fields=("template", "instance_id"), name="unique_instance_override"
            ),
        )

    def __str__(self):
        return f"Override for {self.instance_id}"

    def to_data(self) -> InstanceOverrideData:
        return InstanceOverrideData(is_cancelled=self.is_cancelled, capacity=self.capacity)


class OccupancyCounter(BaseModel):
    """
    Authoritative number of confirmed registrations for one occurrence. Only ever changed by
    conditional updates inside the registration transaction.
    """

    template = models.ForeignKey(
        EventTemplate, on_delete=models.CASCADE, related_name="occupancy_counters"
    )
    occupancy_key = models.CharField(max_length=64)
    confirmed_count = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = (
            models.UniqueConstraint(
                fields=("template", "occupancy_key"), name="unique_occupancy_counter"
            ),
        )

    def __str__(self):
        return f"{self.occupancy_key}: {self.confirmed_count}"


class Registration(BaseModel):
    template = models.ForeignKey(
        EventTemplate, on_delete=models.CASCADE, related_name="registrations"
    )
    instance_id = models.CharField(
        max_length=64, blank=True, help_text="Empty for fixed events"
    )
    attendee = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="event_registrations"
    )
    status = models.CharField(
        max_length=20, choices=RegistrationStatus, default=RegistrationStatus.CONFIRMED
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)

    objects = RegistrationQuerySet.as_manager()

    class Meta:
        constraints = (
            models.UniqueConstraint(
                fields=("template", "instance_id", "attendee"),
                condition=Q(status=RegistrationStatus.CONFIRMED),
                name="unique_confirmed_registration",
            ),
        )

    def __str__(self):
        return f"{self.attendee} @ {self.instance_id or self.template_id} ({self.status})"

    @property
    def occupancy_key(self) -> str:
        return self.instance_id or str(self.template_id)


class WorkingHoursConfig(TimezoneModel):
    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="working_hours_config"
    )
    booking_enabled = models.BooleanField(default=True)
    working_hours = models.JSONField(
        default=default_working_hours,
        help_text=(
            'Per weekday code: {"enabled": bool, "start": "HH:MM", "end": "HH:MM", '
            '"specific_slots": ["HH:MM", ...]}'
        ),
    )
    buffer_minutes = models.PositiveIntegerField(default=DEFAULT_BUFFER_MINUTES)
    allowed_durations = models.JSONField(default=default_allowed_durations)
    allow_weekends = models.BooleanField(default=False)
    advance_booking_days = models.PositiveIntegerField(default=DEFAULT_ADVANCE_BOOKING_DAYS)
    custom_times = models.BooleanField(
        default=False,
        help_text="Use per-day hours and specific slots instead of the default time range",
    )
    default_time_range = models.JSONField(
        default=default_time_range, help_text='{"start": "HH:MM", "end": "HH:MM"}'
    )

    def __str__(self):
        return f"Working hours of {self.owner}"

    @property
    def blocked_date_range_list(self) -> list["BlockedDateRange"]:
        # Unsaved configs hold the defaults and can't have related rows yet.
        return list(self.blocked_date_ranges.all()) if self.pk else []

    def to_data(self) -> WorkingHoursConfigData:
        time_range = self.default_time_range or {}
        working_hours = {
            code: DayWorkingHours(
                enabled=bool(day.get("enabled")),
                start=parse_hhmm(day.get("start", DEFAULT_DAY_START)),
                end=parse_hhmm(day.get("end", DEFAULT_DAY_END)),
                specific_slots=tuple(parse_hhmm(value) for value in day.get("specific_slots", ())),
            )
            for code, day in (self.working_hours or {}).items()
        }
        return WorkingHoursConfigData(
            working_hours=working_hours,
            buffer_minutes=self.buffer_minutes,
            allowed_durations=tuple(sorted(set(self.allowed_durations or ()))),
            allow_weekends=self.allow_weekends,
            advance_booking_days=self.advance_booking_days,
            timezone=self.timezone,
            booking_enabled=self.booking_enabled,
            blocked_date_ranges=tuple(
                blocked.to_data() for blocked in self.blocked_date_range_list
            ),
            custom_times=self.custom_times,
            default_time_range=(
                parse_hhmm(time_range.get("start", DEFAULT_DAY_START)),
                parse_hhmm(time_range.get("end", DEFAULT_DAY_END)),
            ),
        )


class BlockedDateRange(BaseModel):
    config = models.ForeignKey(
        WorkingHoursConfig, on_delete=models.CASCADE, related_name="blocked_date_ranges"
    )
    start_date = models.DateField()
    end_date = models.DateField()
    repeat_monthly = models.BooleanField(
        default=False, help_text="Block the same days of month every month"
    )

    def __str__(self):
        suffix = " (monthly)" if self.repeat_monthly else ""
        return f"Blocked {self.start_date} to {self.end_date}{suffix}"

    def to_data(self) -> BlockedDateRangeData:
        return BlockedDateRangeData(
            start_date=self.start_date,
            end_date=self.end_date,
            repeat_monthly=self.repeat_monthly,
        )


class Booking(BaseModel):
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="bookings"
    )
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    duration_minutes = models.PositiveIntegerField()
    booker_name = models.CharField(max_length=255)
    booker_email = models.EmailField()
    message = models.TextField(blank=True)
    status = models.CharField(
        max_length=20, choices=BookingStatus, default=BookingStatus.CONFIRMED
    )
    cancellation_token = models.CharField(max_length=64, unique=True)

    objects = BookingQuerySet.as_manager()

    def __str__(self):
        return f"{self.booker_name} with {self.owner} at {self.start_time}"
