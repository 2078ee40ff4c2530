"""Recurrence utilities: validating weekly patterns and expanding them into instances.

Notes:
- Instances are never stored. They are recomputed from the template and its sparse
  ``InstanceOverride`` rows every time they are needed.
- The pattern's time of day is a wall-clock time in the organizer's timezone, so DST
  transitions shift the UTC instant but never the local time.
"""

import datetime
import logging
import zoneinfo
from collections.abc import Callable, Iterator, Mapping
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from scheduling.constants import WEEKDAY_CODES, InstanceStatus, Weekday
from scheduling.exceptions import InstanceNotFoundError
from scheduling.services.dataclasses import (
    EventInstance,
    FixedOccurrence,
    InstanceOverrideData,
    PatternViolation,
    RecurrencePatternData,
    TemplateSchedule,
    ValidationResult,
)


if TYPE_CHECKING:
    from scheduling.models import EventTemplate


logger = logging.getLogger(__name__)

RRULE_WEEKDAYS = {"MO": MO, "TU": TU, "WE": WE, "TH": TH, "FR": FR, "SA": SA, "SU": SU}
MAX_PATTERN_DURATION_MINUTES = 7 * 24 * 60


def build_instance_id(template_id: int, local_date: datetime.date) -> str:
    return f"{template_id}_{local_date.isoformat()}"


def parse_instance_id(template_id: int, instance_id: str) -> datetime.date:
    """Return the local date encoded in ``instance_id``.

    Raises ``InstanceNotFoundError`` if the id doesn't belong to ``template_id`` or the
    date part is malformed.
    """
    prefix, separator, date_part = (instance_id or "").rpartition("_")
    if not separator or prefix != str(template_id):
        raise InstanceNotFoundError()
    try:
        return datetime.date.fromisoformat(date_part)
    except ValueError as e:
        raise InstanceNotFoundError() from e


def is_valid_timezone(value: str) -> bool:
    try:
        zoneinfo.ZoneInfo(value)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        return False
    return True


class PatternValidator:
    """Validates recurrence patterns before they are persisted or expanded."""

    @staticmethod
    def validate(pattern: RecurrencePatternData) -> ValidationResult:
        """Collect every violation of ``pattern`` instead of stopping at the first one."""
        violations: list[PatternViolation] = []

        if not pattern.weekdays:
            violations.append(
                PatternViolation("weekdays", "At least one weekday must be selected.")
            )
        else:
            unknown = sorted(set(pattern.weekdays) - set(WEEKDAY_CODES))
            if unknown:
                violations.append(
                    PatternViolation("weekdays", f"Unknown weekday codes: {', '.join(unknown)}.")
                )

        if pattern.duration_minutes <= 0:
            violations.append(
                PatternViolation("duration_minutes", "Duration must be greater than zero.")
            )
        elif pattern.duration_minutes > MAX_PATTERN_DURATION_MINUTES:
            violations.append(
                PatternViolation(
                    "duration_minutes",
                    "Duration is longer than a week, so occurrences on the same weekday "
                    "would overlap.",
                )
            )

        if pattern.end_date is not None and pattern.start_date > pattern.end_date:
            violations.append(
                PatternViolation("end_date", "End date must be on or after the start date.")
            )

        if not is_valid_timezone(pattern.timezone):
            violations.append(
                PatternViolation("timezone", f"Invalid IANA timezone: {pattern.timezone}")
            )

        return ValidationResult(violations=tuple(violations))


def describe_pattern(pattern: RecurrencePatternData) -> str:
    """Human readable summary, e.g. "Every Monday, Wednesday at 14:00 SAST"."""
    codes = pattern.sorted_weekdays
    if len(codes) == len(WEEKDAY_CODES):
        days = "day"
    else:
        days = ", ".join(Weekday(code).label for code in codes)

    zone = zoneinfo.ZoneInfo(pattern.timezone)
    reference = datetime.datetime.combine(pattern.start_date, pattern.time_of_day, tzinfo=zone)
    return f"Every {days} at {pattern.time_of_day:%H:%M} {reference.tzname()}"


def localize(naive: datetime.datetime, zone: zoneinfo.ZoneInfo) -> datetime.datetime:
    """Attach ``zone`` to a wall-clock datetime, moving nonexistent DST-gap times forward."""
    return naive.replace(tzinfo=zone).astimezone(datetime.UTC).astimezone(zone)


class InstanceGenerator:
    """
    Expands event templates into bounded, ordered sequences of ``EventInstance``.

    Series generation stops at whichever comes first: ``horizon_days`` after "now" or
    ``max_instances`` emitted instances. A fixed event yields its single instance
    wherever it falls.
    """

    def __init__(
        self,
        max_instances: int | None = None,
        horizon_days: int | None = None,
        now: Callable[[], datetime.datetime] | None = None,
    ):
        self.max_instances = (
            max_instances if max_instances is not None else settings.SCHEDULING_MAX_INSTANCES
        )
        self.horizon_days = (
            horizon_days if horizon_days is not None else settings.SCHEDULING_HORIZON_DAYS
        )
        self.now = now or timezone.now

    def horizon_end(self) -> datetime.datetime:
        return self.now() + datetime.timedelta(days=self.horizon_days)

    def generate(
        self,
        template: "EventTemplate",
        range_start: datetime.date,
        range_end: datetime.date,
        include_cancelled: bool = False,
    ) -> Iterator[EventInstance]:
        """Lazily yield the instances of ``template`` whose local date is in the range.

        Overrides are loaded on the first iteration, so each call returns a fresh iterator
        over the current state.
        """
        yield from self.expand(
            template_id=template.pk,
            schedule=template.schedule,
            capacity=template.capacity,
            timezone_name=template.timezone,
            range_start=range_start,
            range_end=range_end,
            overrides=template.get_overrides() if template.is_recurring else {},
            include_cancelled=include_cancelled,
            series_cancelled=not template.is_active,
        )

    def expand(
        self,
        template_id: int,
        schedule: TemplateSchedule,
        capacity: int,
        timezone_name: str,
        range_start: datetime.date,
        range_end: datetime.date,
        overrides: Mapping[str, InstanceOverrideData] | None = None,
        include_cancelled: bool = False,
        series_cancelled: bool = False,
    ) -> Iterator[EventInstance]:
        overrides = overrides or {}
        if isinstance(schedule, FixedOccurrence):
            yield from self._expand_fixed(
                template_id,
                schedule,
                capacity,
                timezone_name,
                range_start,
                range_end,
                include_cancelled=include_cancelled,
                series_cancelled=series_cancelled,
            )
            return

        pattern = schedule.pattern
        if not pattern.weekdays or self.max_instances <= 0:
            return

        zone = zoneinfo.ZoneInfo(pattern.timezone)
        horizon_end = self.horizon_end()
        first_day = max(range_start, pattern.start_date)
        last_day = min(range_end, horizon_end.astimezone(zone).date())
        if pattern.end_date is not None:
            last_day = min(last_day, pattern.end_date)
        if first_day > last_day:
            return

        rule = rrule(
            WEEKLY,
            byweekday=[RRULE_WEEKDAYS[code] for code in pattern.sorted_weekdays],
            dtstart=datetime.datetime.combine(first_day, pattern.time_of_day),
            until=datetime.datetime.combine(last_day, pattern.time_of_day),
        )

        emitted = 0
        for naive_start in rule:
            start_time = localize(naive_start, zone)
            if start_time > horizon_end:
                break

            instance_id = build_instance_id(template_id, naive_start.date())
            override = overrides.get(instance_id, InstanceOverrideData())
            is_cancelled = series_cancelled or override.is_cancelled
            if is_cancelled and not include_cancelled:
                continue

            yield EventInstance(
                instance_id=instance_id,
                template_id=template_id,
                start_time=start_time,
                end_time=(start_time.astimezone(datetime.UTC) + pattern.duration).astimezone(
                    zone
                ),
                timezone=pattern.timezone,
                capacity=override.capacity if override.capacity is not None else capacity,
                status=InstanceStatus.CANCELLED if is_cancelled else InstanceStatus.SCHEDULED,
            )
            emitted += 1
            if emitted >= self.max_instances:
                logger.debug(
                    "Instance generation for template %s stopped at %s instances",
                    template_id,
                    emitted,
                )
                break

    def _expand_fixed(
        self,
        template_id: int,
        schedule: FixedOccurrence,
        capacity: int,
        timezone_name: str,
        range_start: datetime.date,
        range_end: datetime.date,
        include_cancelled: bool,
        series_cancelled: bool,
    ) -> Iterator[EventInstance]:
        zone = zoneinfo.ZoneInfo(timezone_name)
        start_time = schedule.start_time.astimezone(zone)
        if not range_start <= start_time.date() <= range_end:
            return
        if series_cancelled and not include_cancelled:
            return

        yield EventInstance(
            instance_id=str(template_id),
            template_id=template_id,
            start_time=start_time,
            end_time=schedule.end_time.astimezone(zone),
            timezone=timezone_name,
            capacity=capacity,
            status=InstanceStatus.CANCELLED if series_cancelled else InstanceStatus.SCHEDULED,
        )

    def resolve_instance(self, template: "EventTemplate", instance_id: str) -> EventInstance:
        """Return the instance ``instance_id`` of ``template``, cancelled ones included.

        Raises ``InstanceNotFoundError`` when the id is malformed, not on a pattern weekday,
        outside the pattern's dates or, for a series, beyond the horizon.
        """
        if not template.is_recurring:
            if instance_id != str(template.pk):
                raise InstanceNotFoundError()
            local_date = template.start_time.astimezone(template.zone).date()
        else:
            local_date = parse_instance_id(template.pk, instance_id)

        for instance in self.generate(template, local_date, local_date, include_cancelled=True):
            return instance
        raise InstanceNotFoundError()

    def next_occurrence(
        self, template: "EventTemplate", after: datetime.datetime | None = None
    ) -> EventInstance | None:
        """First scheduled instance starting strictly after ``after`` (default: now)."""
        after = after or self.now()
        range_start = after.astimezone(template.zone).date()
        range_end = self.horizon_end().astimezone(template.zone).date()
        if not template.is_recurring:
            # Fixed events are not bounded by the horizon.
            range_end = max(range_end, template.start_time.astimezone(template.zone).date())
        for instance in self.generate(template, range_start, range_end):
            if instance.start_time > after:
                return instance
        return None

    def is_series_active(
        self, template: "EventTemplate", today: datetime.date | None = None
    ) -> bool:
        if not template.is_active:
            return False
        if not template.is_recurring:
            return template.end_time > self.now()

        today = today or self.now().astimezone(template.zone).date()
        end_date = template.recurrence_pattern.end_date
        return end_date is None or end_date >= today
