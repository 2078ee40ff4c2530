import datetime
import zoneinfo
from collections.abc import Iterable, Sequence

from scheduling.constants import MIN_SLOT_GRANULARITY_MINUTES, WEEKDAY_CODES, WEEKEND_CODES
from scheduling.interval_utils import overlaps_any, pad_interval
from scheduling.recurrence_utils import localize
from scheduling.services.dataclasses import AvailableSlot, Interval, WorkingHoursConfigData


def minutes_since_midnight(value: datetime.time) -> int:
    return value.hour * 60 + value.minute


class AvailabilityCalculator:
    """Computes free bookable slots for one day. Pure: no store access, no caching."""

    @staticmethod
    def slot_granularity(durations: Sequence[int], buffer_minutes: int) -> int:
        """Step between candidate starts.

        The smallest allowed duration, refined to the buffer when a non-zero buffer is
        smaller, so a slot can begin exactly where the buffer after a booking ends.
        """
        granularity = min(durations)
        if 0 < buffer_minutes < granularity:
            granularity = max(buffer_minutes, MIN_SLOT_GRANULARITY_MINUTES)
        return granularity

    @staticmethod
    def available_slots(
        config: WorkingHoursConfigData,
        booked_intervals: Iterable[Interval],
        date: datetime.date,
        allowed_durations: Sequence[int] | None = None,
    ) -> list[AvailableSlot]:
        durations = sorted(
            {d for d in (allowed_durations or config.allowed_durations) if d > 0}
        )
        if not durations:
            return []

        weekday = WEEKDAY_CODES[date.weekday()]
        if weekday in WEEKEND_CODES and not config.allow_weekends:
            return []
        hours = config.hours_for(date)
        if hours is None or not hours.enabled:
            return []
        if config.is_blocked(date):
            return []

        zone = zoneinfo.ZoneInfo(config.timezone)
        booked = sorted(booked_intervals)
        midnight = datetime.datetime.combine(date, datetime.time())

        offsets: Iterable[int]
        window_end: int | None
        specific_slots = config.specific_slots_for(hours)
        if specific_slots:
            # Listed start times are offered as-is, with every duration that stays clear.
            offsets = [minutes_since_midnight(value) for value in specific_slots]
            window_end = None
        else:
            window_start, window_end = (
                minutes_since_midnight(value) for value in config.window_for(hours)
            )
            if window_end - window_start < durations[0]:
                return []
            granularity = AvailabilityCalculator.slot_granularity(
                durations, config.buffer_minutes
            )
            offsets = range(window_start, window_end - durations[0] + 1, granularity)

        slots: list[AvailableSlot] = []
        for offset in offsets:
            start_time = localize(midnight + datetime.timedelta(minutes=offset), zone)
            start_utc = start_time.astimezone(datetime.UTC)
            fitting = tuple(
                duration
                for duration in durations
                if (window_end is None or offset + duration <= window_end)
                and not overlaps_any(
                    *pad_interval(
                        start_utc,
                        start_utc + datetime.timedelta(minutes=duration),
                        config.buffer_minutes,
                    ),
                    booked,
                )
            )
            if fitting:
                slots.append(AvailableSlot(start_time=start_time, durations=fitting))
        return slots

    @staticmethod
    def is_slot_available(
        config: WorkingHoursConfigData,
        booked_intervals: Iterable[Interval],
        start_time: datetime.datetime,
        duration_minutes: int,
    ) -> bool:
        """True when ``start_time`` is an offered slot that fits ``duration_minutes``."""
        zone = zoneinfo.ZoneInfo(config.timezone)
        local_start = start_time.astimezone(zone)
        slots = AvailabilityCalculator.available_slots(
            config, booked_intervals, local_start.date()
        )
        return any(
            slot.start_time == local_start and duration_minutes in slot.durations
            for slot in slots
        )
