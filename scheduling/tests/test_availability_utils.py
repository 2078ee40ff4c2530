import datetime
import zoneinfo

import pytest

from scheduling.availability_utils import AvailabilityCalculator
from scheduling.interval_utils import intervals_overlap, pad_interval
from scheduling.services.dataclasses import (
    BlockedDateRangeData,
    DayWorkingHours,
    WorkingHoursConfigData,
)


MONDAY = datetime.date(2026, 3, 2)
SATURDAY = datetime.date(2026, 3, 7)


def _config(**kwargs):
    weekday_hours = DayWorkingHours(
        enabled=True, start=datetime.time(9, 0), end=datetime.time(17, 0)
    )
    weekend_hours = DayWorkingHours(
        enabled=False, start=datetime.time(9, 0), end=datetime.time(17, 0)
    )
    defaults = {
        "working_hours": {
            **{code: weekday_hours for code in ("MO", "TU", "WE", "TH", "FR")},
            "SA": weekend_hours,
            "SU": weekend_hours,
        },
        "buffer_minutes": 15,
        "allowed_durations": (30, 60),
        "allow_weekends": False,
        "advance_booking_days": 30,
        "timezone": "UTC",
    }
    defaults.update(kwargs)
    return WorkingHoursConfigData(**defaults)


def _utc(date, hour, minute=0):
    return datetime.datetime.combine(date, datetime.time(hour, minute), tzinfo=datetime.UTC)


def _slots_by_time(slots):
    return {slot.local_time: slot.durations for slot in slots}


def test_intervals_touching_at_an_endpoint_do_not_overlap():
    assert not intervals_overlap(
        _utc(MONDAY, 9), _utc(MONDAY, 10), _utc(MONDAY, 10), _utc(MONDAY, 11)
    )
    assert intervals_overlap(
        *pad_interval(_utc(MONDAY, 9), _utc(MONDAY, 10), 15), _utc(MONDAY, 10), _utc(MONDAY, 11)
    )


def test_buffer_around_booking():
    booked = [(_utc(MONDAY, 10), _utc(MONDAY, 11))]

    slots = _slots_by_time(AvailabilityCalculator.available_slots(_config(), booked, MONDAY))

    # 09:00-10:00 would end inside the buffer before the booking.
    assert 60 not in slots["09:00"]
    assert slots["09:00"] == (30,)
    # Slots starting in the buffer after the booking are not offered.
    assert "11:00" not in slots
    assert slots["11:15"] == (30, 60)
    assert "08:00" not in slots
    assert "08:45" not in slots


def test_slots_only_fit_inside_working_hours():
    slots = _slots_by_time(AvailabilityCalculator.available_slots(_config(), [], MONDAY))

    assert min(slots) == "09:00"
    assert slots["16:30"] == (30,)
    assert slots["16:00"] == (30, 60)
    assert "16:45" not in slots


def test_weekends_are_closed_unless_allowed():
    assert AvailabilityCalculator.available_slots(_config(), [], SATURDAY) == []

    open_saturday = DayWorkingHours(
        enabled=True, start=datetime.time(10, 0), end=datetime.time(12, 0)
    )
    config = _config(
        allow_weekends=True,
        working_hours={**_config().working_hours, "SA": open_saturday},
    )
    slots = AvailabilityCalculator.available_slots(config, [], SATURDAY)

    assert slots[0].local_time == "10:00"


def test_disabled_day_has_no_slots():
    closed = DayWorkingHours(enabled=False, start=datetime.time(9, 0), end=datetime.time(17, 0))
    config = _config(working_hours={**_config().working_hours, "MO": closed})

    assert AvailabilityCalculator.available_slots(config, [], MONDAY) == []


def test_default_time_range_replaces_day_hours_without_custom_times():
    morning = DayWorkingHours(enabled=True, start=datetime.time(8, 0), end=datetime.time(12, 0))
    working_hours = {**_config().working_hours, "MO": morning}
    default_time_range = (datetime.time(10, 0), datetime.time(11, 0))

    slots = _slots_by_time(
        AvailabilityCalculator.available_slots(
            _config(working_hours=working_hours, default_time_range=default_time_range),
            [],
            MONDAY,
        )
    )
    custom_slots = _slots_by_time(
        AvailabilityCalculator.available_slots(
            _config(
                working_hours=working_hours,
                default_time_range=default_time_range,
                custom_times=True,
            ),
            [],
            MONDAY,
        )
    )

    assert list(slots) == ["10:00", "10:15", "10:30"]
    assert slots["10:00"] == (30, 60)
    assert slots["10:30"] == (30,)
    assert min(custom_slots) == "08:00"
    assert max(custom_slots) == "11:30"


def test_specific_slots_skip_times_that_clash_with_bookings():
    monday = DayWorkingHours(
        enabled=True,
        start=datetime.time(9, 0),
        end=datetime.time(17, 0),
        specific_slots=(
            datetime.time(16, 45),
            datetime.time(9, 0),
            datetime.time(11, 0),
            datetime.time(14, 0),
        ),
    )
    config = _config(working_hours={**_config().working_hours, "MO": monday}, custom_times=True)
    booked = [(_utc(MONDAY, 10), _utc(MONDAY, 11))]

    slots = _slots_by_time(AvailabilityCalculator.available_slots(config, booked, MONDAY))

    # 11:00 starts inside the buffer after the booking.
    assert list(slots) == ["09:00", "14:00", "16:45"]
    assert slots["09:00"] == (30,)
    assert slots["14:00"] == (30, 60)
    # Listed times are not trimmed to the day's end.
    assert slots["16:45"] == (30, 60)
    assert AvailabilityCalculator.is_slot_available(config, booked, _utc(MONDAY, 14), 60)
    assert not AvailabilityCalculator.is_slot_available(config, booked, _utc(MONDAY, 14, 15), 30)


def test_specific_slots_are_ignored_without_custom_times():
    monday = DayWorkingHours(
        enabled=True,
        start=datetime.time(9, 0),
        end=datetime.time(17, 0),
        specific_slots=(datetime.time(14, 0),),
    )
    config = _config(working_hours={**_config().working_hours, "MO": monday})

    slots = _slots_by_time(AvailabilityCalculator.available_slots(config, [], MONDAY))

    assert min(slots) == "09:00"
    assert "09:15" in slots


def test_blocked_date_range():
    config = _config(
        blocked_date_ranges=(
            BlockedDateRangeData(
                start_date=datetime.date(2026, 3, 1), end_date=datetime.date(2026, 3, 3)
            ),
        )
    )

    assert AvailabilityCalculator.available_slots(config, [], MONDAY) == []
    assert AvailabilityCalculator.available_slots(config, [], datetime.date(2026, 3, 4)) != []


@pytest.mark.parametrize(
    ("day", "is_blocked"),
    [
        (datetime.date(2026, 4, 28), True),
        (datetime.date(2026, 5, 2), True),
        (datetime.date(2026, 5, 3), False),
        (datetime.date(2026, 5, 27), False),
    ],
)
def test_monthly_blocked_range_wraps_month_end(day, is_blocked):
    blocked = BlockedDateRangeData(
        start_date=datetime.date(2026, 1, 28),
        end_date=datetime.date(2026, 2, 2),
        repeat_monthly=True,
    )

    assert blocked.contains(day) is is_blocked


def test_slot_granularity():
    assert AvailabilityCalculator.slot_granularity((30, 60), 0) == 30
    assert AvailabilityCalculator.slot_granularity((30, 60), 15) == 15
    assert AvailabilityCalculator.slot_granularity((30, 60), 45) == 30
    assert AvailabilityCalculator.slot_granularity((30,), 2) == 5


def test_slots_are_in_the_configured_timezone():
    config = _config(timezone="Africa/Johannesburg")

    slots = AvailabilityCalculator.available_slots(config, [], MONDAY)

    assert slots[0].start_time == datetime.datetime(
        2026, 3, 2, 9, 0, tzinfo=zoneinfo.ZoneInfo("Africa/Johannesburg")
    )
    assert slots[0].start_time.astimezone(datetime.UTC).hour == 7


def test_allowed_durations_can_be_narrowed():
    slots = AvailabilityCalculator.available_slots(_config(), [], MONDAY, allowed_durations=[60])

    assert all(slot.durations == (60,) for slot in slots)
    assert slots[-1].local_time == "16:00"


def test_is_slot_available():
    booked = [(_utc(MONDAY, 10), _utc(MONDAY, 11))]
    config = _config()

    assert AvailabilityCalculator.is_slot_available(config, booked, _utc(MONDAY, 11, 15), 60)
    assert not AvailabilityCalculator.is_slot_available(config, booked, _utc(MONDAY, 9), 60)
    assert AvailabilityCalculator.is_slot_available(config, booked, _utc(MONDAY, 9), 30)
    # Not aligned to the slot grid.
    assert not AvailabilityCalculator.is_slot_available(config, [], _utc(MONDAY, 9, 7), 30)
