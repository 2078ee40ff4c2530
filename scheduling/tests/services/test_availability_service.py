import datetime

import pytest

from scheduling.constants import BookingStatus
from scheduling.exceptions import BookingDisabledError, BookingNotFoundError, SlotUnavailableError
from scheduling.factories import SchedulingFactory
from scheduling.models import BlockedDateRange, Booking, WorkingHoursConfig
from scheduling.recurrence_utils import InstanceGenerator
from scheduling.services.availability_service import AvailabilityService
from scheduling.services.dataclasses import BlockedDateRangeData, BookingInputData


MONDAY = datetime.date(2030, 3, 4)
NOW = datetime.datetime(2030, 3, 4, 6, 0, tzinfo=datetime.UTC)


def _at(date, hour, minute=0):
    return datetime.datetime.combine(date, datetime.time(hour, minute), tzinfo=datetime.UTC)


def _service(now=NOW):
    return AvailabilityService(
        instance_generator=InstanceGenerator(now=lambda: now), now=lambda: now
    )


def _booking_input(start_time, duration_minutes=60):
    return BookingInputData(
        start_time=start_time,
        duration_minutes=duration_minutes,
        booker_name="Alan Turing",
        booker_email="alan@example.com",
    )


def _times(slots):
    return [slot.local_time for slot in slots]


@pytest.mark.django_db
class TestPreferences:
    def test_defaults_without_saved_config(self, user):
        preferences = _service().get_preferences(user.pk)

        assert preferences.booking_enabled
        assert preferences.buffer_minutes == 15
        assert preferences.allowed_durations == (30, 60)
        assert preferences.hours_for(MONDAY).enabled
        assert not preferences.allow_weekends
        assert not WorkingHoursConfig.objects.exists()

    def test_update_preferences_replaces_blocked_ranges(self, user):
        service = _service()
        service.update_preferences(
            user.pk,
            blocked_date_ranges=[
                BlockedDateRangeData(datetime.date(2030, 3, 1), datetime.date(2030, 3, 2))
            ],
            buffer_minutes=10,
        )

        config = service.update_preferences(
            user.pk,
            blocked_date_ranges=[
                BlockedDateRangeData(
                    datetime.date(2030, 1, 28), datetime.date(2030, 2, 2), repeat_monthly=True
                )
            ],
            timezone="Europe/Lisbon",
        )

        preferences = service.get_preferences(user.pk)
        assert config.buffer_minutes == 10
        assert preferences.timezone == "Europe/Lisbon"
        assert BlockedDateRange.objects.count() == 1
        assert preferences.blocked_date_ranges[0].repeat_monthly

    def test_update_preferences_keeps_ranges_when_omitted(self, user):
        service = _service()
        service.update_preferences(
            user.pk,
            blocked_date_ranges=[
                BlockedDateRangeData(datetime.date(2030, 3, 1), datetime.date(2030, 3, 2))
            ],
        )

        service.update_preferences(user.pk, allow_weekends=True)

        assert BlockedDateRange.objects.count() == 1


@pytest.mark.django_db
class TestAvailability:
    def test_free_day(self, user):
        slots = _service().get_availability(user.pk, MONDAY)

        assert _times(slots)[0] == "09:00"
        assert _times(slots)[-1] == "16:30"

    def test_bookings_and_buffers(self, user):
        SchedulingFactory.create_booking(user, _at(MONDAY, 10))

        slots = {
            slot.local_time: slot.durations
            for slot in _service().get_availability(user.pk, MONDAY)
        }

        assert slots["09:00"] == (30,)
        assert "11:00" not in slots
        assert slots["11:15"] == (30, 60)

    def test_cancelled_bookings_do_not_block(self, user):
        SchedulingFactory.create_booking(user, _at(MONDAY, 10), status=BookingStatus.CANCELLED)

        assert "10:00" in _times(_service().get_availability(user.pk, MONDAY))

    def test_owned_event_instances_block_time(self, user):
        SchedulingFactory.create_recurring_template(
            organizer=user,
            weekdays="MO",
            time_of_day=datetime.time(13, 0),
            start_date=MONDAY,
        )

        times = _times(_service().get_availability(user.pk, MONDAY))

        assert "13:00" not in times
        assert "12:45" not in times
        assert "14:15" in times

    def test_other_organizers_events_do_not_block(self, user, other_user):
        SchedulingFactory.create_recurring_template(
            organizer=other_user,
            weekdays="MO",
            time_of_day=datetime.time(13, 0),
            start_date=MONDAY,
        )

        assert "13:00" in _times(_service().get_availability(user.pk, MONDAY))

    def test_past_slots_are_hidden(self, user):
        slots = _service(now=_at(MONDAY, 10, 20)).get_availability(user.pk, MONDAY)

        assert _times(slots)[0] == "10:30"

    def test_advance_booking_window(self, user):
        service = _service()

        assert service.get_availability(user.pk, MONDAY + datetime.timedelta(days=31)) == []
        assert service.get_availability(user.pk, MONDAY - datetime.timedelta(days=7)) == []

    def test_booking_disabled(self, user):
        SchedulingFactory.create_working_hours_config(owner=user, booking_enabled=False)

        with pytest.raises(BookingDisabledError):
            _service().get_availability(user.pk, MONDAY)

    def test_availability_range_skips_closed_days(self, user):
        SchedulingFactory.create_working_hours_config(
            owner=user,
            blocked_date_ranges=[
                {"start_date": datetime.date(2030, 3, 6), "end_date": datetime.date(2030, 3, 6)}
            ],
        )

        days = _service().get_availability_range(user.pk, MONDAY, 7)

        assert [day.date for day in days] == [
            datetime.date(2030, 3, 4),
            datetime.date(2030, 3, 5),
            datetime.date(2030, 3, 7),
            datetime.date(2030, 3, 8),
        ]

    def test_availability_range_is_capped_by_the_advance_window(self, user):
        SchedulingFactory.create_working_hours_config(
            owner=user, advance_booking_days=2, allow_weekends=False
        )

        days = _service().get_availability_range(user.pk, MONDAY, 30)

        assert [day.date for day in days] == [
            datetime.date(2030, 3, 4),
            datetime.date(2030, 3, 5),
            datetime.date(2030, 3, 6),
        ]


@pytest.mark.django_db
class TestBooking:
    def test_book_slot(self, user):
        service = _service()

        booking = service.book_slot(user, _booking_input(_at(MONDAY, 11)))

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.end_time == _at(MONDAY, 12)
        assert len(booking.cancellation_token) >= 32
        assert "11:00" not in _times(service.get_availability(user.pk, MONDAY))

    def test_booked_slot_is_unavailable(self, user):
        service = _service()
        service.book_slot(user, _booking_input(_at(MONDAY, 11)))

        with pytest.raises(SlotUnavailableError):
            service.book_slot(user, _booking_input(_at(MONDAY, 11)))
        with pytest.raises(SlotUnavailableError):
            # Inside the buffer after the first booking.
            service.book_slot(user, _booking_input(_at(MONDAY, 12), duration_minutes=30))

        assert Booking.objects.count() == 1

    @pytest.mark.parametrize(
        ("start_time", "duration_minutes"),
        [
            (_at(MONDAY, 5), 60),  # in the past
            (_at(MONDAY, 8), 60),  # before working hours
            (_at(MONDAY, 16, 30), 60),  # runs past working hours
            (_at(MONDAY, 9, 10), 30),  # not on the slot grid
            (_at(MONDAY, 9), 45),  # duration not allowed
            (_at(datetime.date(2030, 3, 9), 10), 60),  # Saturday
            (_at(datetime.date(2030, 4, 15), 10), 60),  # beyond the advance window
        ],
    )
    def test_unavailable_slots(self, user, start_time, duration_minutes):
        with pytest.raises(SlotUnavailableError):
            _service().book_slot(user, _booking_input(start_time, duration_minutes))

        assert not Booking.objects.exists()

    def test_book_slot_when_disabled(self, user):
        SchedulingFactory.create_working_hours_config(owner=user, booking_enabled=False)

        with pytest.raises(BookingDisabledError):
            _service().book_slot(user, _booking_input(_at(MONDAY, 11)))

    def test_book_slot_in_owner_timezone(self, user):
        SchedulingFactory.create_working_hours_config(owner=user, timezone="America/New_York")
        start_time = datetime.datetime(
            2030, 3, 4, 9, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=-5))
        )

        booking = _service().book_slot(user, _booking_input(start_time))

        assert booking.start_time == _at(MONDAY, 14)

    def test_cancel_booking_frees_the_slot(self, user):
        service = _service()
        booking = service.book_slot(user, _booking_input(_at(MONDAY, 11)))

        cancelled = service.cancel_booking(booking.cancellation_token)

        assert cancelled.status == BookingStatus.CANCELLED
        assert "11:00" in _times(service.get_availability(user.pk, MONDAY))

    def test_cancel_unknown_booking(self):
        with pytest.raises(BookingNotFoundError):
            _service().cancel_booking("nope")
