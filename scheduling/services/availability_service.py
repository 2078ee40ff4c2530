import datetime
import logging
import secrets
from collections.abc import Callable, Iterable
from typing import Annotated, Any

from django.db import transaction
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from scheduling.availability_utils import AvailabilityCalculator
from scheduling.constants import BookingStatus
from scheduling.exceptions import (
    BookingDisabledError,
    BookingNotFoundError,
    SlotUnavailableError,
)
from scheduling.models import BlockedDateRange, Booking, EventTemplate, WorkingHoursConfig
from scheduling.recurrence_utils import InstanceGenerator
from scheduling.services.dataclasses import (
    AvailableSlot,
    BlockedDateRangeData,
    BookingInputData,
    DayAvailability,
    Interval,
    WorkingHoursConfigData,
)
from users.models import User


logger = logging.getLogger(__name__)


class AvailabilityService:
    """
    Working-hours preferences, free slot lookup and the public booking flow of a calendar
    owner. Busy time is the owner's confirmed bookings plus the instances of their active
    events.
    """

    @inject
    def __init__(
        self,
        instance_generator: Annotated[
            "InstanceGenerator | None", Provide["instance_generator"]
        ] = None,
        now: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.instance_generator = instance_generator or InstanceGenerator()
        self.now = now or timezone.now

    def get_config(self, owner_id: int) -> WorkingHoursConfig:
        """The saved configuration, or an unsaved one holding the defaults."""
        config = (
            WorkingHoursConfig.objects.prefetch_related("blocked_date_ranges")
            .filter(owner_id=owner_id)
            .first()
        )
        return config or WorkingHoursConfig(owner_id=owner_id)

    def get_preferences(self, owner_id: int) -> WorkingHoursConfigData:
        return self.get_config(owner_id).to_data()

    @transaction.atomic()
    def update_preferences(
        self,
        owner_id: int,
        blocked_date_ranges: Iterable[BlockedDateRangeData] | None = None,
        **fields: Any,
    ) -> WorkingHoursConfig:
        """Update the given fields. ``blocked_date_ranges``, when passed, replaces all ranges."""
        config, _created = WorkingHoursConfig.objects.select_for_update().get_or_create(
            owner_id=owner_id
        )
        for name, value in fields.items():
            setattr(config, name, value)
        config.full_clean(exclude=["owner"])
        config.save()

        if blocked_date_ranges is not None:
            config.blocked_date_ranges.all().delete()
            BlockedDateRange.objects.bulk_create(
                BlockedDateRange(
                    config=config,
                    start_date=blocked.start_date,
                    end_date=blocked.end_date,
                    repeat_monthly=blocked.repeat_monthly,
                )
                for blocked in blocked_date_ranges
            )
        logger.info("Updated working hours of user %s", owner_id)
        return config

    def get_busy_intervals(
        self, owner_id: int, start_time: datetime.datetime, end_time: datetime.datetime
    ) -> list[Interval]:
        intervals: list[Interval] = list(
            Booking.objects.confirmed()
            .filter(owner_id=owner_id)
            .overlapping(start_time, end_time)
            .values_list("start_time", "end_time")
        )

        # Instances are bucketed by their own timezone's date, so widen by a day each way.
        range_start = (start_time - datetime.timedelta(days=1)).date()
        range_end = (end_time + datetime.timedelta(days=1)).date()
        templates = EventTemplate.objects.active().with_schedule().filter(organizer_id=owner_id)
        for template in templates:
            intervals.extend(
                (instance.start_time, instance.end_time)
                for instance in self.instance_generator.generate(template, range_start, range_end)
                if instance.start_time < end_time and start_time < instance.end_time
            )
        return sorted(intervals)

    def _day_bounds(
        self, config: WorkingHoursConfigData, date: datetime.date
    ) -> tuple[datetime.datetime, datetime.datetime]:
        start = datetime.datetime.combine(date, datetime.time(), tzinfo=config.zone)
        return start, start + datetime.timedelta(days=1)

    def _is_bookable_date(self, config: WorkingHoursConfigData, date: datetime.date) -> bool:
        today = self.now().astimezone(config.zone).date()
        last_bookable = today + datetime.timedelta(days=config.advance_booking_days)
        return today <= date <= last_bookable

    def _compute_slots(
        self, owner_id: int, config: WorkingHoursConfigData, date: datetime.date
    ) -> list[AvailableSlot]:
        if not self._is_bookable_date(config, date):
            return []

        busy = self.get_busy_intervals(owner_id, *self._day_bounds(config, date))
        now = self.now()
        return [
            slot
            for slot in AvailabilityCalculator.available_slots(config, busy, date)
            if slot.start_time > now
        ]

    def get_availability(self, owner_id: int, date: datetime.date) -> list[AvailableSlot]:
        config = self.get_preferences(owner_id)
        if not config.booking_enabled:
            raise BookingDisabledError()
        return self._compute_slots(owner_id, config, date)

    def get_availability_range(
        self, owner_id: int, start_date: datetime.date, days: int
    ) -> list[DayAvailability]:
        """Availability for up to ``days`` consecutive dates, capped by the advance-booking
        window. Days without free slots are left out."""
        config = self.get_preferences(owner_id)
        if not config.booking_enabled:
            raise BookingDisabledError()

        days = max(0, min(days, config.advance_booking_days + 1))
        result = []
        for offset in range(days):
            date = start_date + datetime.timedelta(days=offset)
            slots = self._compute_slots(owner_id, config, date)
            if slots:
                result.append(DayAvailability(date=date, slots=slots))
        return result

    def book_slot(self, owner: User, data: BookingInputData) -> Booking:
        WorkingHoursConfig.objects.get_or_create(owner=owner)

        with transaction.atomic():
            # Locking the owner's config row serializes bookings against the same calendar.
            config_row = (
                WorkingHoursConfig.objects.select_for_update()
                .prefetch_related("blocked_date_ranges")
                .get(owner=owner)
            )
            config = config_row.to_data()
            if not config.booking_enabled:
                raise BookingDisabledError()

            start_time = data.start_time.astimezone(config.zone)
            end_time = start_time.astimezone(datetime.UTC) + datetime.timedelta(
                minutes=data.duration_minutes
            )
            if start_time <= self.now() or not self._is_bookable_date(config, start_time.date()):
                raise SlotUnavailableError()

            busy = self.get_busy_intervals(owner.pk, *self._day_bounds(config, start_time.date()))
            if not AvailabilityCalculator.is_slot_available(
                config, busy, start_time, data.duration_minutes
            ):
                logger.info("Slot %s for user %s is no longer available", start_time, owner.pk)
                raise SlotUnavailableError()

            booking = Booking.objects.create(
                owner=owner,
                start_time=start_time,
                end_time=end_time,
                duration_minutes=data.duration_minutes,
                booker_name=data.booker_name,
                booker_email=data.booker_email,
                message=data.message,
                cancellation_token=secrets.token_urlsafe(32),
            )
        logger.info("Booked %s for user %s", start_time, owner.pk)
        return booking

    def cancel_booking(self, cancellation_token: str) -> Booking:
        with transaction.atomic():
            try:
                booking = (
                    Booking.objects.select_for_update()
                    .select_related("owner")
                    .get(cancellation_token=cancellation_token)
                )
            except Booking.DoesNotExist as e:
                raise BookingNotFoundError() from e

            if booking.status != BookingStatus.CANCELLED:
                booking.status = BookingStatus.CANCELLED
                booking.save(update_fields=["status", "modified"])
        logger.info("Cancelled booking %s", booking.pk)
        return booking
