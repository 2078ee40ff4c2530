import datetime

from model_bakery import baker

from scheduling.models import (
    BlockedDateRange,
    Booking,
    EventTemplate,
    InstanceOverride,
    RecurrencePattern,
    WorkingHoursConfig,
)
from users.factories import UserFactory
from users.models import User


class SchedulingFactory:
    @staticmethod
    def create_recurring_template(
        organizer: User | None = None,
        weekdays: str = "MO,WE",
        time_of_day: datetime.time = datetime.time(14, 0),
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        duration_minutes: int = 60,
        capacity: int = 0,
        timezone: str = "UTC",
        **kwargs,
    ) -> EventTemplate:
        pattern = baker.make(
            RecurrencePattern,
            weekdays=weekdays,
            time_of_day=time_of_day,
            start_date=start_date or datetime.datetime.now(datetime.UTC).date(),
            end_date=end_date,
            duration_minutes=duration_minutes,
        )
        return baker.make(
            EventTemplate,
            organizer=organizer or UserFactory().create_user(),
            title=kwargs.pop("title", "Weekly class"),
            capacity=capacity,
            timezone=timezone,
            start_time=None,
            end_time=None,
            recurrence_pattern=pattern,
            **kwargs,
        )

    @staticmethod
    def create_fixed_template(
        organizer: User | None = None,
        start_time: datetime.datetime | None = None,
        duration: datetime.timedelta = datetime.timedelta(hours=1),
        capacity: int = 0,
        timezone: str = "UTC",
        **kwargs,
    ) -> EventTemplate:
        if start_time is None:
            start_time = datetime.datetime.now(datetime.UTC).replace(
                microsecond=0
            ) + datetime.timedelta(days=1)
        return baker.make(
            EventTemplate,
            organizer=organizer or UserFactory().create_user(),
            title=kwargs.pop("title", "Workshop"),
            capacity=capacity,
            timezone=timezone,
            start_time=start_time,
            end_time=start_time + duration,
            recurrence_pattern=None,
            **kwargs,
        )

    @staticmethod
    def create_instance_override(
        template: EventTemplate, instance_id: str, **kwargs
    ) -> InstanceOverride:
        return baker.make(InstanceOverride, template=template, instance_id=instance_id, **kwargs)

    @staticmethod
    def create_working_hours_config(owner: User | None = None, **kwargs) -> WorkingHoursConfig:
        blocked_date_ranges = kwargs.pop("blocked_date_ranges", ())
        config = WorkingHoursConfig.objects.create(
            owner=owner or UserFactory().create_user(), **kwargs
        )
        for blocked in blocked_date_ranges:
            baker.make(BlockedDateRange, config=config, **blocked)
        return config

    @staticmethod
    def create_booking(
        owner: User,
        start_time: datetime.datetime,
        duration_minutes: int = 60,
        **kwargs,
    ) -> Booking:
        return baker.make(
            Booking,
            owner=owner,
            start_time=start_time,
            end_time=start_time + datetime.timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            booker_email=kwargs.pop("booker_email", "booker@example.com"),
            **kwargs,
        )
