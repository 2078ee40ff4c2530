import datetime
import logging
from typing import Annotated

from django.db import transaction
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from scheduling.constants import TemplateStatus
from scheduling.exceptions import (
    InvalidPatternError,
    SchedulingServiceNotInjectedError,
    TemplateNotFoundError,
)
from scheduling.models import EventTemplate, InstanceOverride, RecurrencePattern, Registration
from scheduling.recurrence_utils import (
    InstanceGenerator,
    PatternValidator,
    describe_pattern,
    is_valid_timezone,
    parse_instance_id,
)
from scheduling.services.dataclasses import (
    EventInstance,
    EventInstanceWithCount,
    EventTemplateInputData,
    PatternViolation,
    RecurrencePatternData,
    RegistrationResult,
    ValidationResult,
)
from scheduling.services.registration_service import RegistrationCoordinator
from users.models import User


logger = logging.getLogger(__name__)


class SchedulingService:
    """
    Organizer and attendee operations on event templates and their instances.
    """

    @inject
    def __init__(
        self,
        registration_coordinator: Annotated[
            "RegistrationCoordinator | None", Provide["registration_coordinator"]
        ] = None,
        instance_generator: Annotated[
            "InstanceGenerator | None", Provide["instance_generator"]
        ] = None,
    ) -> None:
        if registration_coordinator is None:
            raise SchedulingServiceNotInjectedError("registration_coordinator was not injected")
        self.registration_coordinator = registration_coordinator
        self.instance_generator = instance_generator or InstanceGenerator()

    def get_template(self, template_id: int) -> EventTemplate:
        try:
            return EventTemplate.objects.with_schedule().get(pk=template_id)
        except EventTemplate.DoesNotExist as e:
            raise TemplateNotFoundError() from e

    @staticmethod
    def validate_fixed_times(data: EventTemplateInputData) -> ValidationResult:
        violations = []
        if data.start_time is None:
            violations.append(PatternViolation("start_time", "Start time is required."))
        if data.end_time is None:
            violations.append(PatternViolation("end_time", "End time is required."))
        if data.start_time and data.end_time and data.end_time <= data.start_time:
            violations.append(PatternViolation("end_time", "End time must be after start time."))
        if not is_valid_timezone(data.timezone):
            violations.append(
                PatternViolation("timezone", f"Invalid IANA timezone: {data.timezone}")
            )
        return ValidationResult(violations=tuple(violations))

    @transaction.atomic()
    def create_template(self, organizer: User, data: EventTemplateInputData) -> EventTemplate:
        """Create a fixed event or a recurring series. Nothing is saved if validation fails."""
        pattern = None
        if data.pattern is not None:
            PatternValidator.validate(data.pattern).raise_if_invalid()
            pattern = RecurrencePattern.objects.create(
                weekdays=",".join(data.pattern.sorted_weekdays),
                time_of_day=data.pattern.time_of_day,
                start_date=data.pattern.start_date,
                end_date=data.pattern.end_date,
                duration_minutes=data.pattern.duration_minutes,
            )
        else:
            self.validate_fixed_times(data).raise_if_invalid()

        template = EventTemplate.objects.create(
            organizer=organizer,
            title=data.title,
            description=data.description,
            capacity=data.capacity,
            timezone=data.timezone,
            start_time=None if pattern else data.start_time,
            end_time=None if pattern else data.end_time,
            recurrence_pattern=pattern,
        )
        logger.info("Created %s event template %s", template.kind, template.pk)
        return template

    @transaction.atomic()
    def update_pattern(
        self, template: EventTemplate, pattern_data: RecurrencePatternData
    ) -> EventTemplate:
        """Replace the recurrence of a series.

        Overrides are keyed by local date and kept as they are: they apply again if their
        date is part of the new pattern, and are ignored otherwise.
        """
        if not template.is_recurring:
            raise InvalidPatternError("Only recurring events have a recurrence pattern")
        PatternValidator.validate(pattern_data).raise_if_invalid()

        pattern = template.recurrence_pattern
        pattern.weekdays = ",".join(pattern_data.sorted_weekdays)
        pattern.time_of_day = pattern_data.time_of_day
        pattern.start_date = pattern_data.start_date
        pattern.end_date = pattern_data.end_date
        pattern.duration_minutes = pattern_data.duration_minutes
        pattern.save()

        if template.timezone != pattern_data.timezone:
            template.timezone = pattern_data.timezone
            template.save(update_fields=["timezone", "modified"])
        return template

    def _with_count(
        self, template: EventTemplate, instance: EventInstance
    ) -> EventInstanceWithCount:
        instance_id = instance.instance_id if template.is_recurring else None
        return EventInstanceWithCount(
            instance=instance,
            attendee_count=self.registration_coordinator.get_attendee_count(template, instance_id),
        )

    def list_instances(
        self,
        template_id: int,
        range_start: datetime.date,
        range_end: datetime.date,
        include_cancelled: bool = False,
    ) -> list[EventInstanceWithCount]:
        template = self.get_template(template_id)
        return [
            self._with_count(template, instance)
            for instance in self.instance_generator.generate(
                template, range_start, range_end, include_cancelled=include_cancelled
            )
        ]

    def get_instance(self, template_id: int, instance_id: str) -> EventInstanceWithCount:
        template = self.get_template(template_id)
        instance = self.instance_generator.resolve_instance(template, instance_id)
        return self._with_count(template, instance)

    def next_occurrence(self, template: EventTemplate) -> EventInstance | None:
        return self.instance_generator.next_occurrence(template)

    def describe(self, template: EventTemplate) -> str | None:
        if not template.is_recurring:
            return None
        return describe_pattern(template.recurrence_pattern.to_data(template.timezone))

    def is_series_active(self, template: EventTemplate) -> bool:
        return self.instance_generator.is_series_active(template)

    def cancel_instance(self, template: EventTemplate, instance_id: str) -> EventInstance:
        if not template.is_recurring:
            raise InvalidPatternError(
                "Cancel the event itself, fixed events have a single instance"
            )
        self.instance_generator.resolve_instance(template, instance_id)
        InstanceOverride.objects.update_or_create(
            template=template, instance_id=instance_id, defaults={"is_cancelled": True}
        )
        logger.info("Cancelled instance %s", instance_id)
        return self.instance_generator.resolve_instance(
            EventTemplate.objects.with_schedule().get(pk=template.pk), instance_id
        )

    def set_instance_capacity(
        self, template: EventTemplate, instance_id: str, capacity: int | None
    ) -> EventInstance:
        if not template.is_recurring:
            raise InvalidPatternError(
                "Change the event capacity, fixed events have a single instance"
            )
        self.instance_generator.resolve_instance(template, instance_id)
        InstanceOverride.objects.update_or_create(
            template=template, instance_id=instance_id, defaults={"capacity": capacity}
        )
        self.registration_coordinator.attendee_count_cache.invalidate(instance_id)
        return self.instance_generator.resolve_instance(
            EventTemplate.objects.with_schedule().get(pk=template.pk), instance_id
        )

    @transaction.atomic()
    def end_series(
        self, template: EventTemplate, end_date: datetime.date | None = None
    ) -> list[Registration]:
        """End a recurring series on ``end_date`` (today by default).

        Returns the confirmed registrations for instances after the new end date, which
        are no longer reachable.
        """
        if not template.is_recurring:
            raise InvalidPatternError("Only recurring events can be ended")

        end_date = end_date or timezone.now().astimezone(template.zone).date()
        pattern_data = template.recurrence_pattern.to_data(template.timezone)
        result = PatternValidator.validate(
            RecurrencePatternData(
                weekdays=pattern_data.weekdays,
                time_of_day=pattern_data.time_of_day,
                start_date=pattern_data.start_date,
                end_date=end_date,
                duration_minutes=pattern_data.duration_minutes,
                timezone=pattern_data.timezone,
            )
        )
        result.raise_if_invalid()

        template.recurrence_pattern.end_date = end_date
        template.recurrence_pattern.save(update_fields=["end_date", "modified"])

        orphaned = [
            registration
            for registration in template.registrations.confirmed().select_related("attendee")
            if parse_instance_id(template.pk, registration.instance_id) > end_date
        ]
        logger.info(
            "Ended series %s on %s, %s future registrations affected",
            template.pk,
            end_date,
            len(orphaned),
        )
        return orphaned

    def cancel_template(self, template: EventTemplate) -> EventTemplate:
        template.status = TemplateStatus.CANCELLED
        template.save(update_fields=["status", "modified"])
        logger.info("Cancelled event template %s", template.pk)
        return template

    def register(
        self, template_id: int, instance_id: str | None, attendee: User
    ) -> RegistrationResult:
        return self.registration_coordinator.register(template_id, instance_id, attendee)

    def cancel_registration(self, registration_id: int, attendee: User) -> Registration:
        return self.registration_coordinator.cancel_registration(registration_id, attendee)
