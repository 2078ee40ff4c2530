import logging
from typing import Annotated

from django.db import IntegrityError, OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from dependency_injector.wiring import Provide, inject

from scheduling.constants import RegistrationStatus
from scheduling.exceptions import (
    AlreadyRegisteredError,
    CapacityExceededError,
    InstanceCancelledError,
    InvalidRegistrationError,
    RegistrationNotFoundError,
    SchedulingServiceNotInjectedError,
    TemplateNotFoundError,
    TransactionConflictError,
)
from scheduling.models import EventTemplate, OccupancyCounter, Registration
from scheduling.recurrence_utils import InstanceGenerator
from scheduling.services.dataclasses import EventInstance, RegistrationResult
from scheduling.services.protocols.attendee_count_cache import AttendeeCountCache
from users.models import User


logger = logging.getLogger(__name__)


def occupancy_key(template: EventTemplate, instance_id: str | None) -> str:
    """Key shared by the occupancy counter and the attendee count cache."""
    return instance_id or str(template.pk)


class RegistrationCoordinator:
    """
    Registers attendees against fixed events or single instances of recurring series.

    The capacity check and the seat claim are one conditional UPDATE on the occurrence's
    ``OccupancyCounter`` row, issued as the first statement of the registration
    transaction. The database serializes concurrent claims on that row, so the last seat
    can only be taken once.
    """

    @inject
    def __init__(
        self,
        attendee_count_cache: Annotated[
            "AttendeeCountCache | None", Provide["attendee_count_cache"]
        ] = None,
        instance_generator: Annotated[
            "InstanceGenerator | None", Provide["instance_generator"]
        ] = None,
    ) -> None:
        if attendee_count_cache is None:
            raise SchedulingServiceNotInjectedError("attendee_count_cache was not injected")
        self.attendee_count_cache = attendee_count_cache
        self.instance_generator = instance_generator or InstanceGenerator()

    def _get_template(self, template_id: int) -> EventTemplate:
        try:
            return EventTemplate.objects.with_schedule().get(pk=template_id)
        except EventTemplate.DoesNotExist as e:
            raise TemplateNotFoundError() from e

    def _validate_linkage(self, template: EventTemplate, instance_id: str | None) -> None:
        if template.is_recurring and not instance_id:
            raise InvalidRegistrationError(
                "An instance id is required to register for a recurring event"
            )
        if not template.is_recurring and instance_id:
            raise InvalidRegistrationError("Fixed events don't accept an instance id")

    def resolve_target(self, template: EventTemplate, instance_id: str | None) -> EventInstance:
        """Return the occurrence a registration would target, refusing cancelled ones."""
        self._validate_linkage(template, instance_id)
        if not template.is_active:
            raise InstanceCancelledError("This event has been cancelled")

        instance = self.instance_generator.resolve_instance(
            template, instance_id or str(template.pk)
        )
        if instance.is_cancelled:
            raise InstanceCancelledError()
        return instance

    def _claim_seat(self, counter_id: int, capacity: int) -> bool:
        counters = OccupancyCounter.objects.filter(pk=counter_id)
        if capacity:
            counters = counters.filter(confirmed_count__lt=capacity)
        return counters.update(confirmed_count=F("confirmed_count") + 1) == 1

    def count_confirmed(self, template_id: int, instance_id: str | None) -> int:
        return Registration.objects.confirmed().for_occurrence(template_id, instance_id).count()

    def get_attendee_count(self, template: EventTemplate, instance_id: str | None) -> int:
        """Display count, served from the cache and recounted on a miss."""
        return self.attendee_count_cache.get_or_load(
            occupancy_key(template, instance_id),
            lambda _key: self.count_confirmed(template.pk, instance_id),
        )

    def register(
        self, template_id: int, instance_id: str | None, attendee: User
    ) -> RegistrationResult:
        template = self._get_template(template_id)
        instance = self.resolve_target(template, instance_id)
        key = occupancy_key(template, instance_id)
        capacity = instance.capacity

        if Registration.objects.confirmed().for_occurrence(template.pk, instance_id).filter(
            attendee=attendee
        ).exists():
            raise AlreadyRegisteredError()

        counter, _created = OccupancyCounter.objects.get_or_create(
            template=template, occupancy_key=key
        )

        try:
            with transaction.atomic():
                if not self._claim_seat(counter.pk, capacity):
                    raise CapacityExceededError()
                registration = Registration.objects.create(
                    template=template,
                    instance_id=instance_id or "",
                    attendee=attendee,
                    status=RegistrationStatus.CONFIRMED,
                )
                attendee_count = OccupancyCounter.objects.values_list(
                    "confirmed_count", flat=True
                ).get(pk=counter.pk)
        except CapacityExceededError:
            logger.info("Registration rejected, %s is at capacity (%s)", key, capacity)
            raise
        except IntegrityError as e:
            raise AlreadyRegisteredError() from e
        except OperationalError as e:
            logger.warning("Registration for %s aborted by the database: %s", key, e)
            raise TransactionConflictError() from e

        self.attendee_count_cache.invalidate(key)
        logger.info(
            "Registered attendee %s for %s (%s/%s)",
            attendee.pk,
            key,
            attendee_count,
            capacity or "unlimited",
        )
        return RegistrationResult(
            registration_id=registration.pk,
            template_id=template.pk,
            instance_id=instance_id or None,
            attendee_id=attendee.pk,
            attendee_count=attendee_count,
            capacity=capacity,
        )

    def cancel_registration(self, registration_id: int, attendee: User) -> Registration:
        try:
            with transaction.atomic():
                try:
                    registration = (
                        Registration.objects.select_for_update()
                        .select_related("template")
                        .get(pk=registration_id, attendee=attendee)
                    )
                except Registration.DoesNotExist as e:
                    raise RegistrationNotFoundError() from e

                if registration.status == RegistrationStatus.CANCELLED:
                    return registration

                registration.status = RegistrationStatus.CANCELLED
                registration.cancelled_at = timezone.now()
                registration.save(update_fields=["status", "cancelled_at", "modified"])
                OccupancyCounter.objects.filter(
                    template_id=registration.template_id,
                    occupancy_key=registration.occupancy_key,
                    confirmed_count__gt=0,
                ).update(confirmed_count=F("confirmed_count") - 1)
        except OperationalError as e:
            raise TransactionConflictError() from e

        self.attendee_count_cache.invalidate(registration.occupancy_key)
        logger.info("Cancelled registration %s for %s", registration.pk, registration.occupancy_key)
        return registration
