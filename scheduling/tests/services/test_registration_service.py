import datetime
import threading
from unittest.mock import patch

from django.db import OperationalError, connection
from django.utils import timezone

import pytest

from scheduling.constants import RegistrationStatus
from scheduling.exceptions import (
    AlreadyRegisteredError,
    CapacityExceededError,
    InstanceCancelledError,
    InstanceNotFoundError,
    InvalidRegistrationError,
    RegistrationNotFoundError,
    SchedulingError,
    TemplateNotFoundError,
    TransactionConflictError,
)
from scheduling.factories import SchedulingFactory
from scheduling.models import OccupancyCounter, Registration
from scheduling.recurrence_utils import InstanceGenerator, build_instance_id
from scheduling.services.registration_service import RegistrationCoordinator
from users.factories import UserFactory


EVERY_DAY = "MO,TU,WE,TH,FR,SA,SU"


def _tomorrow_instance_id(template):
    return build_instance_id(template.pk, timezone.now().date() + datetime.timedelta(days=1))


@pytest.fixture
def coordinator(attendee_count_cache):
    return RegistrationCoordinator(
        attendee_count_cache=attendee_count_cache, instance_generator=InstanceGenerator()
    )


@pytest.fixture
def series():
    return SchedulingFactory.create_recurring_template(
        organizer=UserFactory().create_user(), weekdays=EVERY_DAY, capacity=2
    )


@pytest.mark.django_db
class TestRegistrationCoordinator:
    def test_register_for_series_instance(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)

        result = coordinator.register(series.pk, instance_id, user)

        assert result.instance_id == instance_id
        assert result.attendee_count == 1
        assert result.capacity == 2
        registration = Registration.objects.get(pk=result.registration_id)
        assert registration.status == RegistrationStatus.CONFIRMED
        assert registration.instance_id == instance_id
        assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == 1

    def test_register_for_fixed_event(self, coordinator, user):
        template = SchedulingFactory.create_fixed_template(capacity=5)

        result = coordinator.register(template.pk, None, user)

        assert result.instance_id is None
        assert Registration.objects.get(pk=result.registration_id).instance_id == ""
        assert coordinator.get_attendee_count(template, None) == 1

    def test_register_for_fixed_event_beyond_the_horizon(self, coordinator, user):
        template = SchedulingFactory.create_fixed_template(
            start_time=timezone.now().replace(microsecond=0) + datetime.timedelta(days=120),
            capacity=5,
        )

        result = coordinator.register(template.pk, None, user)

        assert result.attendee_count == 1
        assert result.capacity == 5
        next_instance = coordinator.instance_generator.next_occurrence(template)
        assert next_instance.instance_id == str(template.pk)

    def test_recurring_event_requires_instance_id(self, coordinator, series, user):
        with pytest.raises(InvalidRegistrationError):
            coordinator.register(series.pk, None, user)

        assert not OccupancyCounter.objects.exists()
        assert not Registration.objects.exists()

    def test_fixed_event_rejects_instance_id(self, coordinator, user):
        template = SchedulingFactory.create_fixed_template()

        with pytest.raises(InvalidRegistrationError):
            coordinator.register(template.pk, f"{template.pk}_2026-03-02", user)

        assert not Registration.objects.exists()

    def test_unknown_template(self, coordinator, user):
        with pytest.raises(TemplateNotFoundError):
            coordinator.register(999_999, None, user)

    def test_instance_not_in_pattern(self, coordinator, user):
        template = SchedulingFactory.create_recurring_template(
            weekdays="MO", start_date=datetime.date(2026, 1, 5)
        )

        with pytest.raises(InstanceNotFoundError):
            # Tuesday
            coordinator.register(template.pk, f"{template.pk}_2026-01-06", user)

    def test_cancelled_instance(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        SchedulingFactory.create_instance_override(series, instance_id, is_cancelled=True)

        with pytest.raises(InstanceCancelledError):
            coordinator.register(series.pk, instance_id, user)

    def test_cancelled_template(self, coordinator, series, user):
        series.status = "cancelled"
        series.save()

        with pytest.raises(InstanceCancelledError):
            coordinator.register(series.pk, _tomorrow_instance_id(series), user)

    def test_capacity_exceeded(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        coordinator.register(series.pk, instance_id, user)
        coordinator.register(series.pk, instance_id, UserFactory().create_user())

        with pytest.raises(CapacityExceededError):
            coordinator.register(series.pk, instance_id, UserFactory().create_user())

        assert Registration.objects.confirmed().filter(instance_id=instance_id).count() == 2
        assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == 2

    def test_capacity_is_per_instance(self, coordinator, series, user):
        today = timezone.now().date()
        first = build_instance_id(series.pk, today + datetime.timedelta(days=1))
        second = build_instance_id(series.pk, today + datetime.timedelta(days=2))
        for _ in range(2):
            coordinator.register(series.pk, first, UserFactory().create_user())

        result = coordinator.register(series.pk, second, user)

        assert result.attendee_count == 1

    def test_instance_capacity_override(self, coordinator, series):
        instance_id = _tomorrow_instance_id(series)
        SchedulingFactory.create_instance_override(series, instance_id, capacity=1)
        coordinator.register(series.pk, instance_id, UserFactory().create_user())

        with pytest.raises(CapacityExceededError):
            coordinator.register(series.pk, instance_id, UserFactory().create_user())

    def test_zero_capacity_is_unlimited(self, coordinator):
        template = SchedulingFactory.create_fixed_template(capacity=0)

        results = [
            coordinator.register(template.pk, None, UserFactory().create_user())
            for _ in range(5)
        ]

        assert results[-1].attendee_count == 5

    def test_duplicate_registration(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        coordinator.register(series.pk, instance_id, user)

        with pytest.raises(AlreadyRegisteredError):
            coordinator.register(series.pk, instance_id, user)

        assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == 1

    def test_database_conflict_is_reported_and_rolled_back(self, coordinator, series, user):
        with (
            patch.object(
                coordinator, "_claim_seat", side_effect=OperationalError("database is locked")
            ),
            pytest.raises(TransactionConflictError),
        ):
            coordinator.register(series.pk, _tomorrow_instance_id(series), user)

        assert not Registration.objects.exists()

    def test_register_invalidates_cached_count(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        assert coordinator.get_attendee_count(series, instance_id) == 0

        coordinator.register(series.pk, instance_id, user)

        assert coordinator.get_attendee_count(series, instance_id) == 1

    def test_cancel_registration_frees_the_seat(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        result = coordinator.register(series.pk, instance_id, user)
        coordinator.register(series.pk, instance_id, UserFactory().create_user())

        registration = coordinator.cancel_registration(result.registration_id, user)

        assert registration.status == RegistrationStatus.CANCELLED
        assert registration.cancelled_at is not None
        assert coordinator.get_attendee_count(series, instance_id) == 1
        assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == 1
        coordinator.register(series.pk, instance_id, UserFactory().create_user())

    def test_cancel_registration_twice_is_a_no_op(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        result = coordinator.register(series.pk, instance_id, user)

        coordinator.cancel_registration(result.registration_id, user)
        coordinator.cancel_registration(result.registration_id, user)

        assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == 0

    def test_attendee_can_register_again_after_cancelling(self, coordinator, series, user):
        instance_id = _tomorrow_instance_id(series)
        result = coordinator.register(series.pk, instance_id, user)
        coordinator.cancel_registration(result.registration_id, user)

        again = coordinator.register(series.pk, instance_id, user)

        assert again.attendee_count == 1

    def test_cancel_someone_elses_registration(self, coordinator, series, user):
        result = coordinator.register(series.pk, _tomorrow_instance_id(series), user)

        with pytest.raises(RegistrationNotFoundError):
            coordinator.cancel_registration(result.registration_id, UserFactory().create_user())


def _register_concurrently(coordinator, template_id, instance_id, attendees):
    barrier = threading.Barrier(len(attendees))
    results, errors = [], []
    lock = threading.Lock()

    def register(attendee):
        try:
            barrier.wait()
            result = coordinator.register(template_id, instance_id, attendee)
            with lock:
                results.append(result)
        except SchedulingError as e:
            with lock:
                errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=register, args=(attendee,)) for attendee in attendees]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors


@pytest.mark.django_db(transaction=True)
def test_concurrent_registrations_for_the_last_seat(coordinator):
    template = SchedulingFactory.create_recurring_template(weekdays=EVERY_DAY, capacity=1)
    instance_id = _tomorrow_instance_id(template)
    attendees = [UserFactory().create_user() for _ in range(2)]

    results, errors = _register_concurrently(coordinator, template.pk, instance_id, attendees)

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], CapacityExceededError)
    assert Registration.objects.confirmed().filter(instance_id=instance_id).count() == 1
    assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == 1


@pytest.mark.django_db(transaction=True)
def test_concurrent_registrations_never_overbook(coordinator):
    template = SchedulingFactory.create_recurring_template(weekdays=EVERY_DAY, capacity=3)
    instance_id = _tomorrow_instance_id(template)
    attendees = [UserFactory().create_user() for _ in range(6)]

    results, errors = _register_concurrently(coordinator, template.pk, instance_id, attendees)

    confirmed = Registration.objects.confirmed().filter(instance_id=instance_id).count()
    assert len(results) == confirmed <= 3
    assert len(results) + len(errors) == 6
    assert all(isinstance(e, CapacityExceededError | TransactionConflictError) for e in errors)
    assert OccupancyCounter.objects.get(occupancy_key=instance_id).confirmed_count == confirmed
