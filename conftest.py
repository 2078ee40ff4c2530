import pytest
from rest_framework.test import APIClient


@pytest.fixture
def user_password():
    from users.factories import DEFAULT_TEST_USER_PASSWORD

    return DEFAULT_TEST_USER_PASSWORD


@pytest.fixture
def user(user_password):
    from users.factories import UserFactory

    return UserFactory().create_user(first_name="Ada", last_name="Lovelace")


@pytest.fixture
def other_user():
    from users.factories import UserFactory

    return UserFactory().create_user(first_name="Grace", last_name="Hopper")


@pytest.fixture
def auth_client(user, user_password):
    client = APIClient()
    client.login(email=user.email, password=user_password)
    return client


@pytest.fixture
def other_auth_client(other_user, user_password):
    client = APIClient()
    client.login(email=other_user.email, password=user_password)
    return client


@pytest.fixture
def anonymous_client():
    client = APIClient()
    return client


@pytest.fixture
def di_container():
    """Fixture to create a DI container."""
    from di_core.containers import container

    return container


@pytest.fixture(autouse=True)
def attendee_count_cache(di_container):
    """A fresh in-memory attendee count cache per test."""
    from scheduling.services.attendee_count_cache import InMemoryAttendeeCountCache

    cache = InMemoryAttendeeCountCache()
    with di_container.attendee_count_cache.override(cache):
        yield cache


@pytest.fixture
def scheduling_notifier(di_container):
    from unittest.mock import MagicMock

    notifier = MagicMock()
    with di_container.scheduling_notifier.override(notifier):
        yield notifier
