from dependency_injector import containers, providers
from vintasend.services.notification_service import NotificationService
from vintasend_django.services.notification_adapters.django_email import (
    DjangoEmailNotificationAdapter,
)
from vintasend_django.services.notification_backends.django_db_notification_backend import (
    DjangoDbNotificationBackend,
)
from vintasend_django.services.notification_template_renderers.django_templated_email_renderer import (
    DjangoTemplatedEmailRenderer,
)

from common.redis import get_redis_connection
from scheduling.recurrence_utils import InstanceGenerator
from scheduling.services.attendee_count_cache import (
    InMemoryAttendeeCountCache,
    RedisAttendeeCountCache,
)
from scheduling.services.availability_service import AvailabilityService
from scheduling.services.notification_service import SchedulingNotifier
from scheduling.services.registration_service import RegistrationCoordinator
from scheduling.services.scheduling_service import SchedulingService


class AppContainer(containers.DeclarativeContainer):
    config = providers.Configuration()

    notification_service = providers.Singleton(
        NotificationService[
            DjangoEmailNotificationAdapter[
                DjangoDbNotificationBackend, DjangoTemplatedEmailRenderer
            ],
            DjangoDbNotificationBackend,
        ],
        notification_adapters=[
            DjangoEmailNotificationAdapter(
                DjangoTemplatedEmailRenderer(),
                DjangoDbNotificationBackend(),
            ),
        ],
        notification_backend=DjangoDbNotificationBackend(),
    )

    scheduling_notifier = providers.Factory(
        SchedulingNotifier,
        notification_service=notification_service,
    )

    # One cache per process, shared by every request.
    attendee_count_cache = providers.Selector(
        config.ATTENDEE_COUNT_CACHE_BACKEND,
        memory=providers.Singleton(
            InMemoryAttendeeCountCache,
            ttl_seconds=config.ATTENDEE_COUNT_CACHE_TTL_SECONDS,
        ),
        redis=providers.Singleton(
            RedisAttendeeCountCache,
            redis=providers.Callable(get_redis_connection),
            ttl_seconds=config.ATTENDEE_COUNT_CACHE_TTL_SECONDS,
        ),
    )

    instance_generator = providers.Factory(
        InstanceGenerator,
        max_instances=config.SCHEDULING_MAX_INSTANCES,
        horizon_days=config.SCHEDULING_HORIZON_DAYS,
    )

    registration_coordinator = providers.Factory(
        RegistrationCoordinator,
        attendee_count_cache=attendee_count_cache,
        instance_generator=instance_generator,
    )

    scheduling_service = providers.Factory(
        SchedulingService,
        registration_coordinator=registration_coordinator,
        instance_generator=instance_generator,
    )

    availability_service = providers.Factory(
        AvailabilityService,
        instance_generator=instance_generator,
    )


container: AppContainer | None = None  # set during app startup
