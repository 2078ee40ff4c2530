import logging
from typing import Annotated, Any

from dependency_injector.wiring import Provide, inject
from vintasend.services.notification_service import (
    NotificationContextDict,
    NotificationService,
    NotificationTypes,
)

from scheduling.constants import NotificationKind
from scheduling.exceptions import SchedulingServiceNotInjectedError
from scheduling.services.dataclasses import NotificationRecipient


logger = logging.getLogger(__name__)

NOTIFICATION_TITLES = {
    NotificationKind.REGISTRATION_CONFIRMED: "Your registration is confirmed",
    NotificationKind.REGISTRATION_CANCELLED: "Your registration was cancelled",
    NotificationKind.BOOKING_CONFIRMED: "Your booking is confirmed",
    NotificationKind.BOOKING_CANCELLED: "Your booking was cancelled",
    NotificationKind.SERIES_ENDED: "An event series you joined has ended",
}


class SchedulingNotifier:
    """Sends one-off emails about registrations and bookings through vintasend."""

    @inject
    def __init__(
        self,
        notification_service: Annotated[
            "NotificationService | None", Provide["notification_service"]
        ] = None,
    ) -> None:
        if notification_service is None:
            raise SchedulingServiceNotInjectedError("notification_service was not injected")
        self.notification_service = notification_service

    def notify(
        self,
        recipient: NotificationRecipient,
        event_kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        event_kind = NotificationKind(event_kind)
        self.notification_service.create_one_off_notification(
            email_or_phone=recipient.email,
            first_name=recipient.first_name,
            last_name=recipient.last_name,
            notification_type=NotificationTypes.EMAIL.value,
            title=NOTIFICATION_TITLES[event_kind],
            body_template=f"scheduling/emails/{event_kind.value}.body.html",
            context_name="scheduling_notification_context",
            context_kwargs=NotificationContextDict({"event_kind": event_kind.value, **payload}),
            subject_template=f"scheduling/emails/{event_kind.value}.subject.txt",
        )
        logger.info("Queued %s notification for %s", event_kind.value, recipient.email)
