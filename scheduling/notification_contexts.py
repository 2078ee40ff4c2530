from typing import Any

from vintasend.exceptions import NotificationContextGenerationError
from vintasend.services.notification_service import register_context

from scheduling.constants import NotificationKind


def build_scheduling_context(event_kind: str, **payload: Any) -> dict[str, Any]:
    if event_kind not in NotificationKind.values:
        raise NotificationContextGenerationError(f"Unknown notification kind: {event_kind}")

    return {"event_kind": event_kind, **payload}


@register_context("scheduling_notification_context")
def scheduling_notification_context(event_kind: str, **payload: Any) -> dict[str, Any]:
    """
    Provides the context for registration and booking notifications. The payload is
    built by the API layer from already committed data.
    """
    return build_scheduling_context(event_kind, **payload)
