from common.types import RouteDict

from .views import (
    CalendarPreferencesViewSet,
    EventTemplateViewSet,
    PublicCalendarViewSet,
    RegistrationViewSet,
)


routes: list[RouteDict] = [
    {
        "regex": r"events",
        "viewset": EventTemplateViewSet,
        "basename": "Events",
    },
    {
        "regex": r"registrations",
        "viewset": RegistrationViewSet,
        "basename": "Registrations",
    },
    {
        "regex": r"calendar-preferences",
        "viewset": CalendarPreferencesViewSet,
        "basename": "CalendarPreferences",
    },
    {
        "regex": r"public-calendars",
        "viewset": PublicCalendarViewSet,
        "basename": "PublicCalendars",
    },
]
