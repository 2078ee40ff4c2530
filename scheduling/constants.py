from django.db.models import TextChoices


class Weekday(TextChoices):
    MONDAY = "MO", "Monday"
    TUESDAY = "TU", "Tuesday"
    WEDNESDAY = "WE", "Wednesday"
    THURSDAY = "TH", "Thursday"
    FRIDAY = "FR", "Friday"
    SATURDAY = "SA", "Saturday"
    SUNDAY = "SU", "Sunday"


# Indexed like ``datetime.date.weekday()``: Monday is 0.
WEEKDAY_CODES: tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
WEEKEND_CODES = frozenset({"SA", "SU"})


class ScheduleKind(TextChoices):
    FIXED = "fixed", "Fixed Occurrence"
    RECURRING = "recurring", "Recurring Series"


class TemplateStatus(TextChoices):
    ACTIVE = "active", "Active"
    CANCELLED = "cancelled", "Cancelled"


class InstanceStatus(TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    CANCELLED = "cancelled", "Cancelled"


class RegistrationStatus(TextChoices):
    CONFIRMED = "confirmed", "Confirmed"
    CANCELLED = "cancelled", "Cancelled"


class BookingStatus(TextChoices):
    CONFIRMED = "confirmed", "Confirmed"
    CANCELLED = "cancelled", "Cancelled"


class AttendeeCountCacheBackend(TextChoices):
    MEMORY = "memory", "In-process memory"
    REDIS = "redis", "Redis"


class NotificationKind(TextChoices):
    REGISTRATION_CONFIRMED = "registration_confirmed", "Registration Confirmed"
    REGISTRATION_CANCELLED = "registration_cancelled", "Registration Cancelled"
    BOOKING_CONFIRMED = "booking_confirmed", "Booking Confirmed"
    BOOKING_CANCELLED = "booking_cancelled", "Booking Cancelled"
    SERIES_ENDED = "series_ended", "Series Ended"


DEFAULT_BUFFER_MINUTES = 15
DEFAULT_ADVANCE_BOOKING_DAYS = 30
DEFAULT_ALLOWED_DURATIONS: tuple[int, ...] = (30, 60)
DEFAULT_DAY_START = "09:00"
DEFAULT_DAY_END = "17:00"
MIN_SLOT_GRANULARITY_MINUTES = 5
