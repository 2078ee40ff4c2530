from django.core.exceptions import ImproperlyConfigured


class SchedulingServiceNotInjectedError(ImproperlyConfigured):
    pass


class SchedulingError(Exception):
    """Base exception for scheduling errors"""

    default_message = ""
    code = "scheduling_error"

    def __init__(self, message: str | None = None):
        if message is None:
            message = self.default_message
        super().__init__(message)


class InvalidPatternError(SchedulingError):
    """Raised when a recurrence pattern fails validation"""

    code = "invalid_pattern"
    default_message = "Recurrence pattern is invalid"

    def __init__(self, message: str | None = None, violations=()):
        super().__init__(message)
        self.violations = tuple(violations)


class TemplateNotFoundError(SchedulingError):
    code = "event_not_found"
    default_message = "Event not found"


class InstanceNotFoundError(SchedulingError):
    code = "instance_not_found"
    default_message = "Event instance does not exist in this series"


class InstanceCancelledError(SchedulingError):
    code = "instance_cancelled"
    default_message = "This event instance has been cancelled"


class InvalidRegistrationError(SchedulingError):
    """Raised when the instance reference doesn't match the event kind"""

    code = "invalid_registration"
    default_message = "Invalid registration request"


class AlreadyRegisteredError(SchedulingError):
    code = "already_registered"
    default_message = "Attendee is already registered for this event"


class CapacityExceededError(SchedulingError):
    code = "capacity_exceeded"
    default_message = "Event is at full capacity"


class TransactionConflictError(SchedulingError):
    """Raised when the store aborts a registration because of contention. Safe to retry."""

    code = "transaction_conflict"
    default_message = "Registration could not be completed due to a concurrent update, please retry"


class RegistrationNotFoundError(SchedulingError):
    code = "registration_not_found"
    default_message = "Registration not found"


class BookingDisabledError(SchedulingError):
    code = "booking_disabled"
    default_message = "Booking is not enabled for this calendar"


class SlotUnavailableError(SchedulingError):
    code = "slot_unavailable"
    default_message = "This time slot is no longer available"


class BookingNotFoundError(SchedulingError):
    code = "booking_not_found"
    default_message = "Booking not found"
