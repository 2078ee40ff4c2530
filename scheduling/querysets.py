import datetime

from django.db import models

from scheduling.constants import BookingStatus, RegistrationStatus, TemplateStatus


class EventTemplateQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status=TemplateStatus.ACTIVE)

    def recurring(self):
        return self.filter(recurrence_pattern__isnull=False)

    def fixed(self):
        return self.filter(recurrence_pattern__isnull=True)

    def with_schedule(self):
        return self.select_related("recurrence_pattern").prefetch_related("instance_overrides")


class RegistrationQuerySet(models.QuerySet):
    def confirmed(self):
        return self.filter(status=RegistrationStatus.CONFIRMED)

    def for_occurrence(self, template_id: int, instance_id: str | None):
        return self.filter(template_id=template_id, instance_id=instance_id or "")


class BookingQuerySet(models.QuerySet):
    def confirmed(self):
        return self.filter(status=BookingStatus.CONFIRMED)

    def overlapping(self, start_time: datetime.datetime, end_time: datetime.datetime):
        """Bookings whose [start, end) interval intersects the given one."""
        return self.filter(start_time__lt=end_time, end_time__gt=start_time)
