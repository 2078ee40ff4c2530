from django.contrib import admin

from scheduling.models import (
    BlockedDateRange,
    Booking,
    EventTemplate,
    InstanceOverride,
    OccupancyCounter,
    RecurrencePattern,
    Registration,
    WorkingHoursConfig,
)


class InstanceOverrideInline(admin.TabularInline):
    model = InstanceOverride
    fields = ("instance_id", "is_cancelled", "capacity")
    extra = 0


class OccupancyCounterInline(admin.TabularInline):
    """Counters are only changed by the registration flow."""

    model = OccupancyCounter
    fields = ("occupancy_key", "confirmed_count")
    readonly_fields = ("occupancy_key", "confirmed_count")
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(EventTemplate)
class EventTemplateAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "organizer", "kind", "capacity", "status", "timezone", "created")
    list_filter = ("status", "timezone")
    search_fields = ("title", "organizer__email")
    raw_id_fields = ("organizer", "recurrence_pattern")
    inlines = (InstanceOverrideInline, OccupancyCounterInline)

    @admin.display(description="Kind")
    def kind(self, obj: EventTemplate) -> str:
        return obj.kind.label


@admin.register(RecurrencePattern)
class RecurrencePatternAdmin(admin.ModelAdmin):
    list_display = ("id", "weekdays", "time_of_day", "start_date", "end_date", "duration_minutes")


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    list_display = ("id", "template", "instance_id", "attendee", "status", "created")
    list_filter = ("status",)
    search_fields = ("attendee__email", "template__title", "instance_id")
    raw_id_fields = ("template", "attendee")
    readonly_fields = ("cancelled_at",)


class BlockedDateRangeInline(admin.TabularInline):
    model = BlockedDateRange
    fields = ("start_date", "end_date", "repeat_monthly")
    extra = 0


@admin.register(WorkingHoursConfig)
class WorkingHoursConfigAdmin(admin.ModelAdmin):
    list_display = ("owner", "booking_enabled", "timezone", "buffer_minutes", "allow_weekends")
    list_filter = ("booking_enabled", "allow_weekends", "custom_times")
    search_fields = ("owner__email",)
    raw_id_fields = ("owner",)
    inlines = (BlockedDateRangeInline,)


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "owner", "booker_email", "start_time", "duration_minutes", "status")
    list_filter = ("status",)
    search_fields = ("owner__email", "booker_email", "booker_name")
    raw_id_fields = ("owner",)
    exclude = ("cancellation_token",)
