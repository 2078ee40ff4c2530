from typing import Annotated

from dependency_injector.wiring import Provide, inject
from rest_framework import serializers

from scheduling.constants import WEEKDAY_CODES, Weekday
from scheduling.exceptions import InvalidPatternError, SchedulingServiceNotInjectedError
from scheduling.models import (
    BlockedDateRange,
    Booking,
    EventTemplate,
    RecurrencePattern,
    Registration,
    WorkingHoursConfig,
)
from scheduling.recurrence_utils import describe_pattern, is_valid_timezone
from scheduling.services.availability_service import AvailabilityService
from scheduling.services.dataclasses import (
    BlockedDateRangeData,
    EventTemplateInputData,
    RecurrencePatternData,
)
from scheduling.services.scheduling_service import SchedulingService


HHMM_REGEX = r"^([01]\d|2[0-3]):[0-5]\d$"


def invalid_pattern_to_validation_error(
    error: InvalidPatternError, nested_fields: frozenset[str] = frozenset()
) -> serializers.ValidationError:
    """Maps violations to DRF field errors, nesting pattern fields under recurrence_pattern."""
    errors: dict = {}
    for violation in error.violations:
        if violation.field in nested_fields:
            errors.setdefault("recurrence_pattern", {}).setdefault(violation.field, []).append(
                violation.message
            )
        else:
            errors.setdefault(violation.field, []).append(violation.message)
    return serializers.ValidationError(errors or {"non_field_errors": [str(error)]})


class RecurrencePatternSerializer(serializers.ModelSerializer):
    weekdays = serializers.ListField(
        child=serializers.ChoiceField(choices=Weekday.choices),
        source="weekday_list",
        allow_empty=True,
        help_text="Weekday codes the event happens on (e.g., ['MO', 'WE'])",
    )

    class Meta:
        model = RecurrencePattern
        fields = ("weekdays", "time_of_day", "start_date", "end_date", "duration_minutes")
        extra_kwargs = {"end_date": {"required": False, "allow_null": True}}

    @staticmethod
    def to_data(validated_data: dict, timezone: str) -> RecurrencePatternData:
        return RecurrencePatternData(
            weekdays=frozenset(validated_data.get("weekday_list", ())),
            time_of_day=validated_data["time_of_day"],
            start_date=validated_data["start_date"],
            end_date=validated_data.get("end_date"),
            duration_minutes=validated_data["duration_minutes"],
            timezone=timezone,
        )


PATTERN_FIELDS = frozenset(
    {"weekdays", "time_of_day", "start_date", "end_date", "duration_minutes"}
)


class EventTemplateSerializer(serializers.ModelSerializer):
    recurrence_pattern = RecurrencePatternSerializer(required=False, allow_null=True)
    kind = serializers.CharField(read_only=True)
    schedule_description = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = EventTemplate
        fields = (
            "id",
            "organizer",
            "title",
            "description",
            "timezone",
            "capacity",
            "status",
            "kind",
            "start_time",
            "end_time",
            "recurrence_pattern",
            "schedule_description",
            "created",
            "modified",
        )
        read_only_fields = ("id", "organizer", "status", "created", "modified")

    @inject
    def __init__(
        self,
        *args,
        scheduling_service: Annotated[
            "SchedulingService | None", Provide["scheduling_service"]
        ] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.scheduling_service = scheduling_service

    def get_schedule_description(self, obj: EventTemplate) -> str | None:
        if not obj.is_recurring:
            return None
        return describe_pattern(obj.recurrence_pattern.to_data(obj.timezone))

    def validate_timezone(self, value: str) -> str:
        if not is_valid_timezone(value):
            raise serializers.ValidationError(f"Invalid IANA timezone: {value}")
        return value

    def validate(self, attrs):
        if self.instance is None and not attrs.get("recurrence_pattern"):
            if not attrs.get("start_time") or not attrs.get("end_time"):
                raise serializers.ValidationError(
                    "Provide either start_time and end_time or a recurrence_pattern."
                )
        if attrs.get("recurrence_pattern") and (attrs.get("start_time") or attrs.get("end_time")):
            raise serializers.ValidationError(
                "Recurring events can't have fixed start and end times."
            )
        if self.instance is not None and not self.instance.is_recurring:
            if attrs.get("recurrence_pattern"):
                raise serializers.ValidationError("A fixed event can't become recurring.")
            start_time = attrs.get("start_time", self.instance.start_time)
            end_time = attrs.get("end_time", self.instance.end_time)
            if end_time <= start_time:
                raise serializers.ValidationError(
                    {"end_time": "End time must be after start time."}
                )
        return attrs

    def _get_service(self) -> SchedulingService:
        if self.scheduling_service is None:
            raise SchedulingServiceNotInjectedError("scheduling_service was not injected")
        return self.scheduling_service

    def create(self, validated_data):
        pattern_data = validated_data.pop("recurrence_pattern", None)
        timezone = validated_data.get("timezone", "UTC")
        try:
            return self._get_service().create_template(
                organizer=self.context["request"].user,
                data=EventTemplateInputData(
                    title=validated_data["title"],
                    description=validated_data.get("description", ""),
                    timezone=timezone,
                    capacity=validated_data.get("capacity", 0),
                    start_time=validated_data.get("start_time"),
                    end_time=validated_data.get("end_time"),
                    pattern=(
                        RecurrencePatternSerializer.to_data(pattern_data, timezone)
                        if pattern_data
                        else None
                    ),
                ),
            )
        except InvalidPatternError as e:
            raise invalid_pattern_to_validation_error(e, PATTERN_FIELDS) from e

    def update(self, instance, validated_data):
        pattern_data = validated_data.pop("recurrence_pattern", None)
        if instance.is_recurring:
            validated_data.pop("start_time", None)
            validated_data.pop("end_time", None)
        instance = super().update(instance, validated_data)
        if pattern_data:
            # Partial updates only send the changed pattern fields.
            current = instance.recurrence_pattern
            pattern_data = {
                "weekday_list": current.weekday_list,
                "time_of_day": current.time_of_day,
                "start_date": current.start_date,
                "end_date": current.end_date,
                "duration_minutes": current.duration_minutes,
                **pattern_data,
            }
            try:
                instance = self._get_service().update_pattern(
                    instance, RecurrencePatternSerializer.to_data(pattern_data, instance.timezone)
                )
            except InvalidPatternError as e:
                raise invalid_pattern_to_validation_error(e, PATTERN_FIELDS) from e
        return instance


class EventInstanceSerializer(serializers.Serializer):
    """Serializes an ``EventInstanceWithCount``. Times are in the organizer's timezone."""

    instance_id = serializers.CharField(source="instance.instance_id")
    template_id = serializers.IntegerField(source="instance.template_id")
    start_time = serializers.SerializerMethodField()
    end_time = serializers.SerializerMethodField()
    timezone = serializers.CharField(source="instance.timezone")
    status = serializers.CharField(source="instance.status")
    capacity = serializers.IntegerField(source="instance.capacity")
    attendee_count = serializers.IntegerField()
    spots_remaining = serializers.IntegerField(allow_null=True)

    def get_start_time(self, obj) -> str:
        return obj.instance.start_time.isoformat()

    def get_end_time(self, obj) -> str:
        return obj.instance.end_time.isoformat()


class InstanceReferenceSerializer(serializers.Serializer):
    instance_id = serializers.CharField()


class InstanceCapacitySerializer(InstanceReferenceSerializer):
    capacity = serializers.IntegerField(min_value=0, allow_null=True)


class EndSeriesSerializer(serializers.Serializer):
    end_date = serializers.DateField(required=False)


class RegistrationCreateSerializer(serializers.Serializer):
    instance_id = serializers.CharField(
        required=False,
        allow_blank=True,
        allow_null=True,
        help_text="Required for recurring events, must be omitted for fixed events",
    )


class RegistrationResultSerializer(serializers.Serializer):
    registration_id = serializers.IntegerField()
    template_id = serializers.IntegerField()
    instance_id = serializers.CharField(allow_null=True)
    attendee_count = serializers.IntegerField()
    capacity = serializers.IntegerField()


class RegistrationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Registration
        fields = ("id", "template", "instance_id", "status", "cancelled_at", "created")
        read_only_fields = fields


class TimeRangeSerializer(serializers.Serializer):
    start = serializers.RegexField(HHMM_REGEX, help_text="HH:MM")
    end = serializers.RegexField(HHMM_REGEX, help_text="HH:MM")

    def validate(self, attrs):
        if attrs.get("start", "") >= attrs.get("end", ""):
            raise serializers.ValidationError("Start time must be before end time.")
        return attrs


class DayWorkingHoursSerializer(serializers.Serializer):
    enabled = serializers.BooleanField()
    start = serializers.RegexField(HHMM_REGEX, help_text="HH:MM")
    end = serializers.RegexField(HHMM_REGEX, help_text="HH:MM")
    specific_slots = serializers.ListField(
        child=serializers.RegexField(HHMM_REGEX),
        required=False,
        help_text="Exact HH:MM start times offered when custom times are on",
    )

    def validate(self, attrs):
        if attrs.get("enabled") and attrs.get("start", "") >= attrs.get("end", ""):
            raise serializers.ValidationError("Start time must be before end time.")
        if "specific_slots" in attrs:
            attrs["specific_slots"] = sorted(set(attrs["specific_slots"]))
        return attrs


class BlockedDateRangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = BlockedDateRange
        fields = ("start_date", "end_date", "repeat_monthly")

    def validate(self, attrs):
        start_date, end_date = attrs.get("start_date"), attrs.get("end_date")
        if start_date is None or end_date is None:
            raise serializers.ValidationError("Both start_date and end_date are required.")
        if not attrs.get("repeat_monthly") and end_date < start_date:
            raise serializers.ValidationError("End date must be on or after the start date.")
        return attrs


class WorkingHoursConfigSerializer(serializers.ModelSerializer):
    working_hours = serializers.DictField(child=DayWorkingHoursSerializer())
    allowed_durations = serializers.ListField(
        child=serializers.IntegerField(min_value=1), allow_empty=False
    )
    blocked_date_ranges = BlockedDateRangeSerializer(
        many=True, required=False, source="blocked_date_range_list"
    )
    default_time_range = TimeRangeSerializer(required=False)

    class Meta:
        model = WorkingHoursConfig
        fields = (
            "timezone",
            "booking_enabled",
            "working_hours",
            "buffer_minutes",
            "allowed_durations",
            "allow_weekends",
            "advance_booking_days",
            "blocked_date_ranges",
            "custom_times",
            "default_time_range",
        )

    @inject
    def __init__(
        self,
        *args,
        availability_service: Annotated[
            "AvailabilityService | None", Provide["availability_service"]
        ] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.availability_service = availability_service

    def validate_working_hours(self, value: dict) -> dict:
        unknown = sorted(set(value) - set(WEEKDAY_CODES))
        if unknown:
            raise serializers.ValidationError(f"Unknown weekday codes: {', '.join(unknown)}")
        return value

    def validate_timezone(self, value: str) -> str:
        if not is_valid_timezone(value):
            raise serializers.ValidationError(f"Invalid IANA timezone: {value}")
        return value

    def save(self, **kwargs):
        if self.availability_service is None:
            raise SchedulingServiceNotInjectedError("availability_service was not injected")

        validated_data = {**self.validated_data, **kwargs}
        blocked_date_ranges = validated_data.pop("blocked_date_range_list", None)
        owner = validated_data.pop("owner")
        self.instance = self.availability_service.update_preferences(
            owner.pk,
            blocked_date_ranges=(
                [BlockedDateRangeData(**blocked) for blocked in blocked_date_ranges]
                if blocked_date_ranges is not None
                else None
            ),
            **validated_data,
        )
        return self.instance


class AvailableSlotSerializer(serializers.Serializer):
    start_time = serializers.SerializerMethodField()
    time = serializers.CharField(source="local_time")
    durations = serializers.ListField(child=serializers.IntegerField())

    def get_start_time(self, obj) -> str:
        return obj.start_time.isoformat()


class DayAvailabilitySerializer(serializers.Serializer):
    date = serializers.DateField()
    slots = AvailableSlotSerializer(many=True)


class BookingCreateSerializer(serializers.Serializer):
    start_time = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(min_value=1)
    booker_name = serializers.CharField(max_length=255)
    booker_email = serializers.EmailField()
    message = serializers.CharField(required=False, allow_blank=True, default="")


class BookingSerializer(serializers.ModelSerializer):
    class Meta:
        model = Booking
        fields = (
            "id",
            "start_time",
            "end_time",
            "duration_minutes",
            "booker_name",
            "booker_email",
            "message",
            "status",
        )
        read_only_fields = fields


class BookingConfirmationSerializer(BookingSerializer):
    class Meta(BookingSerializer.Meta):
        fields = (*BookingSerializer.Meta.fields, "cancellation_token")
        read_only_fields = fields


class BookingCancellationSerializer(serializers.Serializer):
    cancellation_token = serializers.CharField()


class InstanceRangeSerializer(serializers.Serializer):
    range_start = serializers.DateField(required=False)
    range_end = serializers.DateField(required=False)
    include_cancelled = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        range_start, range_end = attrs.get("range_start"), attrs.get("range_end")
        if range_start and range_end and range_end < range_start:
            raise serializers.ValidationError("range_end must be on or after range_start.")
        return attrs


class AvailabilityQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    start_date = serializers.DateField(required=False)
    days = serializers.IntegerField(required=False, min_value=1, max_value=366, default=7)

    def validate(self, attrs):
        if not attrs.get("date") and not attrs.get("start_date"):
            raise serializers.ValidationError("Provide either date or start_date.")
        return attrs
