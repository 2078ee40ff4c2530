import datetime
from typing import Annotated

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from dependency_injector.wiring import Provide, inject
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from scheduling.constants import NotificationKind, RegistrationStatus, TemplateStatus
from scheduling.exceptions import (
    AlreadyRegisteredError,
    BookingDisabledError,
    BookingNotFoundError,
    CapacityExceededError,
    InstanceCancelledError,
    InstanceNotFoundError,
    InvalidPatternError,
    InvalidRegistrationError,
    RegistrationNotFoundError,
    SchedulingError,
    SlotUnavailableError,
    TemplateNotFoundError,
    TransactionConflictError,
)
from scheduling.models import EventTemplate, Registration
from scheduling.permissions import IsAttendee, IsOrganizerOrReadOnly
from scheduling.recurrence_utils import parse_instance_id
from scheduling.serializers import (
    AvailabilityQuerySerializer,
    BookingCancellationSerializer,
    BookingConfirmationSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    DayAvailabilitySerializer,
    EndSeriesSerializer,
    EventInstanceSerializer,
    EventTemplateSerializer,
    InstanceCapacitySerializer,
    InstanceRangeSerializer,
    InstanceReferenceSerializer,
    RegistrationCreateSerializer,
    RegistrationResultSerializer,
    RegistrationSerializer,
    WorkingHoursConfigSerializer,
    invalid_pattern_to_validation_error,
)
from scheduling.services.availability_service import AvailabilityService
from scheduling.services.dataclasses import (
    BookingInputData,
    DayAvailability,
    NotificationRecipient,
)
from scheduling.services.notification_service import SchedulingNotifier
from scheduling.services.scheduling_service import SchedulingService
from users.models import User


ERROR_STATUS_CODES: dict[type[SchedulingError], int] = {
    InvalidPatternError: status.HTTP_400_BAD_REQUEST,
    InvalidRegistrationError: status.HTTP_400_BAD_REQUEST,
    BookingDisabledError: status.HTTP_403_FORBIDDEN,
    TemplateNotFoundError: status.HTTP_404_NOT_FOUND,
    InstanceNotFoundError: status.HTTP_404_NOT_FOUND,
    RegistrationNotFoundError: status.HTTP_404_NOT_FOUND,
    BookingNotFoundError: status.HTTP_404_NOT_FOUND,
    InstanceCancelledError: status.HTTP_409_CONFLICT,
    AlreadyRegisteredError: status.HTTP_409_CONFLICT,
    CapacityExceededError: status.HTTP_409_CONFLICT,
    TransactionConflictError: status.HTTP_409_CONFLICT,
    SlotUnavailableError: status.HTTP_409_CONFLICT,
}


def occurrence_label(template: EventTemplate, instance_id: str | None) -> str:
    """Local start of a fixed event, or the local date of a series instance."""
    if not instance_id:
        return template.start_time.astimezone(template.zone).isoformat()
    return parse_instance_id(template.pk, instance_id).isoformat()


class SchedulingErrorResponseMixin:
    """Renders ``SchedulingError`` as ``{"detail": ..., "code": ...}`` with a mapped status."""

    def handle_exception(self, exc):
        if isinstance(exc, InvalidPatternError) and exc.violations:
            exc = invalid_pattern_to_validation_error(exc)
        elif isinstance(exc, SchedulingError):
            status_code = next(
                (
                    code
                    for error_class, code in ERROR_STATUS_CODES.items()
                    if isinstance(exc, error_class)
                ),
                status.HTTP_400_BAD_REQUEST,
            )
            return Response({"detail": str(exc), "code": exc.code}, status=status_code)
        return super().handle_exception(exc)


class EventTemplateViewSet(
    SchedulingErrorResponseMixin,
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.ListModelMixin,
    viewsets.GenericViewSet,
):
    """
    ViewSet for fixed events and recurring series. Events are never deleted, organizers
    cancel them instead.
    """

    permission_classes = (IsOrganizerOrReadOnly,)
    serializer_class = EventTemplateSerializer
    queryset = EventTemplate.objects.all()
    lookup_value_converter = "int"

    def get_queryset(self):
        user = self.request.user
        queryset = super().get_queryset().with_schedule().select_related("organizer")
        if self.request.query_params.get("mine") in ("1", "true"):
            return queryset.filter(organizer=user)
        return queryset.filter(Q(status=TemplateStatus.ACTIVE) | Q(organizer=user))

    @extend_schema(
        summary="List event instances",
        description=(
            "Instances of the event whose local date falls within the range, bounded by the "
            "scheduling horizon and the maximum number of instances."
        ),
        parameters=[
            OpenApiParameter(
                name="range_start",
                type=datetime.date,
                location=OpenApiParameter.QUERY,
                description="First local date (YYYY-MM-DD). Defaults to today",
            ),
            OpenApiParameter(
                name="range_end",
                type=datetime.date,
                location=OpenApiParameter.QUERY,
                description="Last local date (YYYY-MM-DD). Defaults to the end of the horizon",
            ),
            OpenApiParameter(
                name="include_cancelled",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Include cancelled instances",
            ),
        ],
        responses={200: EventInstanceSerializer(many=True)},
    )
    @action(methods=["get"], detail=True, url_path="instances", url_name="instances")
    @inject
    def instances(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
    ):
        template = self.get_object()
        query_serializer = InstanceRangeSerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        generator = scheduling_service.instance_generator
        range_start = query_serializer.validated_data.get("range_start") or (
            timezone.now().astimezone(template.zone).date()
        )
        range_end = query_serializer.validated_data.get("range_end")
        if range_end is None:
            range_end = generator.horizon_end().astimezone(template.zone).date()
            if not template.is_recurring:
                range_end = max(range_end, template.start_time.astimezone(template.zone).date())
        instances = scheduling_service.list_instances(
            template.pk,
            range_start,
            range_end,
            include_cancelled=query_serializer.validated_data["include_cancelled"],
        )
        return Response(EventInstanceSerializer(instances, many=True).data)

    @extend_schema(
        summary="Get an event instance",
        responses={200: EventInstanceSerializer()},
    )
    @action(
        methods=["get"],
        detail=True,
        url_path="instances/<str:instance_id>",
        url_name="instance-detail",
    )
    @inject
    def instance_detail(
        self,
        request,
        pk,
        instance_id,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
    ):
        template = self.get_object()
        instance = scheduling_service.get_instance(template.pk, instance_id)
        return Response(EventInstanceSerializer(instance).data)

    @extend_schema(
        summary="Register for an event",
        description=(
            "Registers the current user. Recurring events require an instance_id, fixed "
            "events must not send one."
        ),
        request=RegistrationCreateSerializer(),
        responses={201: RegistrationResultSerializer()},
    )
    @action(
        methods=["post"],
        detail=True,
        url_path="register",
        url_name="register",
        permission_classes=(IsAuthenticated,),
    )
    @inject
    def register(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
        scheduling_notifier: Annotated[SchedulingNotifier, Provide["scheduling_notifier"]],
    ):
        template = self.get_object()
        serializer = RegistrationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        instance_id = serializer.validated_data.get("instance_id") or None

        result = scheduling_service.register(template.pk, instance_id, request.user)

        payload = {
            "event_title": template.title,
            "attendee_name": request.user.get_full_name(),
            "starts_at": occurrence_label(template, instance_id),
            "timezone": template.timezone,
            "capacity": result.capacity,
            "attendee_count": result.attendee_count,
        }
        recipient = NotificationRecipient.from_user(request.user)
        transaction.on_commit(
            lambda: scheduling_notifier.notify(
                recipient, NotificationKind.REGISTRATION_CONFIRMED, payload
            )
        )
        return Response(
            RegistrationResultSerializer(result).data, status=status.HTTP_201_CREATED
        )

    @extend_schema(
        summary="Cancel a single instance of a recurring event",
        request=InstanceReferenceSerializer(),
        responses={200: EventInstanceSerializer()},
    )
    @action(methods=["post"], detail=True, url_path="cancel-instance", url_name="cancel-instance")
    @inject
    def cancel_instance(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
    ):
        template = self.get_object()
        serializer = InstanceReferenceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        scheduling_service.cancel_instance(template, serializer.validated_data["instance_id"])
        instance = scheduling_service.get_instance(
            template.pk, serializer.validated_data["instance_id"]
        )
        return Response(EventInstanceSerializer(instance).data)

    @extend_schema(
        summary="Override the capacity of a single instance",
        description="A null capacity falls back to the event capacity.",
        request=InstanceCapacitySerializer(),
        responses={200: EventInstanceSerializer()},
    )
    @action(
        methods=["post"], detail=True, url_path="instance-capacity", url_name="instance-capacity"
    )
    @inject
    def instance_capacity(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
    ):
        template = self.get_object()
        serializer = InstanceCapacitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        instance_id = serializer.validated_data["instance_id"]
        scheduling_service.set_instance_capacity(
            template, instance_id, serializer.validated_data["capacity"]
        )
        instance = scheduling_service.get_instance(template.pk, instance_id)
        return Response(EventInstanceSerializer(instance).data)

    @extend_schema(
        summary="End a recurring series",
        description=(
            "Sets the last date of the series. Attendees registered for instances after it "
            "are notified."
        ),
        request=EndSeriesSerializer(),
        responses={200: EventTemplateSerializer()},
    )
    @action(methods=["post"], detail=True, url_path="end-series", url_name="end-series")
    @inject
    def end_series(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
        scheduling_notifier: Annotated[SchedulingNotifier, Provide["scheduling_notifier"]],
    ):
        template = self.get_object()
        serializer = EndSeriesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        orphaned = scheduling_service.end_series(
            template, serializer.validated_data.get("end_date")
        )
        ended_on = template.recurrence_pattern.end_date.isoformat()
        notifications = [
            (
                NotificationRecipient.from_user(registration.attendee),
                {
                    "event_title": template.title,
                    "attendee_name": registration.attendee.get_full_name(),
                    "starts_at": occurrence_label(template, registration.instance_id),
                    "ended_on": ended_on,
                },
            )
            for registration in orphaned
        ]

        def send_notifications():
            for recipient, payload in notifications:
                scheduling_notifier.notify(recipient, NotificationKind.SERIES_ENDED, payload)

        transaction.on_commit(send_notifications)
        return Response(self.get_serializer(template).data)

    @extend_schema(
        summary="Cancel the event", request=None, responses={200: EventTemplateSerializer()}
    )
    @action(methods=["post"], detail=True, url_path="cancel", url_name="cancel")
    @inject
    def cancel(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
    ):
        template = scheduling_service.cancel_template(self.get_object())
        return Response(self.get_serializer(template).data)


class RegistrationViewSet(
    SchedulingErrorResponseMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Registrations of the current user.
    """

    permission_classes = (IsAttendee,)
    serializer_class = RegistrationSerializer
    queryset = Registration.objects.all()
    lookup_value_converter = "int"

    def get_queryset(self):
        return (
            super()
            .get_queryset()
            .filter(attendee=self.request.user)
            .select_related("template")
            .order_by("-created")
        )

    @extend_schema(summary="Cancel a registration", request=None)
    @action(methods=["post"], detail=True, url_path="cancel", url_name="cancel")
    @inject
    def cancel(
        self,
        request,
        pk,
        scheduling_service: Annotated[SchedulingService, Provide["scheduling_service"]],
        scheduling_notifier: Annotated[SchedulingNotifier, Provide["scheduling_notifier"]],
    ):
        registration = self.get_object()
        was_confirmed = registration.status == RegistrationStatus.CONFIRMED
        registration = scheduling_service.cancel_registration(registration.pk, request.user)

        if was_confirmed:
            template = registration.template
            payload = {
                "event_title": template.title,
                "attendee_name": request.user.get_full_name(),
                "starts_at": occurrence_label(template, registration.instance_id),
                "timezone": template.timezone,
            }
            recipient = NotificationRecipient.from_user(request.user)
            transaction.on_commit(
                lambda: scheduling_notifier.notify(
                    recipient, NotificationKind.REGISTRATION_CANCELLED, payload
                )
            )
        return Response(self.get_serializer(registration).data)


class CalendarPreferencesViewSet(SchedulingErrorResponseMixin, viewsets.GenericViewSet):
    """
    Working hours and booking preferences of the current user.
    """

    permission_classes = (IsAuthenticated,)
    serializer_class = WorkingHoursConfigSerializer

    @extend_schema(
        methods=["GET"],
        summary="Get the current user's calendar preferences",
        responses={200: WorkingHoursConfigSerializer()},
    )
    @extend_schema(
        methods=["PUT", "PATCH"],
        summary="Update the current user's calendar preferences",
        description="Sending blocked_date_ranges replaces all existing ranges.",
        request=WorkingHoursConfigSerializer(),
        responses={200: WorkingHoursConfigSerializer()},
    )
    @action(methods=["get", "put", "patch"], detail=False, url_path="me", url_name="me")
    @inject
    def me(
        self,
        request,
        availability_service: Annotated[AvailabilityService, Provide["availability_service"]],
    ):
        config = availability_service.get_config(request.user.pk)
        if request.method == "GET":
            return Response(self.get_serializer(config).data)

        serializer = self.get_serializer(
            config, data=request.data, partial=request.method == "PATCH"
        )
        serializer.is_valid(raise_exception=True)
        config = serializer.save(owner=request.user)
        return Response(self.get_serializer(availability_service.get_config(config.owner_id)).data)


class PublicCalendarViewSet(SchedulingErrorResponseMixin, viewsets.GenericViewSet):
    """
    Unauthenticated booking surface of a user's calendar.
    """

    permission_classes = (AllowAny,)
    authentication_classes = ()
    queryset = User.objects.filter(is_active=True)
    serializer_class = BookingSerializer
    lookup_value_converter = "int"

    @extend_schema(
        summary="Get available booking slots",
        description=(
            "Free slots for a single date, or for up to `days` dates from start_date. Days "
            "without free slots are left out of ranged responses."
        ),
        parameters=[
            OpenApiParameter(
                name="date",
                type=datetime.date,
                location=OpenApiParameter.QUERY,
                description="Single date (YYYY-MM-DD) in the calendar owner's timezone",
            ),
            OpenApiParameter(
                name="start_date",
                type=datetime.date,
                location=OpenApiParameter.QUERY,
                description="First date of a range (YYYY-MM-DD)",
            ),
            OpenApiParameter(
                name="days",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Number of days in the range, defaults to 7",
            ),
        ],
        responses={200: DayAvailabilitySerializer(many=True)},
    )
    @action(methods=["get"], detail=True, url_path="availability", url_name="availability")
    @inject
    def availability(
        self,
        request,
        pk,
        availability_service: Annotated[AvailabilityService, Provide["availability_service"]],
    ):
        owner = self.get_object()
        query_serializer = AvailabilityQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        date = query_serializer.validated_data.get("date")
        if date:
            days = [
                DayAvailability(
                    date=date, slots=availability_service.get_availability(owner.pk, date)
                )
            ]
        else:
            days = availability_service.get_availability_range(
                owner.pk,
                query_serializer.validated_data["start_date"],
                query_serializer.validated_data["days"],
            )
        return Response(DayAvailabilitySerializer(days, many=True).data)

    @extend_schema(
        summary="Book a slot",
        request=BookingCreateSerializer(),
        responses={201: BookingConfirmationSerializer()},
    )
    @action(methods=["post"], detail=True, url_path="bookings", url_name="bookings")
    @inject
    def bookings(
        self,
        request,
        pk,
        availability_service: Annotated[AvailabilityService, Provide["availability_service"]],
        scheduling_notifier: Annotated[SchedulingNotifier, Provide["scheduling_notifier"]],
    ):
        owner = self.get_object()
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = availability_service.book_slot(
            owner, BookingInputData(**serializer.validated_data)
        )

        config = availability_service.get_preferences(owner.pk)
        payload = {
            "booker_name": booking.booker_name,
            "owner_name": owner.get_full_name(),
            "starts_at": booking.start_time.astimezone(config.zone).isoformat(),
            "timezone": config.timezone,
            "duration_minutes": booking.duration_minutes,
            "cancellation_token": booking.cancellation_token,
        }
        recipient = NotificationRecipient(
            email=booking.booker_email, first_name=booking.booker_name
        )
        transaction.on_commit(
            lambda: scheduling_notifier.notify(
                recipient, NotificationKind.BOOKING_CONFIRMED, payload
            )
        )
        return Response(
            BookingConfirmationSerializer(booking).data, status=status.HTTP_201_CREATED
        )

    @extend_schema(
        summary="Cancel a booking",
        request=BookingCancellationSerializer(),
        responses={200: BookingSerializer()},
    )
    @action(methods=["post"], detail=False, url_path="cancel-booking", url_name="cancel-booking")
    @inject
    def cancel_booking(
        self,
        request,
        availability_service: Annotated[AvailabilityService, Provide["availability_service"]],
        scheduling_notifier: Annotated[SchedulingNotifier, Provide["scheduling_notifier"]],
    ):
        serializer = BookingCancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = availability_service.cancel_booking(
            serializer.validated_data["cancellation_token"]
        )

        config = availability_service.get_preferences(booking.owner_id)
        payload = {
            "booker_name": booking.booker_name,
            "owner_name": booking.owner.get_full_name(),
            "starts_at": booking.start_time.astimezone(config.zone).isoformat(),
            "timezone": config.timezone,
        }
        recipient = NotificationRecipient(
            email=booking.booker_email, first_name=booking.booker_name
        )
        transaction.on_commit(
            lambda: scheduling_notifier.notify(
                recipient, NotificationKind.BOOKING_CANCELLED, payload
            )
        )
        return Response(BookingSerializer(booking).data)
