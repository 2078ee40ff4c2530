import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.conf import settings
from django.db import migrations, models

import common.models
import scheduling.models


def base_fields():
    return [
        (
            "id",
            models.BigAutoField(
                auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
            ),
        ),
        (
            "created",
            model_utils.fields.AutoCreatedField(
                db_index=True,
                default=django.utils.timezone.now,
                editable=False,
                verbose_name="created",
            ),
        ),
        (
            "modified",
            model_utils.fields.AutoLastModifiedField(
                db_index=True,
                default=django.utils.timezone.now,
                editable=False,
                verbose_name="modified",
            ),
        ),
        ("meta", models.JSONField(blank=True, default=dict, verbose_name="meta")),
    ]


def timezone_field():
    return (
        "timezone",
        models.CharField(
            default="UTC",
            help_text="IANA timezone identifier (e.g., 'Africa/Johannesburg')",
            max_length=64,
            validators=[common.models.validate_iana_timezone],
        ),
    )


STATUS_CHOICES = [("confirmed", "Confirmed"), ("cancelled", "Cancelled")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="RecurrencePattern",
            fields=[
                *base_fields(),
                (
                    "weekdays",
                    models.CharField(
                        help_text="Comma-separated list of weekdays (e.g., 'MO,WE,FR')",
                        max_length=20,
                    ),
                ),
                ("time_of_day", models.TimeField()),
                ("start_date", models.DateField()),
                (
                    "end_date",
                    models.DateField(
                        blank=True,
                        help_text="Last date the series may occur on. Empty means open-ended",
                        null=True,
                    ),
                ),
                ("duration_minutes", models.PositiveIntegerField()),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="EventTemplate",
            fields=[
                *base_fields(),
                timezone_field(),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                (
                    "capacity",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Maximum confirmed registrations per occurrence. 0 means unlimited",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("cancelled", "Cancelled")],
                        default="active",
                        max_length=20,
                    ),
                ),
                ("start_time", models.DateTimeField(blank=True, null=True)),
                ("end_time", models.DateTimeField(blank=True, null=True)),
                (
                    "organizer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="event_templates",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "recurrence_pattern",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="template",
                        to="scheduling.recurrencepattern",
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="InstanceOverride",
            fields=[
                *base_fields(),
                ("instance_id", models.CharField(max_length=64)),
                ("is_cancelled", models.BooleanField(default=False)),
                (
                    "capacity",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Replaces the template capacity for this occurrence",
                        null=True,
                    ),
                ),
                (
                    "template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="instance_overrides",
                        to="scheduling.eventtemplate",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("template", "instance_id"), name="unique_instance_override"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OccupancyCounter",
            fields=[
                *base_fields(),
                ("occupancy_key", models.CharField(max_length=64)),
                ("confirmed_count", models.PositiveIntegerField(default=0)),
                (
                    "template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="occupancy_counters",
                        to="scheduling.eventtemplate",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("template", "occupancy_key"), name="unique_occupancy_counter"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Registration",
            fields=[
                *base_fields(),
                (
                    "instance_id",
                    models.CharField(blank=True, help_text="Empty for fixed events", max_length=64),
                ),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="confirmed", max_length=20),
                ),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "attendee",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="event_registrations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrations",
                        to="scheduling.eventtemplate",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "confirmed")),
                        fields=("template", "instance_id", "attendee"),
                        name="unique_confirmed_registration",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="WorkingHoursConfig",
            fields=[
                *base_fields(),
                timezone_field(),
                ("booking_enabled", models.BooleanField(default=True)),
                (
                    "working_hours",
                    models.JSONField(
                        default=scheduling.models.default_working_hours,
                        help_text='Per weekday code: {"enabled": bool, "start": "HH:MM", "end": "HH:MM"}',
                    ),
                ),
                ("buffer_minutes", models.PositiveIntegerField(default=15)),
                (
                    "allowed_durations",
                    models.JSONField(default=scheduling.models.default_allowed_durations),
                ),
                ("allow_weekends", models.BooleanField(default=False)),
                ("advance_booking_days", models.PositiveIntegerField(default=30)),
                (
                    "owner",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="working_hours_config",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="BlockedDateRange",
            fields=[
                *base_fields(),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                (
                    "repeat_monthly",
                    models.BooleanField(
                        default=False, help_text="Block the same days of month every month"
                    ),
                ),
                (
                    "config",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="blocked_date_ranges",
                        to="scheduling.workinghoursconfig",
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="Booking",
            fields=[
                *base_fields(),
                ("start_time", models.DateTimeField()),
                ("end_time", models.DateTimeField()),
                ("duration_minutes", models.PositiveIntegerField()),
                ("booker_name", models.CharField(max_length=255)),
                ("booker_email", models.EmailField(max_length=254)),
                ("message", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="confirmed", max_length=20),
                ),
                ("cancellation_token", models.CharField(max_length=64, unique=True)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
    ]
