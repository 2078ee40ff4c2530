from django.db import migrations, models

import scheduling.models


class Migration(migrations.Migration):
    dependencies = [
        ("scheduling", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="workinghoursconfig",
            name="custom_times",
            field=models.BooleanField(
                default=False,
                help_text="Use per-day hours and specific slots instead of the default time range",
            ),
        ),
        migrations.AddField(
            model_name="workinghoursconfig",
            name="default_time_range",
            field=models.JSONField(
                default=scheduling.models.default_time_range,
                help_text='{"start": "HH:MM", "end": "HH:MM"}',
            ),
        ),
        migrations.AlterField(
            model_name="workinghoursconfig",
            name="working_hours",
            field=models.JSONField(
                default=scheduling.models.default_working_hours,
                help_text=(
                    'Per weekday code: {"enabled": bool, "start": "HH:MM", "end": "HH:MM", '
                    '"specific_slots": ["HH:MM", ...]}'
                ),
            ),
        ),
    ]
