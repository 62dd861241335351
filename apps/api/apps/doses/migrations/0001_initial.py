# Initial migration for dose records

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('medications', '0001_initial'),
        ('transitions', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='DoseRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('scheduled_instant', models.DateTimeField(blank=True, null=True, verbose_name='Scheduled instant')),
                ('scheduled_date', models.DateField(
                    blank=True,
                    help_text="Civil date in the schedule's reference zone",
                    null=True,
                    verbose_name='Scheduled date'
                )),
                ('actual_instant', models.DateTimeField(blank=True, null=True, verbose_name='Actual instant')),
                ('status', models.CharField(
                    choices=[
                        ('pending', 'Pending'),
                        ('taken', 'Taken'),
                        ('missed', 'Missed'),
                        ('skipped', 'Skipped')
                    ],
                    default='pending',
                    max_length=20,
                    verbose_name='Status'
                )),
                ('recorded_zone', models.CharField(max_length=64, verbose_name='Recorded zone')),
                ('notes', models.TextField(blank=True, default='', max_length=1000, verbose_name='Notes')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='Updated At')),
                ('medication', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='doses',
                    to='medications.medication',
                    verbose_name='Medication'
                )),
                ('schedule', models.ForeignKey(
                    blank=True,
                    help_text='Empty for as-needed doses',
                    null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name='doses',
                    to='medications.schedule',
                    verbose_name='Schedule'
                )),
                ('transition_event', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name='affected_doses',
                    to='transitions.transitionevent',
                    verbose_name='Transition event'
                )),
            ],
            options={
                'verbose_name': 'Dose record',
                'verbose_name_plural': 'Dose records',
                'db_table': 'dose_records',
                'ordering': ['-scheduled_instant'],
                'indexes': [
                    models.Index(fields=['status', 'scheduled_instant'], name='idx_dose_status_scheduled'),
                    models.Index(fields=['schedule', '-scheduled_instant'], name='idx_dose_schedule_scheduled'),
                    models.Index(fields=['medication', '-scheduled_instant'], name='idx_dose_med_scheduled'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        fields=('schedule', 'scheduled_date'),
                        name='uniq_dose_schedule_date'
                    ),
                    models.CheckConstraint(
                        condition=(
                            models.Q(status='taken', actual_instant__isnull=False)
                            | (~models.Q(status='taken') & models.Q(actual_instant__isnull=True))
                        ),
                        name='dose_actual_instant_iff_taken'
                    ),
                ],
            },
        ),
    ]
