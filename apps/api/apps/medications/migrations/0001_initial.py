# Initial migration for medications and schedules

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Medication',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('dosage_amount', models.DecimalField(decimal_places=3, max_digits=10, verbose_name='Dosage amount')),
                ('dosage_unit', models.CharField(max_length=50, verbose_name='Dosage unit')),
                ('instructions', models.TextField(blank=True, default='', max_length=1000, verbose_name='Instructions')),
                ('prescribed_by', models.CharField(blank=True, default='', max_length=200, verbose_name='Prescribed by')),
                ('start_date', models.DateField(default=django.utils.timezone.localdate, verbose_name='Start date')),
                ('end_date', models.DateField(blank=True, null=True, verbose_name='End date')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='Updated At')),
            ],
            options={
                'verbose_name': 'Medication',
                'verbose_name_plural': 'Medications',
                'db_table': 'medications',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['is_active', 'name'], name='idx_medication_active_name'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(dosage_amount__gt=0),
                        name='medication_dosage_positive'
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Schedule',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('kind', models.CharField(
                    choices=[
                        ('time_of_day', 'Time of day'),
                        ('interval', 'Interval'),
                        ('as_needed', 'As needed')
                    ],
                    default='time_of_day',
                    max_length=20,
                    verbose_name='Kind'
                )),
                ('reference_zone', models.CharField(
                    help_text='IANA zone identifier the civil times are expressed in',
                    max_length=64,
                    verbose_name='Reference zone'
                )),
                ('time_of_day', models.TimeField(blank=True, null=True, verbose_name='Time of day')),
                ('days_of_week', models.PositiveSmallIntegerField(
                    default=127,
                    help_text='Bitmask, bit 0 = Sunday ... bit 6 = Saturday',
                    verbose_name='Days of week'
                )),
                ('interval_minutes', models.PositiveIntegerField(blank=True, null=True, verbose_name='Interval (minutes)')),
                ('anchor_instant', models.DateTimeField(blank=True, null=True, verbose_name='Anchor instant')),
                ('is_enabled', models.BooleanField(default=True, verbose_name='Enabled')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='Updated At')),
                ('medication', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='schedules',
                    to='medications.medication',
                    verbose_name='Medication'
                )),
            ],
            options={
                'verbose_name': 'Schedule',
                'verbose_name_plural': 'Schedules',
                'db_table': 'medication_schedules',
                'ordering': ['medication', 'time_of_day'],
                'indexes': [
                    models.Index(fields=['medication', 'is_enabled'], name='idx_schedule_med_enabled'),
                    models.Index(fields=['kind', 'is_enabled'], name='idx_schedule_kind_enabled'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(days_of_week__lte=127),
                        name='schedule_days_of_week_range'
                    ),
                ],
            },
        ),
    ]
