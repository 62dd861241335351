# Initial migration for transition events and schedule adjustments

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('medications', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='TransitionEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('previous_zone', models.CharField(max_length=64, verbose_name='Previous zone')),
                ('new_zone', models.CharField(max_length=64, verbose_name='New zone')),
                ('transition_instant', models.DateTimeField(verbose_name='Transition instant')),
                ('detection_method', models.CharField(
                    choices=[
                        ('automatic', 'Automatic'),
                        ('manual', 'Manual'),
                        ('location', 'Location')
                    ],
                    default='automatic',
                    max_length=20,
                    verbose_name='Detection method'
                )),
                ('location', models.CharField(blank=True, default='', max_length=200, verbose_name='Location')),
                ('notes', models.TextField(blank=True, default='', max_length=1000, verbose_name='Notes')),
                ('user_confirmed', models.BooleanField(default=False, verbose_name='User confirmed')),
                ('status', models.CharField(
                    choices=[
                        ('pending', 'Pending confirmation'),
                        ('confirmed', 'Confirmed'),
                        ('discarded', 'Discarded'),
                        ('superseded', 'Superseded')
                    ],
                    default='pending',
                    max_length=20,
                    verbose_name='Status'
                )),
                ('resolved_at', models.DateTimeField(blank=True, null=True, verbose_name='Resolved at')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, verbose_name='Created At')),
                ('superseded_by', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name='supersedes',
                    to='transitions.transitionevent',
                    verbose_name='Superseded by'
                )),
            ],
            options={
                'verbose_name': 'Transition event',
                'verbose_name_plural': 'Transition events',
                'db_table': 'transition_events',
                'ordering': ['-transition_instant'],
                'indexes': [
                    models.Index(fields=['-transition_instant'], name='idx_transition_instant'),
                    models.Index(fields=['status', '-transition_instant'], name='idx_transition_status_instant'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(status='pending'),
                        fields=('status',),
                        name='uniq_single_pending_transition'
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ScheduleAdjustment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('strategy', models.CharField(
                    choices=[
                        ('keep_local_time', 'Keep local time'),
                        ('keep_absolute_time', 'Keep absolute time'),
                        ('gradual_shift', 'Gradual shift'),
                        ('custom', 'Custom')
                    ],
                    max_length=30,
                    verbose_name='Strategy'
                )),
                ('step', models.PositiveSmallIntegerField(default=0, verbose_name='Step')),
                ('effective_date', models.DateField(blank=True, null=True, verbose_name='Effective date')),
                ('previous_zone', models.CharField(max_length=64, verbose_name='Previous zone')),
                ('new_zone', models.CharField(max_length=64, verbose_name='New zone')),
                ('previous_time', models.TimeField(verbose_name='Previous time')),
                ('new_time', models.TimeField(verbose_name='New time')),
                ('applied_at', models.DateTimeField(blank=True, null=True, verbose_name='Applied at')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, verbose_name='Created At')),
                ('schedule', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='adjustments',
                    to='medications.schedule',
                    verbose_name='Schedule'
                )),
                ('transition_event', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='adjustments',
                    to='transitions.transitionevent',
                    verbose_name='Transition event'
                )),
            ],
            options={
                'verbose_name': 'Schedule adjustment',
                'verbose_name_plural': 'Schedule adjustments',
                'db_table': 'schedule_adjustments',
                'ordering': ['transition_event', 'schedule', 'step'],
                'indexes': [
                    models.Index(fields=['applied_at', 'effective_date'], name='idx_adjustment_due'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        fields=('transition_event', 'schedule', 'step'),
                        name='uniq_adjustment_event_schedule_step'
                    ),
                ],
            },
        ),
    ]
