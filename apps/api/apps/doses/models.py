"""Dose models - individual dose records and their status."""
import uuid

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class DoseStatus(models.TextChoices):
    """
    Dose status choices with state machine.

    Transitions:
    - pending -> taken, missed, skipped
    - any -> pending (reset)
    """
    PENDING = 'pending', _('Pending')
    TAKEN = 'taken', _('Taken')
    MISSED = 'missed', _('Missed')
    SKIPPED = 'skipped', _('Skipped')


class DoseRecord(models.Model):
    """
    One dose: scheduled (generated from a Schedule) or as-needed.

    Business Rules:
    - actual_instant is set if and only if status == taken
    - actual_instant at most 60 minutes after now and at most 7 days
      before scheduled_instant
    - scheduled_instant never changes after creation
    - at most one dose per (schedule, scheduled_date)
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    schedule = models.ForeignKey(
        'medications.Schedule',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='doses',
        verbose_name=_('Schedule'),
        help_text=_('Empty for as-needed doses')
    )
    medication = models.ForeignKey(
        'medications.Medication',
        on_delete=models.PROTECT,
        related_name='doses',
        verbose_name=_('Medication')
    )

    scheduled_instant = models.DateTimeField(_('Scheduled instant'), null=True, blank=True)
    scheduled_date = models.DateField(
        _('Scheduled date'),
        null=True,
        blank=True,
        help_text=_("Civil date in the schedule's reference zone")
    )
    actual_instant = models.DateTimeField(_('Actual instant'), null=True, blank=True)
    status = models.CharField(
        _('Status'),
        max_length=20,
        choices=DoseStatus.choices,
        default=DoseStatus.PENDING
    )
    recorded_zone = models.CharField(_('Recorded zone'), max_length=64)
    notes = models.TextField(_('Notes'), max_length=1000, blank=True, default='')

    transition_event = models.ForeignKey(
        'transitions.TransitionEvent',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='affected_doses',
        verbose_name=_('Transition event')
    )

    created_at = models.DateTimeField(_('Created At'), default=timezone.now, editable=False)
    updated_at = models.DateTimeField(_('Updated At'), default=timezone.now)

    class Meta:
        db_table = 'dose_records'
        ordering = ['-scheduled_instant']
        verbose_name = _('Dose record')
        verbose_name_plural = _('Dose records')
        indexes = [
            models.Index(fields=['status', 'scheduled_instant'], name='idx_dose_status_scheduled'),
            models.Index(fields=['schedule', '-scheduled_instant'], name='idx_dose_schedule_scheduled'),
            models.Index(fields=['medication', '-scheduled_instant'], name='idx_dose_med_scheduled'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['schedule', 'scheduled_date'],
                name='uniq_dose_schedule_date'
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(status='taken', actual_instant__isnull=False)
                    | (~models.Q(status='taken') & models.Q(actual_instant__isnull=True))
                ),
                name='dose_actual_instant_iff_taken'
            ),
        ]

    def __str__(self):
        when = self.scheduled_instant.isoformat() if self.scheduled_instant else 'as needed'
        return f"Dose {when} - {self.get_status_display()}"

    def touch(self, now=None):
        self.updated_at = now or timezone.now()

    @property
    def is_as_needed(self):
        return self.schedule_id is None

    @property
    def delay(self):
        """actual - scheduled for taken doses, else None."""
        if self.actual_instant is None or self.scheduled_instant is None:
            return None
        return self.actual_instant - self.scheduled_instant
