"""Transition models - zone-change events and schedule re-anchoring audit."""
import uuid

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class DetectionMethod(models.TextChoices):
    AUTOMATIC = 'automatic', _('Automatic')
    MANUAL = 'manual', _('Manual')
    LOCATION = 'location', _('Location')


class TransitionStatus(models.TextChoices):
    """
    Transition event resolution.

    Transitions:
    - pending -> confirmed, discarded, superseded
    - confirmed, discarded, superseded are terminal
    """
    PENDING = 'pending', _('Pending confirmation')
    CONFIRMED = 'confirmed', _('Confirmed')
    DISCARDED = 'discarded', _('Discarded')
    SUPERSEDED = 'superseded', _('Superseded')


class AdjustmentStrategy(models.TextChoices):
    KEEP_LOCAL_TIME = 'keep_local_time', _('Keep local time')
    KEEP_ABSOLUTE_TIME = 'keep_absolute_time', _('Keep absolute time')
    GRADUAL_SHIFT = 'gradual_shift', _('Gradual shift')
    CUSTOM = 'custom', _('Custom')


class TransitionEvent(models.Model):
    """
    A detected or confirmed change of the device's zone.

    Business Rules:
    - previous_zone and new_zone differ (identical rule sets count as equal)
    - transition_instant not in the future, not older than the retention horizon
    - recorded fields never change; only the resolution fields move the
      row out of pending
    - at most one pending event exists
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    previous_zone = models.CharField(_('Previous zone'), max_length=64)
    new_zone = models.CharField(_('New zone'), max_length=64)
    transition_instant = models.DateTimeField(_('Transition instant'))
    detection_method = models.CharField(
        _('Detection method'),
        max_length=20,
        choices=DetectionMethod.choices,
        default=DetectionMethod.AUTOMATIC
    )
    location = models.CharField(_('Location'), max_length=200, blank=True, default='')
    notes = models.TextField(_('Notes'), max_length=1000, blank=True, default='')

    # Resolution
    user_confirmed = models.BooleanField(_('User confirmed'), default=False)
    status = models.CharField(
        _('Status'),
        max_length=20,
        choices=TransitionStatus.choices,
        default=TransitionStatus.PENDING
    )
    superseded_by = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='supersedes',
        verbose_name=_('Superseded by')
    )
    resolved_at = models.DateTimeField(_('Resolved at'), null=True, blank=True)

    created_at = models.DateTimeField(_('Created At'), default=timezone.now, editable=False)

    class Meta:
        db_table = 'transition_events'
        ordering = ['-transition_instant']
        verbose_name = _('Transition event')
        verbose_name_plural = _('Transition events')
        indexes = [
            models.Index(fields=['-transition_instant'], name='idx_transition_instant'),
            models.Index(fields=['status', '-transition_instant'], name='idx_transition_status_instant'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['status'],
                condition=models.Q(status='pending'),
                name='uniq_single_pending_transition'
            ),
        ]

    def __str__(self):
        return f"{self.previous_zone} -> {self.new_zone} @ {self.transition_instant.isoformat()}"

    @property
    def is_pending(self):
        return self.status == TransitionStatus.PENDING

    # Derived values, evaluated at the transition instant

    @property
    def offset_change_seconds(self):
        from apps.timezones.clock import ZoneClock
        return ZoneClock().offset_delta_seconds(self.previous_zone, self.new_zone, self.transition_instant)

    @property
    def offset_change_hours(self):
        return self.offset_change_seconds / 3600

    @property
    def is_forward_change(self):
        return self.offset_change_seconds > 0

    @property
    def is_backward_change(self):
        return self.offset_change_seconds < 0

    @property
    def change_magnitude_hours(self):
        return abs(self.offset_change_hours)


class ScheduleAdjustment(models.Model):
    """
    Append-only audit row: how one schedule was re-anchored for one event.

    step is 0 for single-step strategies and 1..N for gradual shift, where
    step k takes effect on effective_date.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    transition_event = models.ForeignKey(
        TransitionEvent,
        on_delete=models.CASCADE,
        related_name='adjustments',
        verbose_name=_('Transition event')
    )
    schedule = models.ForeignKey(
        'medications.Schedule',
        on_delete=models.CASCADE,
        related_name='adjustments',
        verbose_name=_('Schedule')
    )
    strategy = models.CharField(_('Strategy'), max_length=30, choices=AdjustmentStrategy.choices)
    step = models.PositiveSmallIntegerField(_('Step'), default=0)
    effective_date = models.DateField(_('Effective date'), null=True, blank=True)

    previous_zone = models.CharField(_('Previous zone'), max_length=64)
    new_zone = models.CharField(_('New zone'), max_length=64)
    previous_time = models.TimeField(_('Previous time'))
    new_time = models.TimeField(_('New time'))

    applied_at = models.DateTimeField(_('Applied at'), null=True, blank=True)
    created_at = models.DateTimeField(_('Created At'), default=timezone.now, editable=False)

    class Meta:
        db_table = 'schedule_adjustments'
        ordering = ['transition_event', 'schedule', 'step']
        verbose_name = _('Schedule adjustment')
        verbose_name_plural = _('Schedule adjustments')
        indexes = [
            models.Index(fields=['applied_at', 'effective_date'], name='idx_adjustment_due'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['transition_event', 'schedule', 'step'],
                name='uniq_adjustment_event_schedule_step'
            ),
        ]

    def __str__(self):
        return (
            f"{self.get_strategy_display()} step {self.step}: "
            f"{self.previous_time:%H:%M} {self.previous_zone} -> {self.new_time:%H:%M} {self.new_zone}"
        )

    @property
    def is_applied(self):
        return self.applied_at is not None
