"""
TransitionManager - zone-change detection and schedule re-anchoring.

Flow:
1. The host reports a zone change (zone_changed signal, celery task or API).
2. handle_zone_change() records a pending TransitionEvent. Only one pending
   candidate exists at a time: a newer detection supersedes it.
3. The user confirms (or discards) the candidate.
4. propose_adjustments() computes ScheduleAdjustment proposals for a
   strategy; apply_adjustments() commits them in one atomic batch.

Strategies:
- keep_local_time: zone becomes the new zone, civil time unchanged
- keep_absolute_time: zone becomes the new zone, civil time recomputed so
  the next occurrence instant is unchanged
- gradual_shift: N daily steps from the keep-absolute time to the
  keep-local time (shortest direction around the clock, whole minutes)
- custom: caller-supplied civil times
"""
import datetime

from django.db.models import Q

from apps.core.choices import parse_choice
from apps.core.conf import tracker_setting
from apps.core.exceptions import (
    BusinessRuleViolation,
    EmptyField,
    InvalidDate,
    InvalidRange,
    InvalidRelationship,
)
from apps.core.observability import get_sanitized_logger, metrics
from apps.core.observability.events import (
    log_consistency_checkpoint,
    log_schedule_reanchored,
    log_transition_recorded,
)
from apps.core.reminders import get_reminder_scheduler, plan_reminders, sync_reminders
from apps.core.store import deleting, fetching, saving
from apps.doses.models import DoseRecord
from apps.medications.engine import ScheduleEngine
from apps.medications.models import Schedule, ScheduleKind
from apps.timezones.clock import ZoneClock
from apps.transitions.models import (
    AdjustmentStrategy,
    DetectionMethod,
    ScheduleAdjustment,
    TransitionEvent,
    TransitionStatus,
)
from apps.transitions.signals import schedules_reanchored, transition_detected, transition_resolved

logger = get_sanitized_logger(__name__)

MINUTES_PER_DAY = 24 * 60
MAX_LOCATION_LENGTH = 200
MAX_NOTES_LENGTH = 1000


def _minutes(value):
    return value.hour * 60 + value.minute


def _time_from_minutes(total):
    total %= MINUTES_PER_DAY
    return datetime.time(total // 60, total % 60)


def interpolate_times(start, end, steps):
    """
    ``steps`` civil times moving linearly from ``start`` to ``end``.

    Takes the shortest direction around the clock (at most 12 hours); the
    last element equals ``end``.
    """
    a = _minutes(start)
    delta = (_minutes(end) - a + MINUTES_PER_DAY // 2) % MINUTES_PER_DAY - MINUTES_PER_DAY // 2
    return [_time_from_minutes(a + round(delta * k / steps)) for k in range(1, steps + 1)]


class TransitionManager:
    """
    Zone-change service.

    Args:
        clock: ZoneClock
        engine: ScheduleEngine
        reminders: optional ReminderScheduler; re-anchored schedules get
            their reminder window cancelled and re-planned
        gradual_steps: default number of gradual-shift steps
    """

    def __init__(self, clock, engine, reminders=None, gradual_steps=None):
        self.clock = clock
        self.engine = engine
        self.reminders = reminders
        self.gradual_steps = gradual_steps or tracker_setting('GRADUAL_SHIFT_STEPS')

    # ------------------------------------------------------------------
    # Detection & recording
    # ------------------------------------------------------------------

    def detect(self, last_known_zone, current_zone, detection_method=DetectionMethod.AUTOMATIC,
               at=None, location='', notes=''):
        """
        Build an unsaved candidate event, or None when both identifiers
        denote the same rules (including the same identifier twice).
        """
        self.clock.canonical_zone(last_known_zone, field='previous_zone')
        self.clock.canonical_zone(current_zone, field='new_zone')
        method = parse_choice(DetectionMethod, detection_method, 'detection_method')

        if self.clock.zones_equivalent(last_known_zone, current_zone):
            metrics.transitions_detected_total.labels(detection_method=method, result='equivalent').inc()
            return None

        return TransitionEvent(
            previous_zone=last_known_zone,
            new_zone=current_zone,
            transition_instant=at or self.clock.now(),
            detection_method=method,
            location=location or '',
            notes=notes or '',
            status=TransitionStatus.PENDING,
        )

    def validate_event(self, event, now=None):
        """
        Raises:
            UnknownZone: zone outside the catalog
            BusinessRuleViolation: zones equal or rule-equivalent
            EmptyField / InvalidDate: missing, future or expired instant
            InvalidRange / EmptyField: location or notes
        """
        now = now or self.clock.now()

        self.clock.canonical_zone(event.previous_zone, field='previous_zone')
        self.clock.canonical_zone(event.new_zone, field='new_zone')
        if event.previous_zone == event.new_zone:
            raise BusinessRuleViolation('previous and new zone are the same', field='new_zone')
        if self.clock.zones_equivalent(event.previous_zone, event.new_zone):
            raise BusinessRuleViolation(
                'previous and new zone follow identical time rules', field='new_zone'
            )

        parse_choice(DetectionMethod, event.detection_method, 'detection_method')

        if event.transition_instant is None:
            raise EmptyField('transition_instant')
        if event.transition_instant > now:
            raise InvalidDate('transition_instant', 'cannot be in the future')
        retention = datetime.timedelta(days=tracker_setting('TRANSITION_RETENTION_DAYS'))
        if event.transition_instant < now - retention:
            raise InvalidDate('transition_instant', 'older than the retention horizon')

        if event.location:
            if not event.location.strip():
                raise EmptyField('location')
            if len(event.location) > MAX_LOCATION_LENGTH:
                raise InvalidRange('location', min_value=1, max_value=MAX_LOCATION_LENGTH)
        if event.notes and len(event.notes) > MAX_NOTES_LENGTH:
            raise InvalidRange('notes', max_value=MAX_NOTES_LENGTH)

    def record_transition(self, event):
        """
        Validate and persist an event.

        A user-confirmed event is stored as confirmed; otherwise it becomes
        the pending candidate, which requires that none exists yet.
        """
        now = self.clock.now()
        self.validate_event(event, now=now)

        if event.user_confirmed:
            event.status = TransitionStatus.CONFIRMED
            event.resolved_at = now
        else:
            event.status = TransitionStatus.PENDING
        event.created_at = now

        with saving('TransitionEvent'):
            if event.status == TransitionStatus.PENDING and \
                    TransitionEvent.objects.select_for_update().filter(status=TransitionStatus.PENDING).exists():
                raise BusinessRuleViolation('another zone change is awaiting confirmation')
            event.save()

        self._after_recorded(event, result='recorded')
        return event

    def handle_zone_change(self, previous_zone, current_zone, at=None,
                           detection_method=DetectionMethod.AUTOMATIC, location=''):
        """
        Entry point for zone-change notifications (debounced).

        - no pending candidate: record a new one (None if zones are equivalent)
        - pending candidate exists: the new detection supersedes it, keeping
          the candidate's original previous_zone; when the device is back in
          that original zone the candidate is discarded and None is returned
        """
        now = self.clock.now()
        superseded = None
        reverted = None

        with saving('TransitionEvent'):
            pending = TransitionEvent.objects.select_for_update().filter(
                status=TransitionStatus.PENDING
            ).first()
            origin = pending.previous_zone if pending else previous_zone

            candidate = self.detect(origin, current_zone, detection_method, at=at or now, location=location)

            if pending is not None and candidate is not None and \
                    self.clock.zones_equivalent(pending.new_zone, current_zone):
                # Same change reported again
                metrics.transitions_detected_total.labels(
                    detection_method=candidate.detection_method, result='duplicate'
                ).inc()
                return pending

            if candidate is not None:
                candidate.created_at = now
                self.validate_event(candidate, now=now)

            if pending is not None:
                pending.status = TransitionStatus.DISCARDED if candidate is None else TransitionStatus.SUPERSEDED
                pending.resolved_at = now
                pending.save(update_fields=['status', 'resolved_at'])
                if candidate is None:
                    reverted = pending
                else:
                    superseded = pending

            if candidate is not None:
                candidate.save()
                if superseded is not None:
                    superseded.superseded_by = candidate
                    superseded.save(update_fields=['superseded_by'])

        if reverted is not None:
            metrics.transitions_detected_total.labels(
                detection_method=parse_choice(DetectionMethod, detection_method, 'detection_method'),
                result='reverted'
            ).inc()
            self._after_resolved(reverted, 'discarded')
            return None

        if candidate is None:
            return None

        self._after_recorded(candidate, result='coalesced' if superseded else 'recorded', superseded=superseded)
        return candidate

    def _after_recorded(self, event, result, superseded=None):
        metrics.transitions_detected_total.labels(
            detection_method=event.detection_method, result=result
        ).inc()
        self._refresh_pending_gauge()
        log_transition_recorded(
            event,
            result='success',
            outcome=result,
            superseded_event_id=str(superseded.id) if superseded else None,
            offset_change_hours=event.offset_change_hours,
        )
        transition_detected.send(
            sender=TransitionEvent,
            transition_event_id=str(event.id),
            previous_zone=event.previous_zone,
            new_zone=event.new_zone,
            superseded_event_id=str(superseded.id) if superseded else None,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def pending_event(self):
        with fetching('TransitionEvent'):
            return TransitionEvent.objects.filter(status=TransitionStatus.PENDING).first()

    def confirm(self, event):
        return self._resolve(event, TransitionStatus.CONFIRMED)

    def discard(self, event):
        return self._resolve(event, TransitionStatus.DISCARDED)

    def _resolve(self, event, status):
        now = self.clock.now()
        with saving('TransitionEvent'):
            locked = TransitionEvent.objects.select_for_update().get(pk=event.pk)
            if locked.status != TransitionStatus.PENDING:
                raise BusinessRuleViolation(
                    f'transition is already {locked.status}', field='status'
                )
            locked.status = status
            locked.user_confirmed = status == TransitionStatus.CONFIRMED
            locked.resolved_at = now
            locked.save(update_fields=['status', 'user_confirmed', 'resolved_at'])

        resolution = 'confirmed' if status == TransitionStatus.CONFIRMED else 'discarded'
        self._after_resolved(locked, resolution)
        return locked

    def _after_resolved(self, event, resolution):
        metrics.transitions_resolved_total.labels(resolution=resolution).inc()
        self._refresh_pending_gauge()
        log_transition_recorded(event, result='success', outcome=resolution)
        transition_resolved.send(
            sender=TransitionEvent,
            transition_event_id=str(event.id),
            resolution=resolution,
        )

    def _refresh_pending_gauge(self):
        metrics.pending_transitions.set(
            TransitionEvent.objects.filter(status=TransitionStatus.PENDING).count()
        )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def affected_schedules(self, event, schedules):
        """Enabled time-of-day schedules not already anchored in the new zone."""
        return [
            s for s in schedules
            if s.is_enabled
            and s.kind == ScheduleKind.TIME_OF_DAY
            and not self.clock.zones_equivalent(s.reference_zone, event.new_zone)
        ]

    def propose_adjustments(self, event, schedules, strategy, custom_times=None, gradual_steps=None):
        """
        Unsaved ScheduleAdjustment proposals, one per affected schedule
        (one per step for gradual shift).

        Args:
            custom_times: {schedule id: datetime.time}, custom strategy only
            gradual_steps: overrides the configured number of steps
        """
        strategy = parse_choice(AdjustmentStrategy, strategy, 'strategy')
        if event.status in (TransitionStatus.DISCARDED, TransitionStatus.SUPERSEDED):
            raise BusinessRuleViolation(f'transition is {event.status}', field='transition_event')

        affected = self.affected_schedules(event, schedules)

        if strategy == AdjustmentStrategy.CUSTOM:
            return self._propose_custom(event, affected, custom_times)

        steps = gradual_steps or self.gradual_steps
        if strategy == AdjustmentStrategy.GRADUAL_SHIFT and (not isinstance(steps, int) or steps < 1):
            raise InvalidRange('gradual_steps', min_value=1)

        proposals = []
        for schedule in affected:
            if strategy == AdjustmentStrategy.KEEP_LOCAL_TIME:
                proposals.append(self._adjustment(event, schedule, strategy, schedule.time_of_day))
            elif strategy == AdjustmentStrategy.KEEP_ABSOLUTE_TIME:
                proposals.append(
                    self._adjustment(event, schedule, strategy, self._absolute_time(event, schedule))
                )
            else:
                proposals.extend(self._gradual(event, schedule, steps))

        metrics.schedule_adjustments_total.labels(strategy=strategy, result='proposed').inc(len(proposals))
        return proposals

    def _adjustment(self, event, schedule, strategy, new_time, step=0, effective_date=None,
                    previous_zone=None, previous_time=None):
        return ScheduleAdjustment(
            transition_event=event,
            schedule=schedule,
            strategy=strategy,
            step=step,
            effective_date=effective_date,
            previous_zone=previous_zone or schedule.reference_zone,
            new_zone=event.new_zone,
            previous_time=previous_time or schedule.time_of_day,
            new_time=new_time,
        )

    def _absolute_time(self, event, schedule):
        """Civil time in the new zone of the schedule's next occurrence."""
        upcoming = self.engine.next_occurrence(schedule, event.transition_instant)
        if upcoming is None:
            return schedule.time_of_day
        return self.clock.to_civil(upcoming, event.new_zone).time().replace(second=0)

    def _gradual(self, event, schedule, steps):
        start_date = self.clock.local_date(event.transition_instant, event.new_zone)
        times = interpolate_times(self._absolute_time(event, schedule), schedule.time_of_day, steps)

        proposals = []
        previous_zone, previous_time = schedule.reference_zone, schedule.time_of_day
        for k, new_time in enumerate(times, start=1):
            proposals.append(self._adjustment(
                event, schedule, AdjustmentStrategy.GRADUAL_SHIFT, new_time,
                step=k,
                effective_date=start_date + datetime.timedelta(days=k - 1),
                previous_zone=previous_zone,
                previous_time=previous_time,
            ))
            previous_zone, previous_time = event.new_zone, new_time
        return proposals

    def _propose_custom(self, event, affected, custom_times):
        if not custom_times:
            raise EmptyField('custom_times')
        by_id = {str(s.id): s for s in affected}
        proposals = []
        for schedule_id, new_time in custom_times.items():
            schedule = by_id.get(str(schedule_id))
            if schedule is None:
                raise InvalidRelationship(
                    'custom_times', f'schedule {schedule_id} is not affected by this transition'
                )
            if not isinstance(new_time, datetime.time):
                raise EmptyField('custom_times')
            proposals.append(self._adjustment(
                event, schedule, AdjustmentStrategy.CUSTOM, new_time.replace(second=0, microsecond=0)
            ))
        metrics.schedule_adjustments_total.labels(
            strategy=AdjustmentStrategy.CUSTOM, result='proposed'
        ).inc(len(proposals))
        return proposals

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_adjustment(self, schedule, adjustment, now=None):
        """
        Re-anchor one schedule and persist the adjustment as an audit row.

        Runs in its own atomic block (joins the caller's when nested).
        """
        now = now or self.clock.now()
        if adjustment.schedule_id != schedule.id:
            raise InvalidRelationship('schedule', 'adjustment belongs to another schedule')
        self.clock.canonical_zone(adjustment.new_zone, field='new_zone')

        schedule.reference_zone = adjustment.new_zone
        schedule.time_of_day = adjustment.new_time
        schedule.touch(now)
        self.engine.validate(schedule)

        with saving('ScheduleAdjustment'):
            schedule.save(update_fields=['reference_zone', 'time_of_day', 'updated_at'])
            adjustment.applied_at = now
            if adjustment._state.adding:
                adjustment.created_at = now
                adjustment.save()
            else:
                adjustment.save(update_fields=['applied_at'])

        metrics.schedule_adjustments_total.labels(strategy=adjustment.strategy, result='applied').inc()
        log_schedule_reanchored(schedule, adjustment)
        return adjustment

    def apply_adjustments(self, event, adjustments):
        """
        Commit a batch of proposals for one confirmed event, all or nothing.

        Single-step strategies re-anchor immediately. For gradual shift,
        step 1 is applied now and later steps are stored for
        apply_due_gradual_steps().
        """
        if event.status != TransitionStatus.CONFIRMED:
            raise BusinessRuleViolation('transition must be confirmed before adjusting schedules',
                                        field='transition_event')
        if not adjustments:
            return []

        keys = set()
        for adjustment in adjustments:
            if adjustment.transition_event_id != event.id:
                raise InvalidRelationship('transition_event', 'adjustment belongs to another transition')
            parse_choice(AdjustmentStrategy, adjustment.strategy, 'strategy')
            key = (adjustment.schedule_id, adjustment.step)
            if key in keys:
                raise BusinessRuleViolation('duplicate adjustment for the same schedule and step')
            keys.add(key)

        schedule_ids = sorted({a.schedule_id for a in adjustments}, key=str)
        if ScheduleAdjustment.objects.filter(transition_event=event, schedule_id__in=schedule_ids).exists():
            raise BusinessRuleViolation('schedules were already re-anchored for this transition')

        now = self.clock.now()
        applied = []
        with saving('ScheduleAdjustment'):
            schedules = {
                s.id: s for s in Schedule.objects.select_for_update().select_related('medication')
                .filter(id__in=schedule_ids)
            }
            previous = {sid: self._issued_reminders(s) for sid, s in schedules.items()}
            for adjustment in sorted(adjustments, key=lambda a: (str(a.schedule_id), a.step)):
                schedule = schedules.get(adjustment.schedule_id)
                if schedule is None:
                    raise InvalidRelationship('schedule', f'schedule {adjustment.schedule_id} does not exist')
                adjustment.schedule = schedule
                if adjustment.step <= 1:
                    self.apply_adjustment(schedule, adjustment, now=now)
                    applied.append(adjustment)
                else:
                    adjustment.created_at = now
                    adjustment.save()

        self._reschedule_reminders(schedules.values(), previous)
        log_consistency_checkpoint(
            'transition_adjustments_applied',
            entity_ids={'transition_event_id': str(event.id)},
            checks_passed={'all_schedules_reanchored': len(applied) == len(schedules)},
            expected=len(schedules),
            actual=len(applied),
        )
        schedules_reanchored.send(
            sender=TransitionEvent,
            transition_event_id=str(event.id),
            strategy=adjustments[0].strategy,
            schedule_ids=[str(s) for s in schedule_ids],
        )
        return applied

    def apply_due_gradual_steps(self, today=None):
        """
        Apply stored gradual-shift steps whose effective date has arrived.

        ``today`` defaults to the current civil date in each step's new zone.
        A step is skipped when its schedule was re-anchored by a later
        transition. Returns the applied adjustments.
        """
        now = self.clock.now()
        with fetching('ScheduleAdjustment'):
            candidates = list(
                ScheduleAdjustment.objects.select_related('transition_event', 'schedule__medication')
                .filter(
                    strategy=AdjustmentStrategy.GRADUAL_SHIFT,
                    applied_at__isnull=True,
                    effective_date__isnull=False,
                    transition_event__status=TransitionStatus.CONFIRMED,
                )
                .order_by('schedule_id', 'step')
            )

        due = [
            a for a in candidates
            if a.effective_date <= (today or self.clock.local_date(now, a.new_zone))
        ]

        applied = []
        previous = {}
        with saving('ScheduleAdjustment'):
            for adjustment in due:
                event = adjustment.transition_event
                superseded = ScheduleAdjustment.objects.filter(
                    schedule_id=adjustment.schedule_id,
                    applied_at__isnull=False,
                    transition_event__transition_instant__gt=event.transition_instant,
                ).exists()
                if superseded:
                    continue
                schedule = Schedule.objects.select_for_update().select_related('medication').get(
                    pk=adjustment.schedule_id
                )
                previous.setdefault(schedule.id, self._issued_reminders(schedule))
                adjustment.schedule = schedule
                self.apply_adjustment(schedule, adjustment, now=now)
                applied.append(adjustment)

        self._reschedule_reminders({a.schedule_id: a.schedule for a in applied}.values(), previous)
        logger.info(
            'Gradual shift steps applied',
            extra={'event': 'gradual_steps_applied', 'due_count': len(due), 'applied_count': len(applied)}
        )
        return applied

    def _issued_reminders(self, schedule):
        if self.reminders is None:
            return {}
        return plan_reminders(self.engine, schedule, self.clock.now())

    def _reschedule_reminders(self, schedules, previous):
        """Replace each schedule's reminders with its plan after re-anchoring."""
        if self.reminders is None:
            return
        now = self.clock.now()
        for schedule in schedules:
            planned = plan_reminders(self.engine, schedule, now)
            sync_reminders(self.reminders, previous.get(schedule.id, {}), planned)

    # ------------------------------------------------------------------
    # Doses
    # ------------------------------------------------------------------

    def associate_affected_doses(self, event, doses, window=None):
        """
        Link doses scheduled within ``window`` of the transition instant.

        A dose keeps at most one event: the nearest one wins (ties keep the
        existing link). Returns the doses linked to ``event``.
        """
        if window is None:
            window = datetime.timedelta(hours=tracker_setting('DOSE_ASSOCIATION_WINDOW_HOURS'))
        now = self.clock.now()
        pivot = event.transition_instant

        linked = []
        for dose in doses:
            if dose.scheduled_instant is None:
                continue
            distance = abs(dose.scheduled_instant - pivot)
            if distance > window:
                continue
            current = dose.transition_event
            if current is not None and current.pk != event.pk and \
                    abs(dose.scheduled_instant - current.transition_instant) <= distance:
                continue
            dose.transition_event = event
            dose.touch(now)
            linked.append(dose)

        with saving('DoseRecord'):
            for dose in linked:
                dose.save(update_fields=['transition_event', 'updated_at'])

        logger.info(
            'Doses associated with transition',
            extra={
                'event': 'doses_associated',
                'transition_event_id': str(event.id),
                'linked_count': len(linked),
            }
        )
        return linked

    def doses_near(self, event, window=None):
        """Doses scheduled within ``window`` of the transition instant."""
        if window is None:
            window = datetime.timedelta(hours=tracker_setting('DOSE_ASSOCIATION_WINDOW_HOURS'))
        pivot = event.transition_instant
        with fetching('DoseRecord'):
            return list(
                DoseRecord.objects.select_related('transition_event').filter(
                    scheduled_instant__gte=pivot - window,
                    scheduled_instant__lte=pivot + window,
                )
            )

    # ------------------------------------------------------------------
    # Queries & retention
    # ------------------------------------------------------------------

    def fetch_events(self, start=None, end=None, status=None):
        queryset = TransitionEvent.objects.all()
        if start is not None:
            queryset = queryset.filter(transition_instant__gte=start)
        if end is not None:
            queryset = queryset.filter(transition_instant__lt=end)
        if status is not None:
            queryset = queryset.filter(status=parse_choice(TransitionStatus, status, 'status'))
        with fetching('TransitionEvent'):
            return list(queryset.order_by('-transition_instant'))

    def most_recent_event(self, confirmed_only=False):
        queryset = TransitionEvent.objects.order_by('-transition_instant')
        if confirmed_only:
            queryset = queryset.filter(status=TransitionStatus.CONFIRMED)
        with fetching('TransitionEvent'):
            return queryset.first()

    def purge_events(self, older_than):
        """
        Delete resolved events older than ``older_than`` (one atomic batch).

        Pending candidates are kept until resolved. Adjustments go with
        their event; linked doses lose the link.
        """
        predicate = Q(transition_instant__lt=older_than) & ~Q(status=TransitionStatus.PENDING)
        with deleting('TransitionEvent'):
            _, per_model = TransitionEvent.objects.filter(predicate).delete()
        deleted = per_model.get(TransitionEvent._meta.label, 0)

        logger.info(
            'Transition events purged',
            extra={
                'event': 'transition_events_purged',
                'older_than': older_than.isoformat(),
                'deleted_count': deleted,
            }
        )
        return deleted


def build_transition_manager(clock=None):
    clock = clock or ZoneClock()
    return TransitionManager(clock, ScheduleEngine(clock), reminders=get_reminder_scheduler())
