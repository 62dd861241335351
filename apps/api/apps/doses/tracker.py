"""
DoseTracker - dose status state machine, overdue detection and adherence.

State machine:
- pending -> taken (sets actual_instant)
- pending -> missed, pending -> skipped (actual_instant stays unset)
- any -> pending (reset: clears actual_instant and notes)

Any other transition raises BusinessRuleViolation. Every mutation is
validated before the atomic write.
"""
import datetime
from collections import Counter

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
from apps.core.observability.events import log_dose_transition, log_doses_generated
from apps.core.store import deleting, fetching, saving
from apps.doses.models import DoseRecord, DoseStatus
from apps.doses.signals import dose_status_changed
from apps.medications.engine import ScheduleEngine
from apps.medications.models import ScheduleKind
from apps.timezones.clock import ZoneClock

logger = get_sanitized_logger(__name__)

MAX_NOTES_LENGTH = 1000


def adherence(records, start=None, end=None):
    """
    Fraction of taken doses among ``records``.

    When a range is given only records whose scheduled_instant falls in
    [start, end) count. An empty set yields 0.0.
    """
    if start is not None or end is not None:
        records = [
            r for r in records
            if r.scheduled_instant is not None
            and (start is None or r.scheduled_instant >= start)
            and (end is None or r.scheduled_instant < end)
        ]
    else:
        records = list(records)

    if not records:
        return 0.0
    taken = sum(1 for r in records if r.status == DoseStatus.TAKEN)
    return taken / len(records)


class DoseTracker:
    """
    Dose lifecycle service.

    Args:
        clock: ZoneClock (source of "now" and zone validation)
        engine: ScheduleEngine used for batch generation
        zone: zone identifier in effect on the device; stamped as
            recorded_zone on status changes
    """

    def __init__(self, clock, engine, zone=None):
        self.clock = clock
        self.engine = engine
        self.zone = zone or tracker_setting('DEFAULT_ZONE')

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, record, now=None):
        """
        Check DoseRecord invariants.

        Raises:
            InvalidRelationship: neither schedule nor medication
            InvalidValue / UnknownZone: bad status or recorded_zone
            BusinessRuleViolation: actual_instant inconsistent with status
            InvalidDate: actual or scheduled instant outside allowed window
            InvalidRange: notes too long
        """
        now = now or self.clock.now()

        if record.medication_id is None and record.schedule_id is None:
            raise InvalidRelationship('medication', 'dose must belong to a schedule or medication')

        status = parse_choice(DoseStatus, record.status, 'status')

        if not record.recorded_zone:
            raise EmptyField('recorded_zone')
        self.clock.canonical_zone(record.recorded_zone, field='recorded_zone')

        if status == DoseStatus.TAKEN and record.actual_instant is None:
            raise BusinessRuleViolation('a taken dose requires actual_instant', field='actual_instant')
        if status != DoseStatus.TAKEN and record.actual_instant is not None:
            raise BusinessRuleViolation(
                'actual_instant can only be set on a taken dose', field='actual_instant'
            )

        if record.actual_instant is not None:
            tolerance = datetime.timedelta(minutes=tracker_setting('ACTUAL_TIME_FUTURE_TOLERANCE_MINUTES'))
            if record.actual_instant > now + tolerance:
                raise InvalidDate('actual_instant', 'cannot be in the future')
            if record.scheduled_instant is not None:
                max_early = datetime.timedelta(days=tracker_setting('ACTUAL_TIME_MAX_EARLY_DAYS'))
                if record.actual_instant < record.scheduled_instant - max_early:
                    raise InvalidDate('actual_instant', 'too far before the scheduled time')

        if record.scheduled_instant is not None:
            horizon = datetime.timedelta(days=tracker_setting('SCHEDULED_TIME_HORIZON_DAYS'))
            if not now - horizon <= record.scheduled_instant <= now + horizon:
                raise InvalidDate('scheduled_instant', 'outside the supported scheduling horizon')

        if record.notes and len(record.notes) > MAX_NOTES_LENGTH:
            raise InvalidRange('notes', max_value=MAX_NOTES_LENGTH)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def mark_taken(self, record, actual_instant=None, notes=None, zone=None):
        def apply(dose, now):
            dose.actual_instant = actual_instant or now
            if notes is not None:
                dose.notes = notes
        return self._transition(record, DoseStatus.TAKEN, apply, zone)

    def mark_missed(self, record, notes=None, zone=None):
        return self._transition(record, DoseStatus.MISSED, self._notes_only(notes), zone)

    def mark_skipped(self, record, notes=None, zone=None):
        return self._transition(record, DoseStatus.SKIPPED, self._notes_only(notes), zone)

    def reset(self, record, zone=None):
        """Return any dose to pending, clearing actual_instant and notes."""
        def apply(dose, now):
            dose.actual_instant = None
            dose.notes = ''
        return self._transition(record, DoseStatus.PENDING, apply, zone)

    @staticmethod
    def _notes_only(notes):
        def apply(dose, now):
            dose.actual_instant = None
            if notes is not None:
                dose.notes = notes
        return apply

    def _transition(self, record, to_status, apply, zone):
        now = self.clock.now()

        with saving('DoseRecord'):
            dose = DoseRecord.objects.select_for_update().get(pk=record.pk)
            from_status = dose.status

            if to_status != DoseStatus.PENDING and from_status != DoseStatus.PENDING:
                metrics.dose_transitions_total.labels(
                    from_status=from_status, to_status=to_status, result='rejected'
                ).inc()
                log_dose_transition(dose, from_status, to_status, result='rejected')
                raise BusinessRuleViolation(
                    f'cannot change a {from_status} dose to {to_status}; reset it to pending first',
                    field='status'
                )

            dose.status = to_status
            apply(dose, now)
            dose.recorded_zone = zone or self.zone
            dose.touch(now)
            self.validate(dose, now=now)
            dose.save()

        metrics.dose_transitions_total.labels(
            from_status=from_status, to_status=to_status, result='success'
        ).inc()
        log_dose_transition(dose, from_status, to_status)
        dose_status_changed.send(
            sender=DoseRecord,
            dose_id=str(dose.id),
            schedule_id=str(dose.schedule_id) if dose.schedule_id else None,
            from_status=from_status,
            to_status=to_status,
        )
        return dose

    # ------------------------------------------------------------------
    # Overdue & adherence
    # ------------------------------------------------------------------

    def is_overdue(self, record, now=None):
        now = now or self.clock.now()
        return (
            record.status == DoseStatus.PENDING
            and record.scheduled_instant is not None
            and record.scheduled_instant < now
        )

    def overdue(self, now=None):
        now = now or self.clock.now()
        with fetching('DoseRecord'):
            return list(
                DoseRecord.objects.filter(status=DoseStatus.PENDING, scheduled_instant__lt=now)
                .order_by('scheduled_instant')
            )

    def adherence(self, records, start=None, end=None):
        return adherence(records, start, end)

    def adherence_for_range(self, start, end, medication=None):
        return adherence(self.doses_between(start, end, medication=medication))

    def adherence_by_status(self, start, end, medication=None):
        """Counts per status for doses scheduled in [start, end)."""
        counts = Counter(dose.status for dose in self.doses_between(start, end, medication=medication))
        return {status.value: counts.get(status.value, 0) for status in DoseStatus}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @metrics.track_duration(metrics.dose_generation_duration_seconds)
    def create_doses_for_date(self, schedules, civil_date):
        """
        Create one pending dose per schedule due on ``civil_date``.

        Idempotent: the (schedule, civil date) pair is the key, so repeated
        calls return without creating duplicates. All-or-nothing.

        Returns:
            List of newly created DoseRecord instances
        """
        now = self.clock.now()
        planned = []
        for schedule in schedules:
            if not schedule.medication.is_current_on(civil_date):
                continue
            resolution = self.engine.occurrence_on(schedule, civil_date)
            if resolution is None:
                continue
            dose = DoseRecord(
                schedule=schedule,
                medication_id=schedule.medication_id,
                scheduled_instant=resolution.instant,
                scheduled_date=civil_date,
                status=DoseStatus.PENDING,
                recorded_zone=schedule.reference_zone,
                created_at=now,
                updated_at=now,
            )
            self.validate(dose, now=now)
            planned.append(dose)

        created = []
        with saving('DoseRecord'):
            for dose in planned:
                record, was_created = DoseRecord.objects.get_or_create(
                    schedule=dose.schedule,
                    scheduled_date=civil_date,
                    defaults={
                        'id': dose.id,
                        'medication_id': dose.medication_id,
                        'scheduled_instant': dose.scheduled_instant,
                        'status': dose.status,
                        'recorded_zone': dose.recorded_zone,
                        'created_at': now,
                        'updated_at': now,
                    }
                )
                if was_created:
                    created.append(record)

        existing = len(planned) - len(created)
        metrics.doses_generated_total.labels(result='created').inc(len(created))
        metrics.doses_generated_total.labels(result='existing').inc(existing)
        log_doses_generated(civil_date, len(created), existing)
        return created

    def record_as_needed(self, medication, actual_instant=None, notes='', schedule=None, zone=None):
        """Record a single taken dose that was not generated from a schedule."""
        if not medication.is_active:
            raise BusinessRuleViolation('cannot record a dose for an inactive medication', field='medication')
        if schedule is not None:
            if schedule.medication_id != medication.id:
                raise InvalidRelationship('schedule', 'schedule belongs to another medication')
            if schedule.kind != ScheduleKind.AS_NEEDED:
                raise InvalidRelationship('schedule', 'only as-needed schedules take unscheduled doses')

        now = self.clock.now()
        dose = DoseRecord(
            medication=medication,
            status=DoseStatus.TAKEN,
            actual_instant=actual_instant or now,
            recorded_zone=zone or self.zone,
            notes=notes or '',
            created_at=now,
            updated_at=now,
        )
        self.validate(dose, now=now)

        with saving('DoseRecord'):
            dose.save()

        metrics.dose_transitions_total.labels(
            from_status='none', to_status=DoseStatus.TAKEN, result='success'
        ).inc()
        log_dose_transition(dose, None, DoseStatus.TAKEN, as_needed=True)
        return dose

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def history_for_schedule(self, schedule, limit=None):
        queryset = DoseRecord.objects.filter(schedule=schedule).order_by('-scheduled_instant')
        if limit is not None:
            queryset = queryset[:limit]
        with fetching('DoseRecord'):
            return list(queryset)

    def doses_between(self, start, end, medication=None):
        """Doses scheduled in [start, end), ascending."""
        queryset = DoseRecord.objects.filter(scheduled_instant__gte=start, scheduled_instant__lt=end)
        if medication is not None:
            queryset = queryset.filter(medication=medication)
        with fetching('DoseRecord'):
            return list(queryset.order_by('scheduled_instant'))

    def doses_with_status(self, status):
        status = parse_choice(DoseStatus, status, 'status')
        with fetching('DoseRecord'):
            return list(DoseRecord.objects.filter(status=status).order_by('-scheduled_instant'))

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_history(self, older_than):
        """
        Delete doses scheduled (or, for as-needed, taken) before ``older_than``.

        One atomic batch. Returns the number of deleted records.
        """
        predicate = Q(scheduled_instant__lt=older_than) | Q(
            scheduled_instant__isnull=True, actual_instant__lt=older_than
        )
        with deleting('DoseRecord'):
            _, per_model = DoseRecord.objects.filter(predicate).delete()
        deleted = per_model.get(DoseRecord._meta.label, 0)

        metrics.dose_history_purged_total.inc(deleted)
        logger.info(
            'Dose history purged',
            extra={
                'event': 'dose_history_purged',
                'older_than': older_than.isoformat(),
                'deleted_count': deleted,
            }
        )
        return deleted


def build_dose_tracker(clock=None, zone=None):
    clock = clock or ZoneClock()
    return DoseTracker(clock, ScheduleEngine(clock), zone=zone)
