"""
Medication service layer - create/update/deactivate medications and schedules.

Every mutation is validate-then-commit: the instance is validated in full
before the atomic write is entered, and ``touch()`` stamps updated_at
explicitly.
"""
from apps.core.conf import tracker_setting
from apps.core.exceptions import InvalidValue
from apps.core.observability import get_sanitized_logger, log_domain_event
from apps.core.reminders import get_reminder_scheduler, plan_reminders, sync_reminders
from apps.core.store import fetching, saving
from apps.medications.engine import ScheduleEngine
from apps.medications.models import Medication, Schedule, ScheduleKind
from apps.timezones.clock import ZoneClock

logger = get_sanitized_logger(__name__)

MEDICATION_FIELDS = {
    'name', 'dosage_amount', 'dosage_unit', 'instructions',
    'prescribed_by', 'start_date', 'end_date',
}
SCHEDULE_FIELDS = {
    'kind', 'reference_zone', 'time_of_day', 'days_of_week',
    'interval_minutes', 'anchor_instant', 'is_enabled',
}


def _apply_changes(instance, changes, allowed):
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidValue(sorted(unknown)[0], 'field cannot be changed here')
    for field, value in changes.items():
        setattr(instance, field, value)


class MedicationService:
    """
    Medication and schedule lifecycle.

    Args:
        engine: ScheduleEngine used for schedule validation and reminders
        reminders: optional ReminderScheduler; when given, every touched
            schedule gets one reminder per occurrence in the reminder window
            and reminders it no longer has are cancelled
    """

    def __init__(self, engine, reminders=None):
        self.engine = engine
        self.clock = engine.clock
        self.reminders = reminders

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    def create_medication(self, **fields):
        medication = Medication()
        _apply_changes(medication, fields, MEDICATION_FIELDS)
        now = self.clock.now()
        medication.created_at = now
        medication.touch(now)
        medication.clean()

        with saving('Medication'):
            medication.save()

        log_domain_event(
            'medication_created',
            entity_type='Medication',
            entity_id=str(medication.id),
        )
        return medication

    def update_medication(self, medication, **changes):
        _apply_changes(medication, changes, MEDICATION_FIELDS)
        medication.touch(self.clock.now())
        medication.clean()

        with saving('Medication'):
            medication.save()

        log_domain_event(
            'medication_updated',
            entity_type='Medication',
            entity_id=str(medication.id),
            changed_fields=sorted(changes),
        )
        return medication

    def deactivate_medication(self, medication, end_date=None):
        """
        Soft lifecycle end: mark inactive, set an end date, disable schedules.

        The medication and its history are kept.
        """
        now = self.clock.now()
        medication.is_active = False
        if medication.end_date is None:
            medication.end_date = end_date or self.clock.local_date(now, self._zone_for(medication))
        if medication.end_date < medication.start_date:
            medication.end_date = medication.start_date
        medication.touch(now)
        medication.clean()

        with saving('Medication'):
            medication.save()
            schedules = list(
                Schedule.objects.select_for_update().filter(medication=medication, is_enabled=True)
            )
            previous = {schedule.id: self._issued_reminders(schedule) for schedule in schedules}
            for schedule in schedules:
                schedule.is_enabled = False
                schedule.touch(now)
                schedule.save(update_fields=['is_enabled', 'updated_at'])

        for schedule in schedules:
            self._sync_reminders(schedule, previous[schedule.id])

        log_domain_event(
            'medication_deactivated',
            entity_type='Medication',
            entity_id=str(medication.id),
            disabled_schedules=len(schedules),
        )
        return medication

    def reactivate_medication(self, medication):
        """Clear the inactive flag and end date. Schedules stay disabled."""
        medication.is_active = True
        medication.end_date = None
        medication.touch(self.clock.now())
        medication.clean()

        with saving('Medication'):
            medication.save()

        log_domain_event(
            'medication_reactivated',
            entity_type='Medication',
            entity_id=str(medication.id),
        )
        return medication

    def _zone_for(self, medication):
        schedule = medication.schedules.order_by('created_at').first()
        if schedule is not None:
            return schedule.reference_zone
        return tracker_setting('DEFAULT_ZONE')

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def create_schedule(self, medication, **fields):
        schedule = Schedule(medication=medication)
        _apply_changes(schedule, fields, SCHEDULE_FIELDS)
        now = self.clock.now()
        schedule.created_at = now
        schedule.touch(now)
        self.engine.validate(schedule)

        with saving('Schedule'):
            schedule.save()

        self._sync_reminders(schedule)
        log_domain_event(
            'schedule_created',
            entity_type='Schedule',
            entity_id=str(schedule.id),
            entity_ids={'medication_id': str(medication.id)},
            kind=schedule.kind,
            reference_zone=schedule.reference_zone,
        )
        return schedule

    def update_schedule(self, schedule, **changes):
        previous = self._issued_reminders(schedule)
        _apply_changes(schedule, changes, SCHEDULE_FIELDS)
        schedule.touch(self.clock.now())
        self.engine.validate(schedule)

        with saving('Schedule'):
            schedule.save()

        self._sync_reminders(schedule, previous)
        log_domain_event(
            'schedule_updated',
            entity_type='Schedule',
            entity_id=str(schedule.id),
            changed_fields=sorted(changes),
        )
        return schedule

    def set_schedule_enabled(self, schedule, enabled):
        return self.update_schedule(schedule, is_enabled=enabled)

    def refresh_reminders(self, schedules):
        """Plan the reminder window of each schedule from now."""
        for schedule in schedules:
            self._sync_reminders(schedule)

    def _issued_reminders(self, schedule):
        if self.reminders is None:
            return {}
        return plan_reminders(self.engine, schedule, self.clock.now())

    def _sync_reminders(self, schedule, previous=None):
        if self.reminders is None:
            return
        planned = plan_reminders(self.engine, schedule, self.clock.now())
        sync_reminders(self.reminders, previous or {}, planned)


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

def active_medications():
    with fetching('Medication'):
        return list(Medication.objects.filter(is_active=True))


def schedules_for_medication(medication):
    with fetching('Schedule'):
        return list(Schedule.objects.filter(medication=medication))


def enabled_schedules(kind=None):
    """Enabled schedules of active medications, optionally of one kind."""
    queryset = Schedule.objects.select_related('medication').filter(
        is_enabled=True, medication__is_active=True
    )
    if kind is not None:
        queryset = queryset.filter(kind=kind)
    with fetching('Schedule'):
        return list(queryset)


def enabled_time_of_day_schedules():
    return enabled_schedules(kind=ScheduleKind.TIME_OF_DAY)


def schedules_due_on(engine, civil_date):
    """Enabled time-of-day schedules due on ``civil_date`` in their own reference zone."""
    return [s for s in enabled_time_of_day_schedules() if engine.is_due_on(s, civil_date)]


def build_medication_service(clock=None):
    clock = clock or ZoneClock()
    return MedicationService(ScheduleEngine(clock), reminders=get_reminder_scheduler())
