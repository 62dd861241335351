"""
Tests for DoseTracker: batch generation, the status state machine,
overdue detection and adherence.
"""
import datetime
from decimal import Decimal

import pytest
import pytz

from apps.core.exceptions import (
    BusinessRuleViolation,
    InvalidDate,
    InvalidRelationship,
    InvalidValue,
    UnknownZone,
)
from apps.doses.models import DoseRecord, DoseStatus
from apps.doses.signals import dose_status_changed
from apps.doses.tracker import adherence
from apps.medications.models import WEEKDAYS_MASK, ScheduleKind

SPRING_FORWARD = datetime.date(2024, 3, 10)


def utc(*args):
    return datetime.datetime(*args, tzinfo=pytz.utc)


def dose(status, scheduled_instant=None):
    """Unsaved record for pure adherence math."""
    return DoseRecord(status=status, scheduled_instant=scheduled_instant)


@pytest.mark.django_db
class TestCreateDosesForDate:

    def test_creates_pending_dose_at_local_time(self, tracker, schedule):
        """
        Given a daily 08:00 New York schedule
        When doses are generated for the spring-forward day
        Then one pending dose is scheduled at 08:00 EDT (12:00 UTC)
        """
        created = tracker.create_doses_for_date([schedule], SPRING_FORWARD)

        assert len(created) == 1
        record = created[0]
        assert record.status == DoseStatus.PENDING
        assert record.scheduled_instant == utc(2024, 3, 10, 12, 0)
        assert record.scheduled_date == SPRING_FORWARD
        assert record.medication_id == schedule.medication_id
        assert record.recorded_zone == 'America/New_York'
        assert record.actual_instant is None

    def test_idempotent(self, tracker, schedule):
        """Generating the same date twice creates nothing the second time."""
        tracker.create_doses_for_date([schedule], SPRING_FORWARD)

        again = tracker.create_doses_for_date([schedule], SPRING_FORWARD)

        assert again == []
        assert DoseRecord.objects.filter(schedule=schedule).count() == 1

    def test_skips_days_outside_mask(self, tracker, schedule_factory):
        weekdays = schedule_factory(days_of_week=WEEKDAYS_MASK)

        assert tracker.create_doses_for_date([weekdays], SPRING_FORWARD) == []
        assert len(tracker.create_doses_for_date([weekdays], datetime.date(2024, 3, 11))) == 1

    def test_skips_disabled_and_as_needed(self, tracker, schedule_factory):
        disabled = schedule_factory(is_enabled=False)
        as_needed = schedule_factory(kind=ScheduleKind.AS_NEEDED, time_of_day=None)

        assert tracker.create_doses_for_date([disabled, as_needed], SPRING_FORWARD) == []

    def test_skips_medication_not_yet_started(self, tracker, medication_service, schedule):
        medication_service.update_medication(schedule.medication, start_date=datetime.date(2024, 4, 1))

        assert tracker.create_doses_for_date([schedule], SPRING_FORWARD) == []

    def test_multiple_schedules(self, tracker, schedule_factory):
        morning = schedule_factory(time_of_day=datetime.time(8, 0))
        evening = schedule_factory(time_of_day=datetime.time(20, 0))

        created = tracker.create_doses_for_date([morning, evening], SPRING_FORWARD)

        assert sorted(d.scheduled_instant for d in created) == [utc(2024, 3, 10, 12, 0), utc(2024, 3, 11, 0, 0)]


@pytest.mark.django_db
class TestStateMachine:

    @pytest.fixture
    def pending(self, tracker, schedule):
        return tracker.create_doses_for_date([schedule], SPRING_FORWARD)[0]

    def test_mark_taken_sets_actual_instant(self, tracker, pending, clock):
        record = tracker.mark_taken(pending, notes='with breakfast')

        assert record.status == DoseStatus.TAKEN
        assert record.actual_instant == clock.now()
        assert record.notes == 'with breakfast'
        assert record.delay == clock.now() - record.scheduled_instant

    def test_taken_cannot_become_missed(self, tracker, pending):
        tracker.mark_taken(pending)

        with pytest.raises(BusinessRuleViolation):
            tracker.mark_missed(pending)

        pending.refresh_from_db()
        assert pending.status == DoseStatus.TAKEN

    def test_missed_and_skipped_leave_actual_unset(self, tracker, pending, schedule_factory):
        missed = tracker.mark_missed(pending, notes='asleep')
        assert missed.status == DoseStatus.MISSED
        assert missed.actual_instant is None

        other = tracker.create_doses_for_date([schedule_factory(time_of_day=datetime.time(9, 0))], SPRING_FORWARD)[0]
        skipped = tracker.mark_skipped(other)
        assert skipped.status == DoseStatus.SKIPPED
        assert skipped.actual_instant is None

    def test_reset_clears_actual_and_notes(self, tracker, pending):
        tracker.mark_taken(pending, notes='late')

        record = tracker.reset(pending)

        assert record.status == DoseStatus.PENDING
        assert record.actual_instant is None
        assert record.notes == ''
        assert tracker.mark_skipped(record).status == DoseStatus.SKIPPED

    def test_future_actual_instant_rejected(self, tracker, pending, clock):
        """More than the tolerance ahead of now is rejected and nothing is written."""
        with pytest.raises(InvalidDate):
            tracker.mark_taken(pending, actual_instant=clock.now() + datetime.timedelta(hours=2))

        pending.refresh_from_db()
        assert pending.status == DoseStatus.PENDING
        assert pending.actual_instant is None

    def test_actual_instant_within_tolerance(self, tracker, pending, clock):
        record = tracker.mark_taken(pending, actual_instant=clock.now() + datetime.timedelta(minutes=30))
        assert record.status == DoseStatus.TAKEN

    def test_actual_instant_too_early(self, tracker, pending):
        with pytest.raises(InvalidDate):
            tracker.mark_taken(pending, actual_instant=pending.scheduled_instant - datetime.timedelta(days=8))

    def test_zone_stamped_on_change(self, tracker, pending):
        record = tracker.mark_taken(pending, zone='Europe/London')
        assert record.recorded_zone == 'Europe/London'

    def test_unknown_zone_rejected(self, tracker, pending):
        with pytest.raises(UnknownZone):
            tracker.mark_taken(pending, zone='Nowhere/Land')

    def test_status_change_signal(self, tracker, pending):
        received = []

        def on_change(sender, **kwargs):
            received.append(kwargs)

        dose_status_changed.connect(on_change)
        try:
            tracker.mark_taken(pending)
        finally:
            dose_status_changed.disconnect(on_change)

        assert len(received) == 1
        assert received[0]['dose_id'] == str(pending.id)
        assert received[0]['from_status'] == DoseStatus.PENDING
        assert received[0]['to_status'] == DoseStatus.TAKEN


@pytest.mark.django_db
class TestValidate:

    def test_taken_requires_actual_instant(self, tracker, medication):
        record = DoseRecord(medication=medication, status=DoseStatus.TAKEN, recorded_zone='UTC')
        with pytest.raises(BusinessRuleViolation):
            tracker.validate(record)

    def test_actual_instant_only_when_taken(self, tracker, medication, clock):
        record = DoseRecord(
            medication=medication, status=DoseStatus.MISSED, recorded_zone='UTC', actual_instant=clock.now()
        )
        with pytest.raises(BusinessRuleViolation):
            tracker.validate(record)

    def test_unknown_status(self, tracker, medication):
        record = DoseRecord(medication=medication, status='lost', recorded_zone='UTC')
        with pytest.raises(InvalidValue):
            tracker.validate(record)

    def test_requires_owner(self, tracker):
        with pytest.raises(InvalidRelationship):
            tracker.validate(DoseRecord(status=DoseStatus.PENDING, recorded_zone='UTC'))

    def test_scheduled_instant_beyond_horizon(self, tracker, medication, clock):
        record = DoseRecord(
            medication=medication,
            status=DoseStatus.PENDING,
            recorded_zone='UTC',
            scheduled_instant=clock.now() + datetime.timedelta(days=800),
        )
        with pytest.raises(InvalidDate):
            tracker.validate(record)


@pytest.mark.django_db
class TestAsNeeded:

    def test_record_as_needed(self, tracker, medication, clock):
        record = tracker.record_as_needed(medication, notes='headache')

        assert record.status == DoseStatus.TAKEN
        assert record.schedule is None
        assert record.is_as_needed
        assert record.actual_instant == clock.now()
        assert record.recorded_zone == 'America/New_York'

    def test_inactive_medication_rejected(self, tracker, medication, medication_service):
        medication_service.deactivate_medication(medication)
        with pytest.raises(BusinessRuleViolation):
            tracker.record_as_needed(medication)

    def test_schedule_must_be_as_needed(self, tracker, medication, schedule):
        with pytest.raises(InvalidRelationship):
            tracker.record_as_needed(medication, schedule=schedule)


class TestAdherence:

    def test_two_of_five_taken(self):
        records = [
            dose(DoseStatus.TAKEN), dose(DoseStatus.TAKEN),
            dose(DoseStatus.MISSED), dose(DoseStatus.SKIPPED), dose(DoseStatus.PENDING),
        ]
        assert adherence(records) == pytest.approx(0.4)

    def test_empty_is_zero(self):
        assert adherence([]) == 0.0

    def test_range_is_half_open(self):
        start, end = utc(2024, 3, 1), utc(2024, 3, 8)
        records = [
            dose(DoseStatus.TAKEN, utc(2024, 3, 1)),
            dose(DoseStatus.MISSED, utc(2024, 3, 7, 23, 59)),
            dose(DoseStatus.TAKEN, utc(2024, 3, 8)),
            dose(DoseStatus.TAKEN, None),
        ]
        assert adherence(records, start, end) == pytest.approx(0.5)

    def test_range_with_no_records(self):
        assert adherence([dose(DoseStatus.TAKEN, utc(2024, 1, 1))], utc(2024, 3, 1), utc(2024, 3, 8)) == 0.0


@pytest.mark.django_db
class TestQueries:

    @pytest.fixture
    def week(self, tracker, schedule):
        """Doses for 2024-03-04 .. 2024-03-10."""
        records = []
        for offset in range(7):
            records += tracker.create_doses_for_date([schedule], datetime.date(2024, 3, 4) + datetime.timedelta(days=offset))
        return records

    def test_overdue(self, tracker, week):
        """Six doses are past due at 06:30 UTC on the 10th; the 10th's is still ahead."""
        overdue = tracker.overdue()

        assert len(overdue) == 6
        assert all(tracker.is_overdue(d) for d in overdue)
        assert not tracker.is_overdue(week[-1])

    def test_taken_dose_is_not_overdue(self, tracker, week):
        record = tracker.mark_taken(week[0])
        assert not tracker.is_overdue(record)

    def test_adherence_for_range(self, tracker, week):
        tracker.mark_taken(week[0])
        tracker.mark_taken(week[1])
        tracker.mark_missed(week[2])

        value = tracker.adherence_for_range(utc(2024, 3, 4), utc(2024, 3, 9))
        by_status = tracker.adherence_by_status(utc(2024, 3, 4), utc(2024, 3, 9))

        assert value == pytest.approx(0.4)
        assert by_status == {'pending': 2, 'taken': 2, 'missed': 1, 'skipped': 0}

    def test_history_for_schedule(self, tracker, schedule, week):
        history = tracker.history_for_schedule(schedule, limit=3)
        assert [d.scheduled_date for d in history] == [
            datetime.date(2024, 3, 10), datetime.date(2024, 3, 9), datetime.date(2024, 3, 8),
        ]

    def test_doses_with_status(self, tracker, week):
        tracker.mark_skipped(week[3])
        assert [d.id for d in tracker.doses_with_status('skipped')] == [week[3].id]
        with pytest.raises(InvalidValue):
            tracker.doses_with_status('forgotten')

    def test_purge_history(self, tracker, week):
        deleted = tracker.purge_history(utc(2024, 3, 7))

        assert deleted == 3
        assert DoseRecord.objects.count() == 4


@pytest.mark.django_db
class TestDoseRecordModel:

    def test_dosage_relation(self, tracker, schedule):
        record = tracker.create_doses_for_date([schedule], SPRING_FORWARD)[0]
        assert record.medication.dosage_amount == Decimal('500.000')
        assert record.delay is None
        assert not record.is_as_needed
