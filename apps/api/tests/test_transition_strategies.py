"""
Tests for schedule re-anchoring strategies after a zone change.

Scenario throughout: a New York -> London move at 12:00 UTC on 2024-07-01
(08:00 EDT / 13:00 BST), a +5 hour offset change.
"""
import datetime

import pytest
import pytz

from apps.core.exceptions import (
    BusinessRuleViolation,
    EmptyField,
    InvalidRange,
    InvalidRelationship,
    InvalidValue,
)
from apps.medications.models import Schedule, ScheduleKind
from apps.medications.services import MedicationService
from apps.transitions.manager import interpolate_times
from apps.transitions.models import AdjustmentStrategy, ScheduleAdjustment, TransitionStatus

NEW_YORK = 'America/New_York'
LONDON = 'Europe/London'
SUMMER_NOW = datetime.datetime(2024, 7, 1, 12, 0, tzinfo=pytz.utc)


def utc(*args):
    return datetime.datetime(*args, tzinfo=pytz.utc)


@pytest.fixture
def event(db, manager):
    candidate = manager.detect(NEW_YORK, LONDON)
    candidate.user_confirmed = True
    return manager.record_transition(candidate)


@pytest.fixture
def morning(schedule_factory):
    return schedule_factory(time_of_day=datetime.time(8, 0))


@pytest.fixture
def evening(schedule_factory):
    return schedule_factory(time_of_day=datetime.time(20, 0))


def upcoming_reminders(reminders, schedule):
    prefix = f'schedule-{schedule.id}-'
    return sorted(
        instant for key, instant in reminders.scheduled.items()
        if key.startswith(prefix) and instant >= SUMMER_NOW
    )


def refreshed(*schedules):
    for schedule in schedules:
        schedule.refresh_from_db()
    return schedules


@pytest.mark.django_db
class TestAffectedSchedules:

    def test_only_enabled_time_of_day_outside_new_zone(self, manager, event, morning, schedule_factory):
        schedule_factory(is_enabled=False)
        schedule_factory(reference_zone=LONDON)
        schedule_factory(kind=ScheduleKind.AS_NEEDED, time_of_day=None)

        affected = manager.affected_schedules(event, Schedule.objects.select_related('medication'))

        assert [s.id for s in affected] == [morning.id]


@pytest.mark.django_db
class TestKeepLocalTime:

    def test_civil_times_unchanged(self, manager, event, morning, evening):
        """
        Given 08:00 and 20:00 New York schedules
        When re-anchored with keep-local-time
        Then they read 08:00 and 20:00 in London, five hours earlier in UTC
        """
        before = [manager.engine.next_occurrence(s, SUMMER_NOW) for s in (morning, evening)]

        proposals = manager.propose_adjustments(event, [morning, evening], AdjustmentStrategy.KEEP_LOCAL_TIME)
        applied = manager.apply_adjustments(event, proposals)

        morning, evening = refreshed(morning, evening)
        assert len(applied) == 2
        assert (morning.reference_zone, morning.time_of_day) == (LONDON, datetime.time(8, 0))
        assert (evening.reference_zone, evening.time_of_day) == (LONDON, datetime.time(20, 0))

        after = [manager.engine.next_occurrence(s, SUMMER_NOW) for s in (morning, evening)]
        assert before == [utc(2024, 7, 2, 12, 0), utc(2024, 7, 2, 0, 0)]
        assert after == [utc(2024, 7, 2, 7, 0), utc(2024, 7, 1, 19, 0)]
        assert before[0] - after[0] == datetime.timedelta(hours=event.offset_change_hours)

    def test_audit_rows(self, manager, event, morning):
        manager.apply_adjustments(
            event, manager.propose_adjustments(event, [morning], AdjustmentStrategy.KEEP_LOCAL_TIME)
        )

        adjustment = ScheduleAdjustment.objects.get()
        assert adjustment.strategy == AdjustmentStrategy.KEEP_LOCAL_TIME
        assert adjustment.step == 0
        assert (adjustment.previous_zone, adjustment.new_zone) == (NEW_YORK, LONDON)
        assert adjustment.previous_time == adjustment.new_time == datetime.time(8, 0)
        assert adjustment.applied_at == SUMMER_NOW

    def test_reminders_replanned(self, manager, event, morning, reminders):
        """
        Given a week of New York reminders (12:00 UTC) planned on 2024-07-01
        When the schedule moves to London keeping 08:00 local
        Then those reminders are cancelled and a week of 07:00 UTC ones replaces them
        """
        MedicationService(manager.engine, reminders=reminders).refresh_reminders([morning])
        assert upcoming_reminders(reminders, morning) == [utc(2024, 7, day, 12, 0) for day in range(1, 8)]

        manager.apply_adjustments(
            event, manager.propose_adjustments(event, [morning], AdjustmentStrategy.KEEP_LOCAL_TIME)
        )

        assert upcoming_reminders(reminders, morning) == [utc(2024, 7, day, 7, 0) for day in range(2, 9)]


@pytest.mark.django_db
class TestKeepAbsoluteTime:

    def test_next_instant_unchanged(self, manager, event, morning, evening):
        """The stored civil time compensates so the next dose lands at the same instant."""
        before = [manager.engine.next_occurrence(s, SUMMER_NOW) for s in (morning, evening)]

        proposals = manager.propose_adjustments(event, [morning, evening], AdjustmentStrategy.KEEP_ABSOLUTE_TIME)
        manager.apply_adjustments(event, proposals)

        morning, evening = refreshed(morning, evening)
        assert (morning.reference_zone, morning.time_of_day) == (LONDON, datetime.time(13, 0))
        assert evening.time_of_day == datetime.time(1, 0)
        assert [manager.engine.next_occurrence(s, SUMMER_NOW) for s in (morning, evening)] == before


@pytest.mark.django_db
class TestGradualShift:

    def test_interpolates_toward_local_time(self, manager, event, morning):
        """
        Given an 08:00 New York schedule (13:00 in London)
        When shifted gradually over 3 days
        Then it moves 13:00 -> 11:20 -> 09:40 -> 08:00, one step per day,
        starting on the transition day and reaching local time on day 3
        """
        proposals = manager.propose_adjustments(event, [morning], AdjustmentStrategy.GRADUAL_SHIFT)

        assert [p.step for p in proposals] == [1, 2, 3]
        assert [p.new_time for p in proposals] == [
            datetime.time(11, 20), datetime.time(9, 40), datetime.time(8, 0),
        ]
        assert [p.effective_date for p in proposals] == [
            datetime.date(2024, 7, 1), datetime.date(2024, 7, 2), datetime.date(2024, 7, 3),
        ]
        assert proposals[1].previous_time == datetime.time(11, 20)
        assert proposals[1].previous_zone == LONDON

    def test_first_step_applied_rest_stored(self, manager, event, morning):
        proposals = manager.propose_adjustments(event, [morning], AdjustmentStrategy.GRADUAL_SHIFT)

        applied = manager.apply_adjustments(event, proposals)

        morning.refresh_from_db()
        assert [a.step for a in applied] == [1]
        assert morning.time_of_day == datetime.time(11, 20)
        assert ScheduleAdjustment.objects.filter(applied_at__isnull=True).count() == 2

    def test_due_steps_applied_in_order(self, manager, event, morning):
        manager.apply_adjustments(
            event, manager.propose_adjustments(event, [morning], AdjustmentStrategy.GRADUAL_SHIFT)
        )

        first = manager.apply_due_gradual_steps(today=datetime.date(2024, 7, 2))
        morning.refresh_from_db()
        assert [a.step for a in first] == [2]
        assert morning.time_of_day == datetime.time(9, 40)

        rest = manager.apply_due_gradual_steps(today=datetime.date(2024, 7, 3))
        morning.refresh_from_db()
        assert [a.step for a in rest] == [3]
        assert morning.time_of_day == datetime.time(8, 0)
        assert not ScheduleAdjustment.objects.filter(applied_at__isnull=True).exists()

    def test_nothing_due_before_effective_date(self, manager, event, morning):
        manager.apply_adjustments(
            event, manager.propose_adjustments(event, [morning], AdjustmentStrategy.GRADUAL_SHIFT)
        )
        assert manager.apply_due_gradual_steps(today=datetime.date(2024, 7, 1)) == []

    def test_step_count_override(self, manager, event, morning):
        proposals = manager.propose_adjustments(
            event, [morning], AdjustmentStrategy.GRADUAL_SHIFT, gradual_steps=5
        )
        assert len(proposals) == 5
        assert proposals[-1].new_time == datetime.time(8, 0)

    def test_invalid_step_count(self, manager, event, morning):
        with pytest.raises(InvalidRange):
            manager.propose_adjustments(event, [morning], AdjustmentStrategy.GRADUAL_SHIFT, gradual_steps=-1)

    def test_interpolation_wraps_midnight(self):
        assert interpolate_times(datetime.time(23, 0), datetime.time(1, 0), 2) == [
            datetime.time(0, 0), datetime.time(1, 0),
        ]

    def test_interpolation_takes_short_way_round(self):
        """22:00 -> 06:00 goes forward through midnight (8h), not back 16h."""
        assert interpolate_times(datetime.time(22, 0), datetime.time(6, 0), 4) == [
            datetime.time(0, 0), datetime.time(2, 0), datetime.time(4, 0), datetime.time(6, 0),
        ]


@pytest.mark.django_db
class TestCustom:

    def test_caller_supplied_times(self, manager, event, morning, evening):
        proposals = manager.propose_adjustments(
            event, [morning, evening], AdjustmentStrategy.CUSTOM,
            custom_times={str(morning.id): datetime.time(9, 15)},
        )
        manager.apply_adjustments(event, proposals)

        morning, evening = refreshed(morning, evening)
        assert (morning.reference_zone, morning.time_of_day) == (LONDON, datetime.time(9, 15))
        assert (evening.reference_zone, evening.time_of_day) == (NEW_YORK, datetime.time(20, 0))

    def test_requires_times(self, manager, event, morning):
        with pytest.raises(EmptyField):
            manager.propose_adjustments(event, [morning], AdjustmentStrategy.CUSTOM)

    def test_unknown_schedule(self, manager, event, morning):
        with pytest.raises(InvalidRelationship):
            manager.propose_adjustments(
                event, [morning], AdjustmentStrategy.CUSTOM,
                custom_times={'00000000-0000-0000-0000-000000000000': datetime.time(9, 0)},
            )


@pytest.mark.django_db
class TestApplyRules:

    def test_pending_event_cannot_be_applied(self, manager, morning):
        pending = manager.handle_zone_change(NEW_YORK, LONDON)
        proposals = manager.propose_adjustments(pending, [morning], AdjustmentStrategy.KEEP_LOCAL_TIME)

        with pytest.raises(BusinessRuleViolation):
            manager.apply_adjustments(pending, proposals)

        morning.refresh_from_db()
        assert morning.reference_zone == NEW_YORK

    def test_discarded_event_has_no_proposals(self, manager, morning):
        discarded = manager.discard(manager.handle_zone_change(NEW_YORK, LONDON))
        assert discarded.status == TransitionStatus.DISCARDED

        with pytest.raises(BusinessRuleViolation):
            manager.propose_adjustments(discarded, [morning], AdjustmentStrategy.KEEP_LOCAL_TIME)

    def test_reapplying_is_rejected(self, manager, event, morning):
        proposals = manager.propose_adjustments(event, [morning], AdjustmentStrategy.KEEP_LOCAL_TIME)
        manager.apply_adjustments(event, proposals)

        with pytest.raises(BusinessRuleViolation):
            manager.apply_adjustments(event, proposals)

    def test_reanchored_schedule_is_no_longer_affected(self, manager, event, morning):
        manager.apply_adjustments(
            event, manager.propose_adjustments(event, [morning], AdjustmentStrategy.KEEP_LOCAL_TIME)
        )
        morning.refresh_from_db()
        assert manager.propose_adjustments(event, [morning], AdjustmentStrategy.KEEP_ABSOLUTE_TIME) == []

    def test_unknown_strategy(self, manager, event, morning):
        with pytest.raises(InvalidValue) as exc_info:
            manager.propose_adjustments(event, [morning], 'teleport')
        assert 'strategy' in exc_info.value.message_dict
