"""
Tests for TransitionManager detection, recording, debouncing, resolution,
dose association and retention.
"""
import datetime
import itertools

import pytest
import pytz

from apps.core.exceptions import (
    BusinessRuleViolation,
    InvalidDate,
    InvalidRange,
    InvalidValue,
    UnknownZone,
)
from apps.doses.models import DoseRecord, DoseStatus
from apps.medications.engine import ScheduleEngine
from apps.timezones.clock import ZoneClock
from apps.transitions.manager import TransitionManager
from apps.transitions.models import DetectionMethod, TransitionEvent, TransitionStatus
from apps.transitions.signals import transition_detected, zone_changed
from apps.transitions.tasks import process_zone_change

NEW_YORK = 'America/New_York'
LONDON = 'Europe/London'
SUMMER_NOW = datetime.datetime(2024, 7, 1, 12, 0, tzinfo=pytz.utc)


def record(manager, previous_zone, new_zone, at=None, confirmed=True):
    event = manager.detect(previous_zone, new_zone, at=at)
    event.user_confirmed = confirmed
    return manager.record_transition(event)


@pytest.mark.django_db
class TestDetection:

    def test_detect_builds_candidate(self, manager):
        event = manager.detect(NEW_YORK, LONDON, detection_method=DetectionMethod.LOCATION, location='Heathrow')

        assert event.previous_zone == NEW_YORK
        assert event.new_zone == LONDON
        assert event.transition_instant == SUMMER_NOW
        assert event.detection_method == DetectionMethod.LOCATION
        assert event.status == TransitionStatus.PENDING
        assert event.pk is not None and not TransitionEvent.objects.exists()

    def test_same_zone_is_no_change(self, manager):
        assert manager.detect(NEW_YORK, NEW_YORK) is None

    def test_alias_is_no_change(self, manager):
        """US/Eastern and America/New_York follow identical rules."""
        assert manager.detect('US/Eastern', NEW_YORK) is None

    def test_same_offset_different_rules_is_a_change(self, manager):
        assert manager.detect(LONDON, 'Europe/Lisbon') is not None

    def test_unknown_zone(self, manager):
        with pytest.raises(UnknownZone) as exc_info:
            manager.detect(NEW_YORK, 'Mars/Olympus_Mons')
        assert 'new_zone' in exc_info.value.message_dict

    def test_unknown_detection_method(self, manager):
        with pytest.raises(InvalidValue):
            manager.detect(NEW_YORK, LONDON, detection_method='telepathy')

    def test_date_line_crossing_is_one_event(self, manager):
        """
        Given a move from UTC+12 to UTC-11
        When the change is handled
        Then exactly one event exists, with a 23-hour backward offset change
        """
        event = manager.handle_zone_change('Etc/GMT-12', 'Etc/GMT+11')

        assert TransitionEvent.objects.count() == 1
        assert event.offset_change_hours == -23
        assert event.is_backward_change
        assert event.change_magnitude_hours == 23


@pytest.mark.django_db
class TestRecordTransition:

    def test_confirmed_event(self, manager):
        event = record(manager, NEW_YORK, LONDON)

        assert event.status == TransitionStatus.CONFIRMED
        assert event.resolved_at == SUMMER_NOW
        assert event.created_at == SUMMER_NOW
        assert event.offset_change_hours == 5
        assert event.is_forward_change

    def test_same_zone_rejected(self, manager):
        event = TransitionEvent(previous_zone=LONDON, new_zone=LONDON, transition_instant=SUMMER_NOW)
        with pytest.raises(BusinessRuleViolation):
            manager.record_transition(event)

    def test_alias_rejected(self, manager):
        event = TransitionEvent(previous_zone='US/Eastern', new_zone=NEW_YORK, transition_instant=SUMMER_NOW)
        with pytest.raises(BusinessRuleViolation):
            manager.record_transition(event)

    def test_future_instant_rejected(self, manager):
        with pytest.raises(InvalidDate):
            record(manager, NEW_YORK, LONDON, at=SUMMER_NOW + datetime.timedelta(minutes=1))
        assert not TransitionEvent.objects.exists()

    def test_older_than_retention_rejected(self, manager):
        with pytest.raises(InvalidDate):
            record(manager, NEW_YORK, LONDON, at=SUMMER_NOW - datetime.timedelta(days=731))

    def test_location_too_long(self, manager):
        event = manager.detect(NEW_YORK, LONDON, location='x' * 201)
        with pytest.raises(InvalidRange) as exc_info:
            manager.record_transition(event)
        assert 'location' in exc_info.value.message_dict

    def test_second_pending_rejected(self, manager):
        record(manager, NEW_YORK, LONDON, confirmed=False)
        with pytest.raises(BusinessRuleViolation):
            record(manager, LONDON, 'Europe/Paris', confirmed=False)

    def test_detected_signal_sent(self, manager):
        received = []

        def on_detected(sender, **kwargs):
            received.append(kwargs)

        transition_detected.connect(on_detected)
        try:
            event = record(manager, NEW_YORK, LONDON)
        finally:
            transition_detected.disconnect(on_detected)

        assert received[0]['transition_event_id'] == str(event.id)
        assert received[0]['superseded_event_id'] is None


@pytest.mark.django_db
class TestDebounce:

    def test_newer_detection_supersedes_pending(self, manager):
        """
        Given a pending New York -> Chicago candidate
        When Denver is detected before confirmation
        Then one pending New York -> Denver candidate remains
        """
        first = manager.handle_zone_change(NEW_YORK, 'America/Chicago')

        second = manager.handle_zone_change('America/Chicago', 'America/Denver')

        first.refresh_from_db()
        assert second.previous_zone == NEW_YORK
        assert second.new_zone == 'America/Denver'
        assert first.status == TransitionStatus.SUPERSEDED
        assert first.superseded_by_id == second.id
        assert TransitionEvent.objects.filter(status=TransitionStatus.PENDING).count() == 1

    def test_repeat_detection_returns_pending(self, manager):
        first = manager.handle_zone_change(NEW_YORK, LONDON)
        again = manager.handle_zone_change(NEW_YORK, LONDON)

        assert again.id == first.id
        assert TransitionEvent.objects.count() == 1

    def test_return_to_origin_discards(self, manager):
        pending = manager.handle_zone_change(NEW_YORK, LONDON)

        result = manager.handle_zone_change(LONDON, NEW_YORK)

        pending.refresh_from_db()
        assert result is None
        assert pending.status == TransitionStatus.DISCARDED
        assert manager.pending_event() is None

    def test_equivalent_zone_without_pending(self, manager):
        assert manager.handle_zone_change('US/Eastern', NEW_YORK) is None
        assert not TransitionEvent.objects.exists()

    def test_running_clock_stamps_detection_time(self, reminders):
        """
        Given a clock that advances on every read
        When a zone change arrives without an explicit instant
        Then it is recorded as pending at the instant the change was handled
        """
        ticks = itertools.count()
        clock = ZoneClock(now=lambda: SUMMER_NOW + datetime.timedelta(milliseconds=next(ticks)))
        manager = TransitionManager(clock, ScheduleEngine(clock), reminders=reminders)

        event = manager.handle_zone_change(NEW_YORK, LONDON)

        assert event.status == TransitionStatus.PENDING
        assert event.transition_instant <= clock.now()
        assert event.transition_instant == event.created_at


@pytest.mark.django_db
class TestResolution:

    def test_confirm(self, manager):
        pending = manager.handle_zone_change(NEW_YORK, LONDON)

        event = manager.confirm(pending)

        assert event.status == TransitionStatus.CONFIRMED
        assert event.user_confirmed
        assert manager.pending_event() is None
        assert manager.most_recent_event(confirmed_only=True).id == event.id

    def test_discard(self, manager):
        pending = manager.handle_zone_change(NEW_YORK, LONDON)

        event = manager.discard(pending)

        assert event.status == TransitionStatus.DISCARDED
        assert not event.user_confirmed

    def test_resolved_event_is_final(self, manager):
        event = manager.confirm(manager.handle_zone_change(NEW_YORK, LONDON))
        with pytest.raises(BusinessRuleViolation):
            manager.discard(event)

    def test_fetch_events(self, manager):
        confirmed = record(manager, NEW_YORK, LONDON, at=SUMMER_NOW - datetime.timedelta(days=2))
        pending = manager.handle_zone_change(LONDON, 'Europe/Paris')

        assert [e.id for e in manager.fetch_events()] == [pending.id, confirmed.id]
        assert [e.id for e in manager.fetch_events(status='confirmed')] == [confirmed.id]
        assert [e.id for e in manager.fetch_events(start=SUMMER_NOW - datetime.timedelta(days=1))] == [pending.id]


@pytest.mark.django_db
class TestDoseAssociation:

    @pytest.fixture
    def dose_at(self, schedule):
        def _dose(instant, date):
            return DoseRecord.objects.create(
                schedule=schedule,
                medication=schedule.medication,
                scheduled_instant=instant,
                scheduled_date=date,
                status=DoseStatus.PENDING,
                recorded_zone=NEW_YORK,
            )
        return _dose

    def test_links_doses_within_window(self, manager, dose_at):
        near = dose_at(SUMMER_NOW + datetime.timedelta(hours=20), datetime.date(2024, 7, 2))
        far = dose_at(SUMMER_NOW + datetime.timedelta(hours=30), datetime.date(2024, 7, 3))
        event = record(manager, NEW_YORK, LONDON)

        linked = manager.associate_affected_doses(event, manager.doses_near(event))

        assert [d.id for d in linked] == [near.id]
        far.refresh_from_db()
        assert far.transition_event is None

    def test_nearest_event_wins(self, manager, dose_at):
        dose = dose_at(SUMMER_NOW, datetime.date(2024, 7, 1))
        older = record(manager, NEW_YORK, LONDON, at=SUMMER_NOW - datetime.timedelta(hours=10))
        newer = record(manager, LONDON, 'Europe/Paris', at=SUMMER_NOW - datetime.timedelta(hours=2))

        manager.associate_affected_doses(older, manager.doses_near(older))
        manager.associate_affected_doses(newer, manager.doses_near(newer))
        relinked = manager.associate_affected_doses(older, manager.doses_near(older))

        dose.refresh_from_db()
        assert dose.transition_event_id == newer.id
        assert relinked == []


@pytest.mark.django_db
class TestRetention:

    def test_purge_keeps_pending(self, manager):
        confirmed = record(manager, NEW_YORK, LONDON, at=SUMMER_NOW - datetime.timedelta(days=10))
        pending = manager.handle_zone_change(LONDON, 'Europe/Paris')

        deleted = manager.purge_events(SUMMER_NOW + datetime.timedelta(days=1))

        assert deleted == 1
        assert not TransitionEvent.objects.filter(id=confirmed.id).exists()
        assert TransitionEvent.objects.filter(id=pending.id).exists()


@pytest.mark.django_db
class TestZoneChangeEntryPoints:

    def test_zone_changed_signal_records_pending(self):
        zone_changed.send(sender=None, previous_zone=NEW_YORK, current_zone=LONDON)

        event = TransitionEvent.objects.get()
        assert event.status == TransitionStatus.PENDING
        assert event.detection_method == DetectionMethod.AUTOMATIC

    def test_task_returns_event_id(self):
        event_id = process_zone_change(NEW_YORK, LONDON, detection_method='manual')

        event = TransitionEvent.objects.get()
        assert event_id == str(event.id)
        assert event.detection_method == DetectionMethod.MANUAL

    def test_task_rejects_naive_instant(self):
        with pytest.raises(InvalidValue):
            process_zone_change(NEW_YORK, LONDON, changed_at='2024-07-01T12:00:00')
