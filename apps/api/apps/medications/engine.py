"""
ScheduleEngine - recurrence rules for medication schedules.

Pure computations over Schedule rows: validation, due-day checks and
next-occurrence instants. All civil-time work is delegated to ZoneClock.
"""
import datetime

from apps.core.choices import parse_choice
from apps.core.exceptions import (
    BusinessRuleViolation,
    EmptyField,
    InvalidRange,
    InvalidRelationship,
    InvalidValue,
)
from apps.medications.models import ALL_DAYS_MASK, DayOfWeek, ScheduleKind
from apps.timezones.clock import CivilDateTime


def civil_time(hour, minute):
    """Build a minute-precision civil time, rejecting out-of-range fields."""
    if not isinstance(hour, int) or not 0 <= hour <= 23:
        raise InvalidRange('hour', min_value=0, max_value=23)
    if not isinstance(minute, int) or not 0 <= minute <= 59:
        raise InvalidRange('minute', min_value=0, max_value=59)
    return datetime.time(hour, minute)


class ScheduleEngine:
    """
    Recurrence computations for Schedule instances.

    Usage:
        engine = ScheduleEngine(ZoneClock())
        engine.validate(schedule)
        engine.next_occurrence(schedule, after_instant)
    """

    # The mask repeats weekly. Day 7 is only reached when day 0 is due but its
    # time has already passed, so a single-day mask always yields a result.
    SCAN_DAYS = 8

    def __init__(self, clock):
        self.clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, schedule):
        """
        Validate a schedule before it is committed.

        Raises:
            InvalidRelationship: no owning medication
            EmptyField / InvalidValue: kind, zone or time missing or unknown
            UnknownZone: reference_zone not in the zone catalog
            InvalidRange: mask, time fields or interval out of range
            BusinessRuleViolation: empty mask, or enabled with inactive medication
        """
        if schedule.medication_id is None:
            raise InvalidRelationship('medication', 'schedule must belong to a medication')

        kind = parse_choice(ScheduleKind, schedule.kind, 'kind')

        if not schedule.reference_zone:
            raise EmptyField('reference_zone')
        self.clock.canonical_zone(schedule.reference_zone, field='reference_zone')

        if kind == ScheduleKind.TIME_OF_DAY:
            self._validate_time_of_day(schedule)
        elif kind == ScheduleKind.INTERVAL:
            self._validate_interval(schedule)

        if schedule.is_enabled and not schedule.medication.is_active:
            raise BusinessRuleViolation(
                'a schedule can only be enabled while its medication is active',
                field='is_enabled'
            )

    def _validate_time_of_day(self, schedule):
        value = schedule.time_of_day
        if value is None:
            raise EmptyField('time_of_day')
        if not isinstance(value, datetime.time):
            raise InvalidValue('time_of_day', 'must be a civil time of day')
        civil_time(value.hour, value.minute)
        if value.second or value.microsecond:
            raise InvalidValue('time_of_day', 'must have minute precision')

        mask = schedule.days_of_week
        if not isinstance(mask, int) or isinstance(mask, bool) or not 0 <= mask <= ALL_DAYS_MASK:
            raise InvalidRange('days_of_week', min_value=0, max_value=ALL_DAYS_MASK)
        if mask == 0:
            raise BusinessRuleViolation('at least one day of the week must be selected', field='days_of_week')

    def _validate_interval(self, schedule):
        if schedule.interval_minutes is None or schedule.interval_minutes <= 0:
            raise InvalidRange('interval_minutes', min_value=0)
        if schedule.anchor_instant is None:
            raise EmptyField('anchor_instant')

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    def is_due_on(self, schedule, civil_date):
        """Enabled time-of-day schedule whose mask includes the weekday of ``civil_date``."""
        if not schedule.is_enabled or schedule.kind != ScheduleKind.TIME_OF_DAY:
            return False
        return bool(schedule.days_of_week & DayOfWeek.for_date(civil_date).bit)

    def occurrence_on(self, schedule, civil_date):
        """
        Resolution of the scheduled instant on ``civil_date`` (reference zone),
        or None when the schedule is not due that day.

        Gap days shift forward, fold days take the first occurrence.
        """
        if not self.is_due_on(schedule, civil_date):
            return None
        civil = CivilDateTime.combine(civil_date, schedule.time_of_day)
        return self.clock.resolve(civil, schedule.reference_zone)

    def next_occurrence(self, schedule, after_instant):
        """
        First occurrence strictly after ``after_instant``, or None.

        Interval schedules never run before their anchor: any instant earlier
        than ``anchor_instant`` yields the anchor itself.
        """
        if not schedule.is_enabled or schedule.kind == ScheduleKind.AS_NEEDED:
            return None
        if schedule.kind == ScheduleKind.INTERVAL:
            return self._next_interval_occurrence(schedule, after_instant)

        start_date = self.clock.local_date(after_instant, schedule.reference_zone)
        for offset in range(self.SCAN_DAYS):
            resolution = self.occurrence_on(schedule, start_date + datetime.timedelta(days=offset))
            if resolution is None:
                continue
            if resolution.instant <= after_instant:
                continue
            return resolution.instant
        return None

    def _next_interval_occurrence(self, schedule, after_instant):
        # anchor + n * interval with n >= 0
        anchor = schedule.anchor_instant
        step = schedule.interval
        if after_instant < anchor:
            return anchor
        n = (after_instant - anchor) // step + 1
        return anchor + n * step

    def occurrences_between(self, schedule, start, end):
        """
        All occurrence instants in [start, end), ascending.

        Interval occurrences start at the anchor, never before it.
        """
        if not schedule.is_enabled or schedule.kind == ScheduleKind.AS_NEEDED or end <= start:
            return []

        if schedule.kind == ScheduleKind.INTERVAL:
            anchor = schedule.anchor_instant
            step = schedule.interval
            n = 0 if start <= anchor else -((anchor - start) // step)
            instants = []
            current = anchor + n * step
            while current < end:
                instants.append(current)
                current += step
            return instants

        zone = schedule.reference_zone
        day = self.clock.local_date(start, zone)
        last_day = self.clock.local_date(end, zone)
        instants = []
        while day <= last_day:
            resolution = self.occurrence_on(schedule, day)
            if resolution is not None and start <= resolution.instant < end:
                instants.append(resolution.instant)
            day += datetime.timedelta(days=1)
        return instants

    def next_scheduled_time(self, schedules, after_instant):
        """Earliest next occurrence across ``schedules``, or None."""
        upcoming = [
            instant for instant in (self.next_occurrence(s, after_instant) for s in schedules)
            if instant is not None
        ]
        return min(upcoming) if upcoming else None
