"""
Reminder scheduler boundary.

The core only hands over an opaque identifier and an instant. Delivering
the reminder (OS notification, push, e-mail) belongs to the host.

Each occurrence in the next MEDTRACKER['REMINDER_DAYS_AHEAD'] days gets its
own reminder. Identifiers are derived from the schedule and the occurrence
instant, so the reminders a schedule has out can be recomputed from its
state before it changes.
"""
import datetime

import pytz
from django.utils.module_loading import import_string

from apps.core.conf import tracker_setting
from apps.core.observability import get_sanitized_logger

logger = get_sanitized_logger(__name__)


def reminder_id_for(schedule, instant):
    """Identifier for one occurrence: schedule id plus the UTC minute."""
    return f'schedule-{schedule.id}-{instant.astimezone(pytz.utc):%Y%m%dT%H%MZ}'


def plan_reminders(engine, schedule, now):
    """Reminder id -> instant for every occurrence in the reminder window."""
    horizon = now + datetime.timedelta(days=tracker_setting('REMINDER_DAYS_AHEAD'))
    return {
        reminder_id_for(schedule, instant): instant
        for instant in engine.occurrences_between(schedule, now, horizon)
    }


def sync_reminders(reminders, previous, planned):
    """Cancel reminders that are no longer planned, then schedule the plan."""
    for reminder_id in sorted(previous.keys() - planned.keys()):
        reminders.cancel(reminder_id)
    for reminder_id, instant in planned.items():
        reminders.schedule(reminder_id, instant)


class ReminderScheduler:
    """Interface implemented by the host's reminder delivery."""

    def schedule(self, reminder_id, instant):
        raise NotImplementedError

    def cancel(self, reminder_id):
        raise NotImplementedError


class LoggingReminderScheduler(ReminderScheduler):
    """
    Default scheduler: records requests and logs them.

    Keeps the last requested instant per identifier so callers (and tests)
    can inspect what would have been delivered.
    """

    def __init__(self):
        self.scheduled = {}

    def schedule(self, reminder_id, instant):
        self.scheduled[reminder_id] = instant
        logger.info(
            'Reminder scheduled',
            extra={
                'event': 'reminder_scheduled',
                'reminder_id': reminder_id,
                'instant': instant.isoformat(),
            }
        )

    def cancel(self, reminder_id):
        self.scheduled.pop(reminder_id, None)
        logger.info(
            'Reminder cancelled',
            extra={'event': 'reminder_cancelled', 'reminder_id': reminder_id}
        )


def get_reminder_scheduler():
    """Instantiate the scheduler configured in MEDTRACKER['REMINDER_SCHEDULER']."""
    return import_string(tracker_setting('REMINDER_SCHEDULER'))()
