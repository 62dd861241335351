"""
Celery tasks for dose generation and history retention.
"""
import datetime
from collections import defaultdict

from celery import shared_task

from apps.core.conf import tracker_setting
from apps.core.observability import get_sanitized_logger

logger = get_sanitized_logger(__name__)


@shared_task(name='apps.doses.tasks.generate_daily_doses')
def generate_daily_doses():
    """
    Create today's pending doses for every enabled time-of-day schedule.

    "Today" is the civil date in each schedule's reference zone, so
    schedules are grouped by zone. Safe to run repeatedly.
    """
    from apps.medications.services import enabled_time_of_day_schedules
    from .tracker import build_dose_tracker

    tracker = build_dose_tracker()
    now = tracker.clock.now()

    by_zone = defaultdict(list)
    for schedule in enabled_time_of_day_schedules():
        by_zone[schedule.reference_zone].append(schedule)

    created = 0
    for zone, schedules in by_zone.items():
        today = tracker.clock.local_date(now, zone)
        created += len(tracker.create_doses_for_date(schedules, today))

    return f"Created {created} doses across {len(by_zone)} zones"


@shared_task(name='apps.doses.tasks.purge_dose_history')
def purge_dose_history():
    """Delete dose records older than MEDTRACKER['DOSE_HISTORY_RETENTION_DAYS']."""
    from .tracker import build_dose_tracker

    tracker = build_dose_tracker()
    older_than = tracker.clock.now() - datetime.timedelta(days=tracker_setting('DOSE_HISTORY_RETENTION_DAYS'))
    deleted = tracker.purge_history(older_than)
    return f"Purged {deleted} dose records"
