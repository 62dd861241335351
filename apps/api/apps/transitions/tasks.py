"""
Celery tasks for zone-change processing and transition housekeeping.
"""
import datetime

from celery import shared_task
from django.utils.dateparse import parse_datetime

from apps.core.conf import tracker_setting
from apps.core.exceptions import InvalidValue


@shared_task(name='apps.transitions.tasks.process_zone_change')
def process_zone_change(previous_zone, current_zone, changed_at=None, detection_method='automatic'):
    """
    Asynchronous entry point for zone-change notifications.

    Args:
        previous_zone: zone identifier before the change
        current_zone: zone identifier after the change
        changed_at: ISO-8601 instant (with offset); defaults to now
        detection_method: 'automatic', 'manual' or 'location'

    Returns:
        id of the pending TransitionEvent, or None when nothing is pending
    """
    from .manager import build_transition_manager

    at = None
    if changed_at:
        at = parse_datetime(changed_at)
        if at is None or at.tzinfo is None:
            raise InvalidValue('changed_at', 'must be an ISO-8601 instant with offset')

    event = build_transition_manager().handle_zone_change(
        previous_zone, current_zone, at=at, detection_method=detection_method
    )
    return str(event.id) if event else None


@shared_task(name='apps.transitions.tasks.apply_due_gradual_steps')
def apply_due_gradual_steps():
    """Apply gradual-shift steps whose effective date has arrived."""
    from .manager import build_transition_manager

    applied = build_transition_manager().apply_due_gradual_steps()
    return f"Applied {len(applied)} gradual shift steps"


@shared_task(name='apps.transitions.tasks.purge_transition_events')
def purge_transition_events():
    """Delete resolved events older than MEDTRACKER['TRANSITION_RETENTION_DAYS']."""
    from .manager import build_transition_manager

    manager = build_transition_manager()
    older_than = manager.clock.now() - datetime.timedelta(days=tracker_setting('TRANSITION_RETENTION_DAYS'))
    deleted = manager.purge_events(older_than)
    return f"Purged {deleted} transition events"
