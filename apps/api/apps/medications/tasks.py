"""
Celery tasks for reminder upkeep.
"""
from celery import shared_task


@shared_task(name='apps.medications.tasks.refresh_reminders')
def refresh_reminders():
    """
    Roll every enabled schedule's reminder window forward.

    Reminder ids are per occurrence, so re-requesting ones already out is
    harmless.
    """
    from .services import build_medication_service, enabled_schedules

    schedules = enabled_schedules()
    build_medication_service().refresh_reminders(schedules)
    return f"Refreshed reminders for {len(schedules)} schedules"
