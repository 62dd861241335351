"""
Access to the MEDTRACKER settings block with defaults.
"""
from django.conf import settings

DEFAULTS = {
    'TRANSITION_RETENTION_DAYS': 730,
    'GRADUAL_SHIFT_STEPS': 3,
    'DOSE_ASSOCIATION_WINDOW_HOURS': 24,
    'ACTUAL_TIME_FUTURE_TOLERANCE_MINUTES': 60,
    'ACTUAL_TIME_MAX_EARLY_DAYS': 7,
    'SCHEDULED_TIME_HORIZON_DAYS': 730,
    'DOSE_HISTORY_RETENTION_DAYS': 365,
    'REMINDER_DAYS_AHEAD': 7,
    'DEFAULT_ZONE': 'UTC',
    'REMINDER_SCHEDULER': 'apps.core.reminders.LoggingReminderScheduler',
}


def tracker_settings():
    """Return project MEDTRACKER settings merged over the defaults."""
    merged = dict(DEFAULTS)
    merged.update(getattr(settings, 'MEDTRACKER', {}))
    return merged


def tracker_setting(name):
    return tracker_settings()[name]
