"""
Pytest configuration for the entire test suite.

This file configures test database to use SQLite for faster tests.
"""
import django
from django.conf import settings


def pytest_configure():
    """Configure Django settings for tests."""
    # Force SQLite for tests (in-memory, no external database)
    settings.DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',
        }
    }

    # Broker is never contacted; tasks are called directly
    settings.CELERY_TASK_ALWAYS_EAGER = True

    django.setup()
