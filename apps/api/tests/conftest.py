"""
Global test fixtures for pytest.

Provides reusable fixtures for engine and API testing:
- Fixed clocks (ZoneClock with an injected "now")
- Services wired the way the composition root wires them
- Model instances (Medication, Schedule)
- Authenticated API client
"""
import datetime
from decimal import Decimal

import pytest
import pytz
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from apps.core.reminders import LoggingReminderScheduler
from apps.doses.tracker import DoseTracker
from apps.medications.engine import ScheduleEngine
from apps.medications.models import ScheduleKind
from apps.medications.services import MedicationService
from apps.timezones.clock import ZoneClock
from apps.transitions.manager import TransitionManager

# 01:30 EST on the morning of the 2024 US spring-forward
FIXED_NOW = datetime.datetime(2024, 3, 10, 6, 30, tzinfo=pytz.utc)
# 08:00 EDT / 13:00 BST
SUMMER_NOW = datetime.datetime(2024, 7, 1, 12, 0, tzinfo=pytz.utc)

NEW_YORK = 'America/New_York'


# ============================================================================
# Clock & services
# ============================================================================

@pytest.fixture
def clock():
    """ZoneClock frozen at FIXED_NOW."""
    return ZoneClock(now=lambda: FIXED_NOW)


@pytest.fixture
def summer_clock():
    """ZoneClock frozen at SUMMER_NOW."""
    return ZoneClock(now=lambda: SUMMER_NOW)


@pytest.fixture
def engine(clock):
    return ScheduleEngine(clock)


@pytest.fixture
def reminders():
    return LoggingReminderScheduler()


@pytest.fixture
def medication_service(engine, reminders):
    return MedicationService(engine, reminders=reminders)


@pytest.fixture
def tracker(clock, engine):
    return DoseTracker(clock, engine, zone=NEW_YORK)


@pytest.fixture
def manager(summer_clock, reminders):
    return TransitionManager(summer_clock, ScheduleEngine(summer_clock), reminders=reminders, gradual_steps=3)


# ============================================================================
# Model instances
# ============================================================================

@pytest.fixture
def medication(db, medication_service):
    """Active medication started well before the fixed clocks."""
    return medication_service.create_medication(
        name='Metformin',
        dosage_amount=Decimal('500'),
        dosage_unit='mg',
        start_date=datetime.date(2024, 1, 1),
    )


@pytest.fixture
def schedule(db, medication_service, medication):
    """Daily 08:00 America/New_York schedule."""
    return medication_service.create_schedule(
        medication,
        kind=ScheduleKind.TIME_OF_DAY,
        reference_zone=NEW_YORK,
        time_of_day=datetime.time(8, 0),
    )


@pytest.fixture
def schedule_factory(db, medication_service, medication):
    """
    Factory fixture for creating schedules on the shared medication.
    """
    def _create_schedule(**kwargs):
        fields = {
            'kind': ScheduleKind.TIME_OF_DAY,
            'reference_zone': NEW_YORK,
            'time_of_day': datetime.time(8, 0),
        }
        fields.update(kwargs)
        return medication_service.create_schedule(medication, **fields)
    return _create_schedule


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(
        username='tracker',
        email='tracker@test.com',
        password='testpass123',
    )


@pytest.fixture
def authenticated_client(user):
    """Authenticated API client."""
    client = APIClient()
    client.force_authenticate(user=user)
    return client
