"""Medication models - medications and their recurring schedules."""
import datetime
import uuid
from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from apps.core.exceptions import EmptyField, InvalidDate, InvalidRange, InvalidValue

MAX_START_DATE_YEARS_AHEAD = 5
MAX_DOSAGE_AMOUNT = Decimal('100000')


class Medication(models.Model):
    """
    A medication the user takes.

    Business Rules:
    - dosage_amount in (0, 100000]
    - end_date (if set) on or after start_date
    - start_date at most 5 years in the future
    - deactivation sets is_active=False and an end date; rows are never deleted
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(_('Name'), max_length=200)
    dosage_amount = models.DecimalField(_('Dosage amount'), max_digits=10, decimal_places=3)
    dosage_unit = models.CharField(_('Dosage unit'), max_length=50)
    instructions = models.TextField(_('Instructions'), max_length=1000, blank=True, default='')
    prescribed_by = models.CharField(_('Prescribed by'), max_length=200, blank=True, default='')

    start_date = models.DateField(_('Start date'), default=timezone.localdate)
    end_date = models.DateField(_('End date'), null=True, blank=True)
    is_active = models.BooleanField(_('Active'), default=True)

    # Timestamps are stamped explicitly by the service layer (touch())
    created_at = models.DateTimeField(_('Created At'), default=timezone.now, editable=False)
    updated_at = models.DateTimeField(_('Updated At'), default=timezone.now)

    class Meta:
        db_table = 'medications'
        ordering = ['name']
        verbose_name = _('Medication')
        verbose_name_plural = _('Medications')
        indexes = [
            models.Index(fields=['is_active', 'name'], name='idx_medication_active_name'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(dosage_amount__gt=0),
                name='medication_dosage_positive'
            ),
        ]

    def __str__(self):
        return f"{self.name} {self.dosage_amount} {self.dosage_unit}"

    @property
    def dosage_description(self):
        return f"{self.dosage_amount.normalize():f} {self.dosage_unit}"

    def touch(self, now=None):
        self.updated_at = now or timezone.now()

    def is_current_on(self, civil_date):
        """Active and within its start/end dates on ``civil_date``."""
        if not self.is_active or civil_date < self.start_date:
            return False
        return self.end_date is None or civil_date <= self.end_date

    def clean(self):
        """
        Validate medication fields.

        Raises the first violation found as a field-keyed error.
        """
        if not (self.name or '').strip():
            raise EmptyField('name')
        if len(self.name) > 200:
            raise InvalidRange('name', max_value=200)

        if self.dosage_amount is None:
            raise EmptyField('dosage_amount')
        if not (Decimal('0') < Decimal(self.dosage_amount) <= MAX_DOSAGE_AMOUNT):
            raise InvalidRange('dosage_amount', min_value=0, max_value=MAX_DOSAGE_AMOUNT)

        if not (self.dosage_unit or '').strip():
            raise EmptyField('dosage_unit')
        if len(self.dosage_unit) > 50:
            raise InvalidRange('dosage_unit', max_value=50)

        if self.instructions and len(self.instructions) > 1000:
            raise InvalidRange('instructions', max_value=1000)
        if self.prescribed_by and len(self.prescribed_by) > 200:
            raise InvalidRange('prescribed_by', max_value=200)

        if self.start_date is None:
            raise EmptyField('start_date')
        latest_start = timezone.localdate() + datetime.timedelta(days=365 * MAX_START_DATE_YEARS_AHEAD)
        if self.start_date > latest_start:
            raise InvalidDate(
                'start_date',
                f'cannot be more than {MAX_START_DATE_YEARS_AHEAD} years in the future'
            )
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidDate('end_date', 'must be on or after start_date')


class ScheduleKind(models.TextChoices):
    TIME_OF_DAY = 'time_of_day', _('Time of day')
    INTERVAL = 'interval', _('Interval')
    AS_NEEDED = 'as_needed', _('As needed')


class DayOfWeek(models.IntegerChoices):
    """Bit positions of the day-of-week mask (bit 0 = Sunday)."""
    SUNDAY = 0, _('Sunday')
    MONDAY = 1, _('Monday')
    TUESDAY = 2, _('Tuesday')
    WEDNESDAY = 3, _('Wednesday')
    THURSDAY = 4, _('Thursday')
    FRIDAY = 5, _('Friday')
    SATURDAY = 6, _('Saturday')

    @property
    def bit(self):
        return 1 << self.value

    @classmethod
    def for_date(cls, civil_date):
        # date.weekday() is Monday=0..Sunday=6
        return cls((civil_date.weekday() + 1) % 7)


ALL_DAYS_MASK = 0b1111111          # 127
WEEKDAYS_MASK = 0b0111110          # 62, Monday..Friday
WEEKENDS_MASK = 0b1000001          # 65, Saturday + Sunday


def mask_for_days(days):
    """Build a mask from an iterable of DayOfWeek values."""
    mask = 0
    for day in days:
        mask |= DayOfWeek(day).bit
    return mask


def parse_day(value):
    try:
        return DayOfWeek(value)
    except ValueError:
        raise InvalidValue('day', f"'{value}' is not a day of the week (0=Sunday..6=Saturday)")


class Schedule(models.Model):
    """
    Recurring schedule for one medication.

    Clock values (time_of_day) are civil times in ``reference_zone``.

    Business Rules:
    - time_of_day kind: time_of_day set, days_of_week in [1, 127]
    - interval kind: interval_minutes > 0 and anchor_instant set
    - is_enabled requires the owning medication to be active
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    medication = models.ForeignKey(
        Medication,
        on_delete=models.CASCADE,
        related_name='schedules',
        verbose_name=_('Medication')
    )
    kind = models.CharField(
        _('Kind'),
        max_length=20,
        choices=ScheduleKind.choices,
        default=ScheduleKind.TIME_OF_DAY
    )
    reference_zone = models.CharField(
        _('Reference zone'),
        max_length=64,
        help_text=_('IANA zone identifier the civil times are expressed in')
    )

    # time_of_day kind
    time_of_day = models.TimeField(_('Time of day'), null=True, blank=True)
    days_of_week = models.PositiveSmallIntegerField(
        _('Days of week'),
        default=ALL_DAYS_MASK,
        help_text=_('Bitmask, bit 0 = Sunday ... bit 6 = Saturday')
    )

    # interval kind
    interval_minutes = models.PositiveIntegerField(_('Interval (minutes)'), null=True, blank=True)
    anchor_instant = models.DateTimeField(_('Anchor instant'), null=True, blank=True)

    is_enabled = models.BooleanField(_('Enabled'), default=True)

    created_at = models.DateTimeField(_('Created At'), default=timezone.now, editable=False)
    updated_at = models.DateTimeField(_('Updated At'), default=timezone.now)

    class Meta:
        db_table = 'medication_schedules'
        ordering = ['medication', 'time_of_day']
        verbose_name = _('Schedule')
        verbose_name_plural = _('Schedules')
        indexes = [
            models.Index(fields=['medication', 'is_enabled'], name='idx_schedule_med_enabled'),
            models.Index(fields=['kind', 'is_enabled'], name='idx_schedule_kind_enabled'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(days_of_week__lte=ALL_DAYS_MASK),
                name='schedule_days_of_week_range'
            ),
        ]

    def __str__(self):
        if self.kind == ScheduleKind.TIME_OF_DAY and self.time_of_day:
            return f"{self.medication_id} @ {self.time_of_day:%H:%M} {self.reference_zone}"
        if self.kind == ScheduleKind.INTERVAL:
            return f"{self.medication_id} every {self.interval_minutes}m"
        return f"{self.medication_id} as needed"

    def touch(self, now=None):
        self.updated_at = now or timezone.now()

    def clean(self):
        """Delegate to ScheduleEngine.validate (zone catalog + business rules)."""
        from apps.medications.engine import ScheduleEngine
        from apps.timezones.clock import ZoneClock
        ScheduleEngine(ZoneClock()).validate(self)

    # ------------------------------------------------------------------
    # Day-of-week mask
    # ------------------------------------------------------------------

    def enabled_days(self):
        return [day for day in DayOfWeek if self.days_of_week & day.bit]

    def is_day_enabled(self, day):
        return bool(self.days_of_week & parse_day(day).bit)

    def enable_day(self, day):
        self.days_of_week |= parse_day(day).bit

    def disable_day(self, day):
        self.days_of_week &= ~parse_day(day).bit & ALL_DAYS_MASK

    def toggle_day(self, day):
        self.days_of_week ^= parse_day(day).bit

    @property
    def is_everyday(self):
        return self.days_of_week == ALL_DAYS_MASK

    @property
    def is_weekdays_only(self):
        return self.days_of_week == WEEKDAYS_MASK

    @property
    def is_weekends_only(self):
        return self.days_of_week == WEEKENDS_MASK

    @property
    def interval(self):
        if self.interval_minutes is None:
            return None
        return datetime.timedelta(minutes=self.interval_minutes)
