"""
ZoneClock - conversion between absolute instants and civil time.

Backed by the pytz zone database. Instants are timezone-aware datetimes
(returned in UTC); civil times are CivilDateTime values with no zone
attached.

DST handling:
- Gap (spring-forward): the civil time does not exist. The default policy
  interprets it with the offset in force before the transition, which
  shifts the wall time forward by the gap length.
- Fold (fall-back): the civil time exists twice. The default policy picks
  the first occurrence (the earlier instant).

Callers learn which path was taken from Resolution.path.
"""
import datetime
import logging
from dataclasses import dataclass
from enum import Enum

import pytz
from django.utils import timezone as django_timezone

from apps.core.exceptions import AmbiguousOrInvalidCivilTime, InvalidValue, UnknownZone
from apps.core.observability import metrics
from apps.core.observability.events import log_zone_display_fallback

logger = logging.getLogger(__name__)


class GapPolicy(str, Enum):
    SHIFT_FORWARD = 'shift_forward'
    RAISE = 'raise'


class FoldPolicy(str, Enum):
    EARLIER = 'earlier'
    LATER = 'later'
    RAISE = 'raise'


class ResolutionPath(str, Enum):
    EXACT = 'exact'
    GAP_SHIFTED_FORWARD = 'gap_shifted_forward'
    FOLD_EARLIER = 'fold_earlier'
    FOLD_LATER = 'fold_later'


@dataclass(frozen=True)
class DisambiguationPolicy:
    on_gap: GapPolicy = GapPolicy.SHIFT_FORWARD
    on_fold: FoldPolicy = FoldPolicy.EARLIER


DEFAULT_POLICY = DisambiguationPolicy()
STRICT_POLICY = DisambiguationPolicy(on_gap=GapPolicy.RAISE, on_fold=FoldPolicy.RAISE)


@dataclass(frozen=True)
class CivilDateTime:
    """Wall-clock date and time fields without zone context."""

    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0

    def __post_init__(self):
        # Reject impossible field combinations (Feb 30, hour 24, ...) up front
        try:
            self.to_naive()
        except ValueError as e:
            raise InvalidValue('civil_time', str(e))

    @classmethod
    def from_datetime(cls, value):
        return cls(value.year, value.month, value.day, value.hour, value.minute, value.second)

    @classmethod
    def combine(cls, civil_date, civil_time):
        return cls(
            civil_date.year, civil_date.month, civil_date.day,
            civil_time.hour, civil_time.minute, civil_time.second,
        )

    def to_naive(self):
        return datetime.datetime(self.year, self.month, self.day, self.hour, self.minute, self.second)

    def date(self):
        return datetime.date(self.year, self.month, self.day)

    def time(self):
        return datetime.time(self.hour, self.minute, self.second)

    def __str__(self):
        return self.to_naive().isoformat()


@dataclass(frozen=True)
class Resolution:
    """Instant produced from a civil time, and how it was obtained."""

    instant: datetime.datetime
    path: ResolutionPath

    @property
    def was_adjusted(self):
        return self.path is not ResolutionPath.EXACT


class ZoneClock:
    """
    Civil/instant conversion and offset queries over the zone catalog.

    ``now`` is injectable so that callers (and tests) control the clock.
    """

    def __init__(self, now=None):
        self._now = now or django_timezone.now

    def now(self):
        return self._now()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def is_valid_zone(self, zone_id):
        return isinstance(zone_id, str) and zone_id in pytz.all_timezones_set

    def zone(self, zone_id, field='zone'):
        """Return the tzinfo for ``zone_id`` or raise UnknownZone."""
        if not self.is_valid_zone(zone_id):
            raise UnknownZone(zone_id, field=field)
        return pytz.timezone(zone_id)

    def canonical_zone(self, zone_id, field='zone'):
        """
        Validate and return the identifier as stored.

        Identifiers are persisted exactly as given; whether two identifiers
        denote the same rules is decided by zones_equivalent().
        """
        self.zone(zone_id, field=field)
        return zone_id

    def zones_equivalent(self, zone_a, zone_b):
        """
        True when both identifiers resolve to identical civil-time rules.

        Links such as US/Eastern -> America/New_York compare equal. Two zones
        that merely share the current offset do not.
        """
        tz_a = self.zone(zone_a)
        tz_b = self.zone(zone_b)
        if tz_a is tz_b:
            return True
        return _rule_set(tz_a) == _rule_set(tz_b)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_civil(self, instant, zone_id):
        _require_aware(instant)
        tz = self.zone(zone_id)
        return CivilDateTime.from_datetime(instant.astimezone(tz))

    def to_instant(self, civil, zone_id, policy=None):
        """
        Convert civil time in ``zone_id`` to a UTC instant.

        Without a policy, gap and fold times raise AmbiguousOrInvalidCivilTime.
        """
        return self.resolve(civil, zone_id, policy or STRICT_POLICY).instant

    def resolve(self, civil, zone_id, policy=DEFAULT_POLICY):
        """Convert civil time to an instant and report the path taken."""
        tz = self.zone(zone_id)
        naive = civil.to_naive()

        try:
            local = tz.localize(naive, is_dst=None)
        except pytz.exceptions.AmbiguousTimeError:
            if policy.on_fold is FoldPolicy.RAISE:
                raise AmbiguousOrInvalidCivilTime(civil, zone_id, AmbiguousOrInvalidCivilTime.FOLD)
            candidates = sorted(
                tz.localize(naive, is_dst=flag).astimezone(pytz.utc)
                for flag in (True, False)
            )
            if policy.on_fold is FoldPolicy.EARLIER:
                instant, path = candidates[0], ResolutionPath.FOLD_EARLIER
            else:
                instant, path = candidates[-1], ResolutionPath.FOLD_LATER
        except pytz.exceptions.NonExistentTimeError:
            if policy.on_gap is GapPolicy.RAISE:
                raise AmbiguousOrInvalidCivilTime(civil, zone_id, AmbiguousOrInvalidCivilTime.GAP)
            # is_dst=False reads the offset in force before the gap
            instant = tz.localize(naive, is_dst=False).astimezone(pytz.utc)
            path = ResolutionPath.GAP_SHIFTED_FORWARD
        else:
            instant = local.astimezone(pytz.utc)
            path = ResolutionPath.EXACT

        metrics.zone_resolution_total.labels(path=path.value).inc()
        if path is not ResolutionPath.EXACT:
            logger.debug(
                'Civil time disambiguated',
                extra={
                    'event': 'civil_time_disambiguated',
                    'zone': zone_id,
                    'civil_time': str(civil),
                    'path': path.value,
                }
            )
        return Resolution(instant=instant, path=path)

    def local_date(self, instant, zone_id):
        return self.to_civil(instant, zone_id).date()

    def start_of_day(self, civil_date, zone_id):
        """Instant at which ``civil_date`` begins in ``zone_id``."""
        civil = CivilDateTime(civil_date.year, civil_date.month, civil_date.day)
        return self.resolve(civil, zone_id).instant

    # ------------------------------------------------------------------
    # Offsets
    # ------------------------------------------------------------------

    def offset_seconds(self, zone_id, instant):
        _require_aware(instant)
        tz = self.zone(zone_id)
        return int(instant.astimezone(tz).utcoffset().total_seconds())

    def offset_delta_seconds(self, from_zone, to_zone, instant):
        """
        Signed change in UTC offset when moving from one zone to another.

        Ranges over -26h..+26h (UTC-12 to UTC+14).
        """
        return self.offset_seconds(to_zone, instant) - self.offset_seconds(from_zone, instant)

    def is_dst(self, zone_id, instant):
        _require_aware(instant)
        tz = self.zone(zone_id)
        return bool(instant.astimezone(tz).dst())

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def display_zone(self, zone_id, fallback_zone):
        """
        Best-effort display path.

        Returns ``zone_id`` when it is known, otherwise ``fallback_zone``
        (the caller's own zone) after logging a warning. Never use this for
        data that is persisted or that drives dose creation.
        """
        if self.is_valid_zone(zone_id):
            return zone_id
        metrics.zone_display_fallback_total.inc()
        log_zone_display_fallback(zone_id, fallback_zone)
        return self.canonical_zone(fallback_zone)

    def describe_zone(self, zone_id, instant=None):
        """e.g. 'America/New_York (EDT, UTC-4)'."""
        tz = self.zone(zone_id)
        local = (instant or self.now()).astimezone(tz)
        return f'{zone_id} ({local.tzname()}, {format_offset(local.utcoffset())})'


def format_offset(offset):
    total_minutes = int(offset.total_seconds()) // 60
    sign = '+' if total_minutes >= 0 else '-'
    hours, minutes = divmod(abs(total_minutes), 60)
    if minutes:
        return f'UTC{sign}{hours}:{minutes:02d}'
    return f'UTC{sign}{hours}'


def _require_aware(instant):
    if instant is None or django_timezone.is_naive(instant):
        raise InvalidValue('instant', 'must be a timezone-aware datetime')


def _rule_set(tz):
    # pytz DstTzInfo keeps its transition table in these attributes
    transitions = getattr(tz, '_utc_transition_times', None)
    if transitions is not None:
        return tuple(transitions), tuple(tz._transition_info)
    return tz.utcoffset(None), tz.tzname(None)
