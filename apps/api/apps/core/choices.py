"""
Strict parsing of TextChoices values.

Unknown strings are a construction-time error, never a silent default.
"""
from apps.core.exceptions import EmptyField, InvalidValue


def parse_choice(choices_cls, value, field):
    """Return the ``choices_cls`` member for ``value`` or raise InvalidValue."""
    if isinstance(value, choices_cls):
        return value
    if value in (None, ''):
        raise EmptyField(field)
    try:
        return choices_cls(value)
    except ValueError:
        allowed = ', '.join(choices_cls.values)
        raise InvalidValue(field, f"'{value}' is not one of: {allowed}")
