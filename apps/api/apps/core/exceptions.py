"""
Error kinds for the scheduling engine.

Validation errors subclass Django's ValidationError so they carry a
field-keyed ``message_dict`` exactly like model ``clean()`` failures.
They are always raised before anything is committed.

Store errors wrap the underlying database exception. They are surfaced to
the host and never retried by the core.
"""
from django.core.exceptions import NON_FIELD_ERRORS, ValidationError


class TrackerValidationError(ValidationError):
    """Base class for all validation-layer errors."""

    code = 'invalid'

    def __init__(self, field, message):
        self.field = field
        self.reason = message
        super().__init__({field: [ValidationError(message, code=self.code)]})


class EmptyField(TrackerValidationError):
    code = 'empty_field'

    def __init__(self, field):
        super().__init__(field, f"Field '{field}' cannot be empty")


class InvalidValue(TrackerValidationError):
    code = 'invalid_value'

    def __init__(self, field, reason):
        super().__init__(field, f"Invalid value for '{field}': {reason}")


class InvalidRange(TrackerValidationError):
    code = 'invalid_range'

    def __init__(self, field, min_value=None, max_value=None):
        self.min_value = min_value
        self.max_value = max_value
        message = f"Value for '{field}' is out of range"
        if min_value is not None and max_value is not None:
            message += f" (must be between {min_value} and {max_value})"
        elif min_value is not None:
            message += f" (must be greater than {min_value})"
        elif max_value is not None:
            message += f" (must be at most {max_value})"
        super().__init__(field, message)


class InvalidDate(TrackerValidationError):
    code = 'invalid_date'

    def __init__(self, field, reason):
        super().__init__(field, f"Invalid date for '{field}': {reason}")


class InvalidRelationship(TrackerValidationError):
    code = 'invalid_relationship'

    def __init__(self, field, reason):
        super().__init__(field, f"Invalid relationship '{field}': {reason}")


class BusinessRuleViolation(TrackerValidationError):
    code = 'business_rule_violation'

    def __init__(self, message, field=NON_FIELD_ERRORS):
        super().__init__(field, f"Business rule violation: {message}")


class UnknownZone(InvalidValue):
    """Zone identifier is not in the zone catalog."""

    code = 'unknown_zone'

    def __init__(self, zone_id, field='zone'):
        self.zone_id = zone_id
        super().__init__(field, f"Unknown time zone identifier '{zone_id}'")


class AmbiguousOrInvalidCivilTime(InvalidValue):
    """
    Civil time falls in a DST gap (does not exist) or fold (exists twice)
    and no disambiguation policy allowed resolving it.
    """

    code = 'ambiguous_or_invalid_civil_time'

    GAP = 'gap'
    FOLD = 'fold'

    def __init__(self, civil, zone_id, kind, field='civil_time'):
        self.civil = civil
        self.zone_id = zone_id
        self.kind = kind
        if kind == self.GAP:
            reason = f'{civil} does not exist in {zone_id} (DST gap)'
        else:
            reason = f'{civil} occurs twice in {zone_id} (DST fold)'
        super().__init__(field, reason)


class StoreError(Exception):
    """Underlying storage failure."""

    operation = 'access'

    def __init__(self, entity, original=None):
        self.entity = entity
        self.original = original
        detail = f': {original}' if original is not None else ''
        super().__init__(f'Failed to {self.operation} {entity}{detail}')


class FetchFailed(StoreError):
    operation = 'fetch'


class SaveFailed(StoreError):
    operation = 'save'


class DeleteFailed(StoreError):
    operation = 'delete'
