"""
Shared helpers for the DRF views.
"""
from functools import wraps

from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.response import Response

from apps.core.exceptions import StoreError
from apps.core.observability import get_sanitized_logger

logger = get_sanitized_logger(__name__)


def validation_error_response(exc):
    """400 response for a Django ValidationError (field-keyed when possible)."""
    if hasattr(exc, 'error_dict'):
        errors = exc.message_dict
    else:
        errors = {'non_field_errors': exc.messages}
    return Response({'errors': errors}, status=status.HTTP_400_BAD_REQUEST)


def store_error_response(exc):
    """503 response for a store failure; the host decides whether to retry."""
    logger.error(
        'Store failure surfaced to client',
        extra={'event': 'store_error_response', 'entity_type': exc.entity}
    )
    return Response({'error': str(exc)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)


def domain_errors(view_method):
    """
    Map domain errors raised inside a view method to responses.

    ValidationError -> 400, StoreError -> 503.
    """
    @wraps(view_method)
    def wrapper(*args, **kwargs):
        try:
            return view_method(*args, **kwargs)
        except ValidationError as exc:
            return validation_error_response(exc)
        except StoreError as exc:
            return store_error_response(exc)
    return wrapper
