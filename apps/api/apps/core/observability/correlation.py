"""
Request correlation middleware.

Generates/propagates X-Request-ID and injects it into logs, so that a
zone-change confirmation and the re-anchoring it triggers can be followed
through the log stream.
"""
import uuid
import time
import logging
from threading import local

from django.utils.deprecation import MiddlewareMixin

# Thread-local storage for request context
_request_context = local()

logger = logging.getLogger(__name__)


def get_request_id():
    return getattr(_request_context, 'request_id', None)


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    - Generates/propagates X-Request-ID
    - Stores it in thread-local for logging
    - Echoes it on the response
    - Logs request duration
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'

    def process_request(self, request):
        request_id = request.META.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())

        request.request_id = request_id
        request.start_time = time.time()
        _request_context.request_id = request_id

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000
            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                }
            )

        clear_request_context()
        return response

    def process_exception(self, request, exception):
        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
            }
        )


def clear_request_context():
    """Clear thread-local request context."""
    if hasattr(_request_context, 'request_id'):
        del _request_context.request_id
