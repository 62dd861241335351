"""
Entity store wrappers.

The Django ORM is the entity store. Every read, write and delete performed
by the services runs inside one of these context managers so that database
failures surface as FetchFailed / SaveFailed / DeleteFailed.

Writes run inside ``transaction.atomic``: the unit of work is all-or-nothing,
and validation happens before the block is entered (validate-then-commit).
"""
from contextlib import contextmanager

from django.db import DatabaseError, transaction

from apps.core.exceptions import DeleteFailed, FetchFailed, SaveFailed
from apps.core.observability import get_sanitized_logger, metrics

logger = get_sanitized_logger(__name__)


def _record_failure(operation, entity, exc):
    metrics.store_failures_total.labels(operation=operation, entity=entity).inc()
    logger.error(
        f'Store {operation} failed for {entity}',
        extra={
            'event': 'store_failure',
            'operation': operation,
            'entity_type': entity,
            'error_type': exc.__class__.__name__,
        }
    )


@contextmanager
def fetching(entity):
    """Wrap a read against the store."""
    try:
        yield
    except DatabaseError as exc:
        _record_failure('fetch', entity, exc)
        raise FetchFailed(entity, exc) from exc


@contextmanager
def saving(entity):
    """Wrap a write (create/update) in one atomic unit of work."""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        _record_failure('save', entity, exc)
        raise SaveFailed(entity, exc) from exc


@contextmanager
def deleting(entity):
    """Wrap a delete (single or batch) in one atomic unit of work."""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        _record_failure('delete', entity, exc)
        raise DeleteFailed(entity, exc) from exc
