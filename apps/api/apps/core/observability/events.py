"""
Domain events logging helpers.

Provides structured event logging for scheduling operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'dose_status_transition')
        entity_type: Type of entity (e.g., 'DoseRecord', 'TransitionEvent')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, warning, ...)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'doses_generated',
            entity_type='DoseRecord',
            result='success',
            civil_date='2024-03-10',
            created_count=3,
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'rejected']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log a consistency checkpoint event.

    Used to verify data integrity after batch operations.

    Example:
        log_consistency_checkpoint(
            'transition_adjustments_applied',
            entity_ids={'transition_event_id': str(event.id)},
            checks_passed={'all_schedules_reanchored': True},
            expected=2,
            actual=2
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def log_dose_transition(dose, from_status, to_status, result='success', **extra):
    """Log dose status transition event."""
    log_domain_event(
        'dose_status_transition',
        entity_type='DoseRecord',
        entity_id=str(dose.id),
        entity_ids={'schedule_id': str(dose.schedule_id) if dose.schedule_id else None},
        result=result,
        from_status=from_status,
        to_status=to_status,
        **extra
    )


def log_doses_generated(civil_date, created_count, existing_count):
    """Log batch dose generation for a civil date."""
    log_domain_event(
        'doses_generated',
        entity_type='DoseRecord',
        result='success',
        civil_date=civil_date.isoformat(),
        created_count=created_count,
        existing_count=existing_count,
    )


def log_transition_recorded(event, result='success', **extra):
    """Log a transition event being recorded (or coalesced)."""
    log_domain_event(
        'transition_recorded',
        entity_type='TransitionEvent',
        entity_id=str(event.id),
        result=result,
        previous_zone=event.previous_zone,
        new_zone=event.new_zone,
        detection_method=event.detection_method,
        **extra
    )


def log_schedule_reanchored(schedule, adjustment):
    """Log a schedule being re-anchored by an adjustment."""
    log_domain_event(
        'schedule_reanchored',
        entity_type='Schedule',
        entity_id=str(schedule.id),
        entity_ids={
            'transition_event_id': str(adjustment.transition_event_id),
            'adjustment_id': str(adjustment.id),
        },
        result='success',
        strategy=adjustment.strategy,
        step=adjustment.step,
        previous_zone=adjustment.previous_zone,
        new_zone=adjustment.new_zone,
        previous_time=adjustment.previous_time.isoformat(),
        new_time=adjustment.new_time.isoformat(),
    )


def log_zone_display_fallback(zone_id, fallback_zone):
    """Log use of the best-effort display fallback for an unknown zone."""
    log_domain_event(
        'zone_display_fallback',
        entity_type='Zone',
        result='warning',
        requested_zone=zone_id,
        fallback_zone=fallback_zone,
    )
