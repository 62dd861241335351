"""
Transition signals.

zone_changed is the inbound notification from the host ("the device zone
changed from X to Y at T"). The others are outbound notifications emitted
by TransitionManager after its writes are done.
"""
from django.dispatch import Signal, receiver

# Inbound. Payload:
#   - previous_zone: zone identifier before the change
#   - current_zone: zone identifier after the change
#   - changed_at: aware datetime of the change (optional, defaults to now)
#   - detection_method: DetectionMethod value (optional, defaults to automatic)
zone_changed = Signal()

# Outbound. Payload (ids as strings, NO PHI):
#   - transition_event_id
#   - previous_zone, new_zone
#   - superseded_event_id: pending candidate replaced by this one (or None)
transition_detected = Signal()

# Outbound. Payload:
#   - transition_event_id
#   - resolution: 'confirmed' or 'discarded'
transition_resolved = Signal()

# Outbound. Payload:
#   - transition_event_id
#   - strategy: AdjustmentStrategy value
#   - schedule_ids: list of re-anchored schedule ids
schedules_reanchored = Signal()


@receiver(zone_changed)
def on_zone_changed(sender, previous_zone, current_zone, changed_at=None,
                    detection_method=None, **kwargs):
    """Record (or coalesce) a pending transition candidate."""
    from apps.transitions.manager import build_transition_manager
    from apps.transitions.models import DetectionMethod

    build_transition_manager().handle_zone_change(
        previous_zone,
        current_zone,
        at=changed_at,
        detection_method=detection_method or DetectionMethod.AUTOMATIC,
    )
