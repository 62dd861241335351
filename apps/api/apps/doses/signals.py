"""
Dose signals.
"""
from django.dispatch import Signal

# Signal emitted after a dose status change is committed
# Payload (ids as strings, NO PHI):
#   - dose_id: UUID of the DoseRecord
#   - schedule_id: UUID of its Schedule (or None for as-needed doses)
#   - from_status: previous DoseStatus value
#   - to_status: new DoseStatus value
dose_status_changed = Signal()
