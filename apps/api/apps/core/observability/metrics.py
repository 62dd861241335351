"""
Metrics instrumentation (Prometheus).
"""
import logging
import time
from functools import wraps

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


class MetricsRegistry:
    """
    Central metrics registry for the scheduling engine.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        self._setup_metrics()

    def _setup_metrics(self):
        # ===================================================================
        # Zone clock
        # ===================================================================
        self.zone_resolution_total = Counter(
            'medtracker_zone_resolution_total',
            'Civil-to-instant resolutions by path taken',
            ['path']  # exact, gap_shifted_forward, fold_earlier, fold_later
        )

        self.zone_display_fallback_total = Counter(
            'medtracker_zone_display_fallback_total',
            'Best-effort display fallbacks for unknown zones'
        )

        # ===================================================================
        # Doses
        # ===================================================================
        self.dose_transitions_total = Counter(
            'medtracker_dose_transitions_total',
            'Dose status transitions',
            ['from_status', 'to_status', 'result']
        )

        self.doses_generated_total = Counter(
            'medtracker_doses_generated_total',
            'Dose records created by batch generation',
            ['result']  # created, existing
        )

        self.dose_generation_duration_seconds = Histogram(
            'medtracker_dose_generation_duration_seconds',
            'Duration of batch dose generation',
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
        )

        self.dose_history_purged_total = Counter(
            'medtracker_dose_history_purged_total',
            'Dose records deleted by history purge'
        )

        # ===================================================================
        # Transitions
        # ===================================================================
        self.transitions_detected_total = Counter(
            'medtracker_transitions_detected_total',
            'Zone changes detected',
            ['detection_method', 'result']  # recorded, coalesced, equivalent, reverted
        )

        self.transitions_resolved_total = Counter(
            'medtracker_transitions_resolved_total',
            'Pending transitions resolved',
            ['resolution']  # confirmed, discarded
        )

        self.pending_transitions = Gauge(
            'medtracker_pending_transitions',
            'Unconfirmed transition candidates (0 or 1)'
        )

        self.schedule_adjustments_total = Counter(
            'medtracker_schedule_adjustments_total',
            'Schedule adjustments applied',
            ['strategy', 'result']
        )

        # ===================================================================
        # Store
        # ===================================================================
        self.store_failures_total = Counter(
            'medtracker_store_failures_total',
            'Entity store failures',
            ['operation', 'entity']
        )

    def track_duration(self, histogram_metric):
        """
        Decorator to track function duration.

        Usage:
            @metrics.track_duration(metrics.dose_generation_duration_seconds)
            def create_doses_for_date(...):
                ...
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    histogram_metric.observe(time.time() - start_time)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
