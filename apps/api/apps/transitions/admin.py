from django.contrib import admin
from .models import ScheduleAdjustment, TransitionEvent


class ScheduleAdjustmentInline(admin.TabularInline):
    """Adjustments are an append-only audit trail."""
    model = ScheduleAdjustment
    extra = 0
    can_delete = False
    readonly_fields = ['schedule', 'strategy', 'step', 'effective_date', 'previous_zone', 'new_zone',
                       'previous_time', 'new_time', 'applied_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(TransitionEvent)
class TransitionEventAdmin(admin.ModelAdmin):
    list_display = ['transition_instant', 'previous_zone', 'new_zone', 'detection_method', 'status']
    list_filter = ['status', 'detection_method']
    readonly_fields = ['id', 'previous_zone', 'new_zone', 'transition_instant', 'detection_method',
                       'superseded_by', 'resolved_at', 'created_at']
    inlines = [ScheduleAdjustmentInline]
