from django.contrib import admin
from .models import DoseRecord


@admin.register(DoseRecord)
class DoseRecordAdmin(admin.ModelAdmin):
    list_display = ['scheduled_instant', 'medication', 'status', 'actual_instant', 'recorded_zone']
    list_filter = ['status', 'recorded_zone']
    readonly_fields = ['id', 'schedule', 'medication', 'scheduled_instant', 'scheduled_date',
                       'transition_event', 'created_at', 'updated_at']
    date_hierarchy = 'scheduled_instant'
