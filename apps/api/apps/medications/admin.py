from django.contrib import admin
from .models import Medication, Schedule


class ScheduleInline(admin.TabularInline):
    model = Schedule
    extra = 0
    fields = ['kind', 'reference_zone', 'time_of_day', 'days_of_week', 'interval_minutes', 'is_enabled']


@admin.register(Medication)
class MedicationAdmin(admin.ModelAdmin):
    list_display = ['name', 'dosage_amount', 'dosage_unit', 'is_active', 'start_date', 'end_date']
    list_filter = ['is_active']
    search_fields = ['name']
    readonly_fields = ['id', 'created_at', 'updated_at']
    inlines = [ScheduleInline]

    def has_delete_permission(self, request, obj=None):
        """Medications are deactivated, never deleted."""
        return False


@admin.register(Schedule)
class ScheduleAdmin(admin.ModelAdmin):
    list_display = ['medication', 'kind', 'time_of_day', 'reference_zone', 'days_of_week', 'is_enabled']
    list_filter = ['kind', 'is_enabled', 'reference_zone']
    readonly_fields = ['id', 'created_at', 'updated_at']
