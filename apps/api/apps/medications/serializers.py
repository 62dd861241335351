"""Medication serializers."""
from rest_framework import serializers

from .models import DayOfWeek, Medication, Schedule


class MedicationSerializer(serializers.ModelSerializer):
    """
    Medication payload.

    Shape validation only; business rules run in MedicationService.
    """
    dosage_description = serializers.CharField(read_only=True)

    class Meta:
        model = Medication
        fields = [
            'id', 'name', 'dosage_amount', 'dosage_unit', 'dosage_description',
            'instructions', 'prescribed_by', 'start_date', 'end_date',
            'is_active', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'is_active', 'created_at', 'updated_at']


class ScheduleSerializer(serializers.ModelSerializer):
    enabled_days = serializers.SerializerMethodField()
    is_everyday = serializers.BooleanField(read_only=True)
    is_weekdays_only = serializers.BooleanField(read_only=True)
    is_weekends_only = serializers.BooleanField(read_only=True)

    class Meta:
        model = Schedule
        fields = [
            'id', 'medication', 'kind', 'reference_zone',
            'time_of_day', 'days_of_week', 'enabled_days',
            'is_everyday', 'is_weekdays_only', 'is_weekends_only',
            'interval_minutes', 'anchor_instant', 'is_enabled',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_enabled_days(self, obj):
        return [DayOfWeek(day).label for day in obj.enabled_days()]


class NextOccurrenceQuerySerializer(serializers.Serializer):
    after = serializers.DateTimeField(required=False)


class DueOnQuerySerializer(serializers.Serializer):
    date = serializers.DateField()
