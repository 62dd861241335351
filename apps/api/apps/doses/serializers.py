"""Dose serializers."""
from django.utils import timezone
from rest_framework import serializers

from apps.medications.models import Medication, Schedule
from .models import DoseRecord, DoseStatus


class DoseRecordSerializer(serializers.ModelSerializer):
    is_overdue = serializers.SerializerMethodField()

    class Meta:
        model = DoseRecord
        fields = [
            'id', 'schedule', 'medication', 'scheduled_instant', 'scheduled_date',
            'actual_instant', 'status', 'recorded_zone', 'notes',
            'transition_event', 'is_overdue', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_is_overdue(self, obj):
        return (
            obj.status == DoseStatus.PENDING
            and obj.scheduled_instant is not None
            and obj.scheduled_instant < timezone.now()
        )


class DoseTakeSerializer(serializers.Serializer):
    actual_instant = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    zone = serializers.CharField(required=False, max_length=64)


class DoseNoteSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    zone = serializers.CharField(required=False, max_length=64)


class DoseZoneSerializer(serializers.Serializer):
    zone = serializers.CharField(required=False, max_length=64)


class AsNeededDoseSerializer(serializers.Serializer):
    medication = serializers.PrimaryKeyRelatedField(queryset=Medication.objects.all())
    schedule = serializers.PrimaryKeyRelatedField(queryset=Schedule.objects.all(), required=False)
    actual_instant = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    zone = serializers.CharField(required=False, max_length=64)


class GenerateDosesSerializer(serializers.Serializer):
    date = serializers.DateField()
    medication = serializers.PrimaryKeyRelatedField(queryset=Medication.objects.all(), required=False)


class RangeQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    medication = serializers.PrimaryKeyRelatedField(queryset=Medication.objects.all(), required=False)

    def validate(self, attrs):
        if attrs['end'] <= attrs['start']:
            raise serializers.ValidationError({'end': 'end must be after start'})
        return attrs
