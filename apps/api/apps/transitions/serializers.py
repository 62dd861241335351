"""Transition serializers."""
from rest_framework import serializers

from .models import AdjustmentStrategy, DetectionMethod, ScheduleAdjustment, TransitionEvent


class TransitionEventSerializer(serializers.ModelSerializer):
    offset_change_hours = serializers.FloatField(read_only=True)
    is_forward_change = serializers.BooleanField(read_only=True)
    is_backward_change = serializers.BooleanField(read_only=True)

    class Meta:
        model = TransitionEvent
        fields = [
            'id', 'previous_zone', 'new_zone', 'transition_instant',
            'detection_method', 'location', 'notes', 'user_confirmed',
            'status', 'superseded_by', 'resolved_at',
            'offset_change_hours', 'is_forward_change', 'is_backward_change',
            'created_at',
        ]
        read_only_fields = ['id', 'status', 'superseded_by', 'resolved_at', 'created_at']


class ZoneChangeSignalSerializer(serializers.Serializer):
    """Zone-change notification from the host."""
    previous_zone = serializers.CharField(max_length=64)
    current_zone = serializers.CharField(max_length=64)
    changed_at = serializers.DateTimeField(required=False)
    detection_method = serializers.ChoiceField(
        choices=DetectionMethod.choices, default=DetectionMethod.AUTOMATIC
    )
    location = serializers.CharField(required=False, allow_blank=True, max_length=200)


class AdjustmentRequestSerializer(serializers.Serializer):
    strategy = serializers.ChoiceField(choices=AdjustmentStrategy.choices)
    custom_times = serializers.DictField(child=serializers.TimeField(), required=False)
    gradual_steps = serializers.IntegerField(required=False, min_value=1, max_value=14)

    def validate(self, attrs):
        if attrs['strategy'] == AdjustmentStrategy.CUSTOM and not attrs.get('custom_times'):
            raise serializers.ValidationError({'custom_times': 'required for the custom strategy'})
        return attrs


class ScheduleAdjustmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = ScheduleAdjustment
        fields = [
            'id', 'transition_event', 'schedule', 'strategy', 'step',
            'effective_date', 'previous_zone', 'new_zone',
            'previous_time', 'new_time', 'applied_at', 'created_at',
        ]
        read_only_fields = fields
