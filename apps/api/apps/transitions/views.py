"""Transition views."""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.api import domain_errors
from apps.core.observability import get_sanitized_logger
from apps.medications.services import enabled_time_of_day_schedules

from .manager import build_transition_manager
from .models import TransitionEvent
from .serializers import (
    AdjustmentRequestSerializer,
    ScheduleAdjustmentSerializer,
    TransitionEventSerializer,
    ZoneChangeSignalSerializer,
)

logger = get_sanitized_logger(__name__)


class TransitionEventViewSet(viewsets.ModelViewSet):
    """
    ViewSet for zone transitions.

    Events are never edited; POST records a manual transition.

    Additional endpoints:
    - POST /transitions/signal/            zone-change notification (debounced)
    - GET  /transitions/pending/           current candidate (or null)
    - POST /transitions/{id}/confirm/      confirm and link nearby doses
    - POST /transitions/{id}/discard/
    - POST /transitions/{id}/propose/      {"strategy": ..., "custom_times": {...}, "gradual_steps": N}
    - POST /transitions/{id}/apply/        same payload; commits the adjustments
    - GET  /transitions/{id}/adjustments/
    """
    queryset = TransitionEvent.objects.all()
    serializer_class = TransitionEventSerializer
    permission_classes = [IsAuthenticated]
    http_method_names = ['get', 'post', 'head', 'options']

    def get_queryset(self):
        queryset = super().get_queryset()
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    @domain_errors
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        event = build_transition_manager().record_transition(TransitionEvent(**serializer.validated_data))
        return Response(self.get_serializer(event).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'])
    @domain_errors
    def signal(self, request):
        payload = ZoneChangeSignalSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        event = build_transition_manager().handle_zone_change(
            data['previous_zone'],
            data['current_zone'],
            at=data.get('changed_at'),
            detection_method=data['detection_method'],
            location=data.get('location', ''),
        )
        if event is None:
            return Response({'pending': None}, status=status.HTTP_200_OK)
        return Response({'pending': self.get_serializer(event).data}, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    @domain_errors
    def pending(self, request):
        event = build_transition_manager().pending_event()
        return Response({'pending': self.get_serializer(event).data if event else None})

    @action(detail=True, methods=['post'])
    @domain_errors
    def confirm(self, request, pk=None):
        manager = build_transition_manager()
        event = manager.confirm(self.get_object())
        linked = manager.associate_affected_doses(event, manager.doses_near(event))
        data = self.get_serializer(event).data
        data['linked_doses'] = len(linked)
        return Response(data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def discard(self, request, pk=None):
        event = build_transition_manager().discard(self.get_object())
        return Response(self.get_serializer(event).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def propose(self, request, pk=None):
        proposals = self._proposals(request, build_transition_manager())
        return Response({'adjustments': ScheduleAdjustmentSerializer(proposals, many=True).data})

    @action(detail=True, methods=['post'])
    @domain_errors
    def apply(self, request, pk=None):
        manager = build_transition_manager()
        proposals = self._proposals(request, manager)
        applied = manager.apply_adjustments(self.get_object(), proposals)
        return Response(
            {
                'applied': ScheduleAdjustmentSerializer(applied, many=True).data,
                'scheduled': ScheduleAdjustmentSerializer(
                    [a for a in proposals if a not in applied], many=True
                ).data,
            },
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['get'])
    def adjustments(self, request, pk=None):
        event = self.get_object()
        return Response(ScheduleAdjustmentSerializer(event.adjustments.all(), many=True).data)

    def _proposals(self, request, manager):
        payload = AdjustmentRequestSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        return manager.propose_adjustments(
            self.get_object(),
            enabled_time_of_day_schedules(),
            data['strategy'],
            custom_times=data.get('custom_times'),
            gradual_steps=data.get('gradual_steps'),
        )
