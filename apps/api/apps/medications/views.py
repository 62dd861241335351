"""Medication views."""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.api import domain_errors
from apps.core.observability import get_sanitized_logger
from apps.timezones.clock import ZoneClock

from .engine import ScheduleEngine
from .models import Medication, Schedule
from .serializers import (
    DueOnQuerySerializer,
    MedicationSerializer,
    NextOccurrenceQuerySerializer,
    ScheduleSerializer,
)
from .services import build_medication_service, schedules_due_on

logger = get_sanitized_logger(__name__)


class MedicationViewSet(viewsets.ModelViewSet):
    """
    ViewSet for medications.

    Medications are never deleted; use the deactivate action.
    Supports ?search= on name and ?is_active= filtering.

    Additional endpoints:
    - POST /medications/{id}/deactivate/
    - POST /medications/{id}/reactivate/
    """
    queryset = Medication.objects.all()
    serializer_class = MedicationSerializer
    permission_classes = [IsAuthenticated]
    search_fields = ['name']
    ordering_fields = ['created_at', 'name']
    http_method_names = ['get', 'post', 'put', 'patch', 'head', 'options']

    def get_queryset(self):
        queryset = super().get_queryset()
        is_active = self.request.query_params.get('is_active')
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active.lower() in ('1', 'true', 'yes'))
        return queryset

    @domain_errors
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        medication = build_medication_service().create_medication(**serializer.validated_data)
        return Response(self.get_serializer(medication).data, status=status.HTTP_201_CREATED)

    @domain_errors
    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        medication = self.get_object()
        serializer = self.get_serializer(medication, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        medication = build_medication_service().update_medication(medication, **serializer.validated_data)
        return Response(self.get_serializer(medication).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def deactivate(self, request, pk=None):
        medication = build_medication_service().deactivate_medication(self.get_object())
        return Response(self.get_serializer(medication).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def reactivate(self, request, pk=None):
        medication = build_medication_service().reactivate_medication(self.get_object())
        return Response(self.get_serializer(medication).data)


class ScheduleViewSet(viewsets.ModelViewSet):
    """
    ViewSet for schedules.

    Additional endpoints:
    - GET  /schedules/due/?date=YYYY-MM-DD
    - GET  /schedules/{id}/next-occurrence/?after=<iso instant>
    - POST /schedules/{id}/enable/
    - POST /schedules/{id}/disable/
    """
    queryset = Schedule.objects.select_related('medication')
    serializer_class = ScheduleSerializer
    permission_classes = [IsAuthenticated]
    http_method_names = ['get', 'post', 'put', 'patch', 'head', 'options']

    def get_queryset(self):
        queryset = super().get_queryset()
        medication_id = self.request.query_params.get('medication')
        if medication_id:
            queryset = queryset.filter(medication_id=medication_id)
        return queryset

    @domain_errors
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        medication = data.pop('medication')
        schedule = build_medication_service().create_schedule(medication, **data)
        return Response(self.get_serializer(schedule).data, status=status.HTTP_201_CREATED)

    @domain_errors
    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        schedule = self.get_object()
        serializer = self.get_serializer(schedule, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        # Ownership is fixed at creation
        data.pop('medication', None)
        schedule = build_medication_service().update_schedule(schedule, **data)
        return Response(self.get_serializer(schedule).data)

    @action(detail=False, methods=['get'])
    @domain_errors
    def due(self, request):
        query = DueOnQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        engine = ScheduleEngine(ZoneClock())
        due = schedules_due_on(engine, query.validated_data['date'])
        medication_id = request.query_params.get('medication')
        if medication_id:
            due = [s for s in due if str(s.medication_id) == medication_id]
        return Response(self.get_serializer(due, many=True).data)

    @action(detail=True, methods=['get'], url_path='next-occurrence')
    @domain_errors
    def next_occurrence(self, request, pk=None):
        schedule = self.get_object()
        query = NextOccurrenceQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        clock = ZoneClock()
        after = query.validated_data.get('after') or clock.now()
        upcoming = ScheduleEngine(clock).next_occurrence(schedule, after)

        payload = {
            'schedule': str(schedule.id),
            'after': after.isoformat(),
            'next_occurrence': upcoming.isoformat() if upcoming else None,
            'reference_zone': clock.describe_zone(schedule.reference_zone, upcoming or after),
        }
        if upcoming is not None:
            payload['local_time'] = str(clock.to_civil(upcoming, schedule.reference_zone))
        return Response(payload)

    @action(detail=True, methods=['post'])
    @domain_errors
    def enable(self, request, pk=None):
        schedule = build_medication_service().set_schedule_enabled(self.get_object(), True)
        return Response(self.get_serializer(schedule).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def disable(self, request, pk=None):
        schedule = build_medication_service().set_schedule_enabled(self.get_object(), False)
        return Response(self.get_serializer(schedule).data)
