"""Dose views."""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.api import domain_errors
from apps.core.observability import get_sanitized_logger
from apps.medications.services import enabled_time_of_day_schedules

from .models import DoseRecord
from .serializers import (
    AsNeededDoseSerializer,
    DoseNoteSerializer,
    DoseRecordSerializer,
    DoseTakeSerializer,
    DoseZoneSerializer,
    GenerateDosesSerializer,
    RangeQuerySerializer,
)
from .tracker import build_dose_tracker

logger = get_sanitized_logger(__name__)


class DoseRecordViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for dose records.

    Additional endpoints:
    - POST /doses/{id}/take/     {"actual_instant": ..., "notes": ..., "zone": ...}
    - POST /doses/{id}/miss/     {"notes": ..., "zone": ...}
    - POST /doses/{id}/skip/     {"notes": ..., "zone": ...}
    - POST /doses/{id}/reset/    {"zone": ...}
    - GET  /doses/overdue/
    - GET  /doses/adherence/?start=...&end=...[&medication=...]
    - POST /doses/generate/      {"date": "2024-03-10"[, "medication": ...]}
    - POST /doses/as-needed/     {"medication": ..., ...}

    Returns:
    - 400: validation error or rejected status transition
    - 503: store failure
    """
    queryset = DoseRecord.objects.all()
    serializer_class = DoseRecordSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        for field in ('status', 'schedule', 'medication'):
            value = params.get(field)
            if value:
                queryset = queryset.filter(**{field: value})
        return queryset

    @action(detail=True, methods=['post'])
    @domain_errors
    def take(self, request, pk=None):
        payload = DoseTakeSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        dose = build_dose_tracker().mark_taken(
            self.get_object(),
            actual_instant=data.get('actual_instant'),
            notes=data.get('notes'),
            zone=data.get('zone'),
        )
        return Response(DoseRecordSerializer(dose).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def miss(self, request, pk=None):
        payload = DoseNoteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        dose = build_dose_tracker().mark_missed(
            self.get_object(), notes=payload.validated_data.get('notes'), zone=payload.validated_data.get('zone')
        )
        return Response(DoseRecordSerializer(dose).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def skip(self, request, pk=None):
        payload = DoseNoteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        dose = build_dose_tracker().mark_skipped(
            self.get_object(), notes=payload.validated_data.get('notes'), zone=payload.validated_data.get('zone')
        )
        return Response(DoseRecordSerializer(dose).data)

    @action(detail=True, methods=['post'])
    @domain_errors
    def reset(self, request, pk=None):
        payload = DoseZoneSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        dose = build_dose_tracker().reset(self.get_object(), zone=payload.validated_data.get('zone'))
        return Response(DoseRecordSerializer(dose).data)

    @action(detail=False, methods=['get'])
    @domain_errors
    def overdue(self, request):
        doses = build_dose_tracker().overdue()
        return Response(DoseRecordSerializer(doses, many=True).data)

    @action(detail=False, methods=['get'])
    @domain_errors
    def adherence(self, request):
        query = RangeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        tracker = build_dose_tracker()
        doses = tracker.doses_between(data['start'], data['end'], medication=data.get('medication'))
        by_status = tracker.adherence_by_status(data['start'], data['end'], medication=data.get('medication'))
        return Response({
            'start': data['start'].isoformat(),
            'end': data['end'].isoformat(),
            'total': len(doses),
            'adherence': tracker.adherence(doses),
            'by_status': by_status,
        })

    @action(detail=False, methods=['post'])
    @domain_errors
    def generate(self, request):
        payload = GenerateDosesSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        schedules = enabled_time_of_day_schedules()
        if data.get('medication') is not None:
            schedules = [s for s in schedules if s.medication_id == data['medication'].id]

        created = build_dose_tracker().create_doses_for_date(schedules, data['date'])
        return Response(
            {'date': data['date'].isoformat(), 'created': DoseRecordSerializer(created, many=True).data},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )

    @action(detail=False, methods=['post'], url_path='as-needed')
    @domain_errors
    def as_needed(self, request):
        payload = AsNeededDoseSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        dose = build_dose_tracker().record_as_needed(
            data['medication'],
            actual_instant=data.get('actual_instant'),
            notes=data.get('notes', ''),
            schedule=data.get('schedule'),
            zone=data.get('zone'),
        )
        return Response(DoseRecordSerializer(dose).data, status=status.HTTP_201_CREATED)
