"""Medication URLs."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from .views import MedicationViewSet, ScheduleViewSet

router = DefaultRouter()
router.register(r'medications', MedicationViewSet, basename='medication')
router.register(r'schedules', ScheduleViewSet, basename='schedule')

urlpatterns = [
    path('', include(router.urls)),
]
