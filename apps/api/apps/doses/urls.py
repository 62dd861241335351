"""Dose URLs."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from .views import DoseRecordViewSet

router = DefaultRouter()
router.register(r'doses', DoseRecordViewSet, basename='dose')

urlpatterns = [
    path('', include(router.urls)),
]
