"""Transition URLs."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from .views import TransitionEventViewSet

router = DefaultRouter()
router.register(r'transitions', TransitionEventViewSet, basename='transition')

urlpatterns = [
    path('', include(router.urls)),
]
