"""
URL configuration for the MedTracker project.
"""
from django.contrib import admin
from django.urls import include, path

from apps.core.observability.health import HealthzView, ReadyzView

urlpatterns = [
    # Health checks (no auth required)
    path('healthz', HealthzView.as_view(), name='healthz'),
    path('readyz', ReadyzView.as_view(), name='readyz'),

    # Admin
    path('admin/', admin.site.urls),

    # Private API (authentication required)
    path('api/v1/', include('apps.medications.urls')),
    path('api/v1/', include('apps.doses.urls')),
    path('api/v1/', include('apps.transitions.urls')),
]
