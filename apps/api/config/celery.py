"""
Celery application for background scheduling work.

Runs dose generation, gradual-shift steps, zone-change processing and
history purges outside the request cycle.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('medtracker')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
