"""
Celery configuration for the consultation workspace
"""
import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'consult.settings')

app = Celery('consult')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up apps.consultation.tasks
app.autodiscover_tasks()
