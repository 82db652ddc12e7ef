"""
Celery application for background order processing.

Tasks are discovered from installed apps (see orders/tasks.py).
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('invitation_shop')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
