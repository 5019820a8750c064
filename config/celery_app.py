"""
Celery application configuration for TaskHive.

Billing and bulk jobs are defined with @shared_task so they bind to this app
and run inline under CELERY_TASK_ALWAYS_EAGER in tests.

Components:
  - Worker: Processes background jobs (`celery -A config worker`)
  - Beat: Triggers the daily grace period sweep (`celery -A config beat`)

Queues:
  - billing: webhook processing and the grace period sweep
  - bulk_operations: batch task mutations

Configuration:
  - Broker: Redis (CELERY_BROKER_URL)
  - Result backend: None (webhook outcomes live in the database, bulk
    results in the Django cache)
  - Task serialization: JSON
  - Periodic tasks: CELERY_BEAT_SCHEDULE in settings

Usage:
    celery -A config worker -Q billing,bulk_operations --loglevel=info
    celery -A config beat --loglevel=info
"""

import os

from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.local")

app = Celery("taskhive")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

