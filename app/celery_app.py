"""Celery application instance shared across the backend.

Start a worker with:
    celery -A app.celery_app worker -Q reminder -l info --concurrency=2
and the beat scheduler with:
    celery -A app.celery_app beat -l info
"""

import logging
import os
from celery import Celery

from config import settings

logging.basicConfig(level=settings.LOG_LEVEL)

BROKER_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery_app = Celery("calendar_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds

celery_app.conf.task_routes = {
    "app.workers.reminder.handle": {"queue": "reminder"},
    "app.workers.reminder.dispatch_due": {"queue": "reminder"},
}

# Beat schedule: dispatch due reminders every minute
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.dispatch_due",
        "schedule": 60.0,
    }
}

# --- Ensure tasks are registered ---
import app.workers.reminder
