"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -Q reminder -l info --concurrency=2
    celery -A app.celery_app beat -l info
"""

import logging

from celery import Celery
from celery.schedules import crontab

from config import settings

logging.basicConfig(level=settings.LOG_LEVEL)

BROKER_URL = settings.REDIS_URL

celery_app = Celery("followup_engine", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds
celery_app.conf.timezone = "UTC"

celery_app.conf.task_routes = {
    "app.workers.reminder.*": {"queue": "reminder"},
}

celery_app.conf.beat_schedule = {
    # 16:00 UTC is 09:00 in Arizona all year round.
    "reconcile-reminders": {
        "task": "app.workers.reminder.reconcile",
        "schedule": crontab(hour=16, minute=0),
    },
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.dispatch_due",
        "schedule": crontab(minute="*/15"),
    },
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
