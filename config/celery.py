"""Celery application: hold sweeper, booking completion and notifications."""

import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("slot_booking")

# CELERY_* keys of the Django settings
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# PERIODIC TASKS
# ============================================================================

app.conf.beat_schedule = {
    # Фиксация истёкших удержаний - каждые 30 секунд
    "expire-stale-holds": {
        "task": "bookings.expire_stale_holds",
        "schedule": 30.0,
        "options": {"expires": 25},
    },
    # Перевод прошедших броней в COMPLETED - каждые 15 минут
    "complete-finished-bookings": {
        "task": "bookings.complete_finished_bookings",
        "schedule": crontab(minute="*/15"),
    },
}
