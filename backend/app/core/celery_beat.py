# app/core/celery_beat.py
# celery -A app.core.celery_beat beat
from celery.schedules import crontab
from app.core.celery_app import celery_app

celery_app.conf.beat_schedule = {
    "expire-subscriptions": {
        "task": "app.tasks.expiry_sweeper.sweep_expired_task",
        "schedule": crontab(minute="*/15"),
    },
}
