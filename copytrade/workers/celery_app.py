"""Celery app bootstrap."""

from celery import Celery

from copytrade.config import get_settings

settings = get_settings()

celery_app = Celery(
    "copytrade",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["copytrade.workers.tasks_notify", "copytrade.workers.tasks_maintenance"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    beat_schedule={
        "expire-stale-payment-intents": {
            "task": "copytrade.workers.tasks_maintenance.expire_stale_intents",
            "schedule": 300.0,
        },
        "reconcile-wallets": {
            "task": "copytrade.workers.tasks_maintenance.reconcile_wallets",
            "schedule": 3600.0,
        },
    },
)
