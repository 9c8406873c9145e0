from __future__ import annotations

from celery import Celery

from syncbox.core.config import settings

celery = Celery(
    "syncbox",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["syncbox.tasks.sync_tasks"],
)

celery.conf.update(
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
    task_default_queue="default",
    beat_schedule={
        "drain-outbox": {
            "task": "syncbox.tasks.sync_tasks.drain_outbox",
            "schedule": settings.SYNC_DRAIN_INTERVAL_S,
        },
        "sweep-failed-outbox": {
            "task": "syncbox.tasks.sync_tasks.sweep_failed",
            "schedule": settings.SYNC_FAILED_SWEEP_INTERVAL_S,
        },
    },
)
