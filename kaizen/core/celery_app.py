from datetime import timedelta

from celery import Celery

from kaizen.core.config import settings

celery_app = Celery(
    "kaizen",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["kaizen.tasks.security_tasks"],
)

# Celery Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=300,        # Hard limit (5 min)
    task_soft_time_limit=240,   # Soft limit (4 min)

    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,  # 1 hour
)

celery_app.conf.beat_schedule = {
    "sweep-expired-tokens": {
        "task": "kaizen.tasks.security_tasks.cleanup_expired_tokens",
        "schedule": timedelta(minutes=settings.TOKEN_SWEEP_INTERVAL_MINUTES),
    },
}
