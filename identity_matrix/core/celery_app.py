"""
Celery configuration for background tasks
"""

from celery import Celery
from identity_matrix.core.config import settings

# Create Celery app
celery_app = Celery(
    "identity_matrix",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["identity_matrix.tasks.visitor_tasks"]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    beat_schedule={
        "purge-expired-visitors": {
            "task": "identity_matrix.tasks.visitor_tasks.purge_expired_visitors",
            "schedule": 24 * 60 * 60,  # daily
        },
    },
)
