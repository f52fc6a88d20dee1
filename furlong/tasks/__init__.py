"""Celery tasks for Furlong.

This module configures Celery and registers all periodic tasks.
"""

from celery import Celery
from celery.schedules import crontab

from furlong.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "furlong",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "furlong.tasks.settlement",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=180,  # 3 minute hard limit
    task_soft_time_limit=150,  # above the run deadline
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings; one run at a time keeps provider calls sequential
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Result fetch and settlement - every 5 minutes
    "run-settlement": {
        "task": "furlong.tasks.settlement.run_settlement_task",
        "schedule": 300.0,  # 5 minutes
        "options": {"expires": 280},  # Expire before next run
    },
    # Model accuracy sweep over the last week - every hour at :15
    "recompute-model-performance": {
        "task": "furlong.tasks.settlement.recompute_model_performance_task",
        "schedule": crontab(minute=15),
        "kwargs": {"force": True},
        "options": {"expires": 3540},
    },
}
