"""Celery application configuration."""
from celery import Celery

from mantle.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "mantle",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["mantle.tasks.ingestion_tasks"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Reliability settings
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Re-queue if worker dies
    worker_prefetch_multiplier=1,  # One task at a time per worker

    # Result backend settings
    result_expires=3600,

    task_routes={
        "mantle.tasks.ingestion_tasks.*": {"queue": "ingestion"},
    },

    # Task time limits
    task_soft_time_limit=300,
    task_time_limit=600,
)
