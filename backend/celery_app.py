"""Celery application configuration.

Uses Redis as broker when configured, falls back to memory:// for local dev/tests.
Each job family gets its own Celery queue so concurrency and rate limits can
differ; see backend.services.job_queue for the definitions.
"""

from celery import Celery

from backend.config.settings import get_settings
from backend.services.job_queue import ORDER_QUEUE, SWEEP_TASK, queue_definitions

settings = get_settings()
definitions = queue_definitions(settings)

app = Celery(
    "shopdesk",
    include=["backend.tasks.webhook_tasks", "backend.tasks.import_tasks"],
)

app.conf.update(
    broker_url=settings.effective_celery_broker,
    result_backend=settings.effective_celery_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={
        **{d.task_name: {"queue": d.name} for d in definitions.values()},
        # The sweeper only enqueues, so it rides on the order workers
        SWEEP_TASK: {"queue": ORDER_QUEUE},
    },
    task_annotations={
        d.task_name: {"rate_limit": d.rate_limit} for d in definitions.values() if d.rate_limit
    },
    beat_schedule={
        "sweep-pending-webhooks": {
            "task": SWEEP_TASK,
            "schedule": settings.pending_webhook_sweep_minutes * 60.0,
        },
    },
)
