"""Celery tasks that apply stored Shopee webhooks to orders and products."""

import logging

from backend.celery_app import app
from backend.config.settings import get_settings
from backend.database.db import SessionLocal
from backend.services import inventory_processor, order_processor, webhook_records
from backend.services.job_queue import (
    INVENTORY_QUEUE,
    INVENTORY_TASK,
    ORDER_QUEUE,
    ORDER_TASK,
    SWEEP_TASK,
    webhook_job_key,
)
from backend.services.shopee_webhook import ROUTABLE_PREFIXES, event_family
from backend.services.webhook_dispatch import enqueue_webhook
from backend.services.webhook_records import WebhookRecordNotFoundError
from backend.tasks.base import QueueTask

logger = logging.getLogger(__name__)


def _run_processor(task: QueueTask, queue_name: str, process, webhook_id: int, event_type: str, job_key: str | None) -> dict:
    queue = task.job_queue
    definition = queue.definition(queue_name)

    db = SessionLocal()
    try:
        queue.mark_running(job_key)
        result = process(db, webhook_id, event_type, definition.max_attempts)
    except WebhookRecordNotFoundError as exc:
        # Retrying cannot make a missing record appear
        logger.error("Dropping job %s: %s", job_key, exc)
        queue.mark_failed(job_key, str(exc))
        return {"status": "not_found", "webhook_id": webhook_id}
    except Exception as exc:
        task.retry_or_fail(definition, job_key, exc)
    finally:
        db.close()

    if result["status"] == "abandoned":
        queue.mark_failed(job_key, f"Webhook {webhook_id} already reached its retry limit")
    else:
        queue.mark_completed(job_key)
    return result


@app.task(bind=True, base=QueueTask, name=ORDER_TASK)
def process_order_webhook(self, webhook_id: int, shop_id: str, platform: str, event_type: str, job_key: str | None = None):
    """Apply one order.* webhook record."""
    logger.info("Order job %s: webhook %s (%s) for shop %s on %s", job_key, webhook_id, event_type, shop_id, platform)
    return _run_processor(self, ORDER_QUEUE, order_processor.process_order_webhook, webhook_id, event_type, job_key)


@app.task(bind=True, base=QueueTask, name=INVENTORY_TASK)
def process_inventory_webhook(self, webhook_id: int, shop_id: str, platform: str, event_type: str, job_key: str | None = None):
    """Apply one product.*/inventory.* webhook record."""
    logger.info("Inventory job %s: webhook %s (%s) for shop %s on %s", job_key, webhook_id, event_type, shop_id, platform)
    return _run_processor(self, INVENTORY_QUEUE, inventory_processor.process_inventory_webhook, webhook_id, event_type, job_key)


def _retry_lost_dispatch(queue, record) -> bool:
    """A PENDING record whose job is FAILED lost its dispatch (e.g. during a replay)."""
    family = event_family(record.event_type)
    return family is not None and queue.retry_failed(webhook_job_key(family, record.id))


@app.task(bind=True, base=QueueTask, name=SWEEP_TASK)
def sweep_pending_webhooks(self):
    """Re-enqueue records stuck in PENDING because their enqueue failed after being stored."""
    settings = get_settings()
    db = SessionLocal()
    try:
        stale = webhook_records.find_stale_pending(
            db,
            webhook_records.stale_cutoff(settings.pending_webhook_sweep_minutes),
            ROUTABLE_PREFIXES,
        )
        requeued = 0
        for record in stale:
            try:
                if enqueue_webhook(self.job_queue, record) or _retry_lost_dispatch(self.job_queue, record):
                    requeued += 1
            except Exception:
                logger.exception("Sweeper could not enqueue webhook %s", record.id)

        if stale:
            logger.info("Pending sweep: %d stale records, %d re-enqueued", len(stale), requeued)
        return {"stale": len(stale), "requeued": requeued}
    finally:
        db.close()
