"""Route stored webhook records onto the processing queues."""

import logging

from backend.database.models import WebhookRecord
from backend.services.job_queue import INVENTORY_QUEUE, ORDER_QUEUE, JobQueue, webhook_job_key
from backend.services.shopee_webhook import INVENTORY_FAMILY, ORDER_FAMILY, event_family

logger = logging.getLogger(__name__)

FAMILY_QUEUES = {
    ORDER_FAMILY: ORDER_QUEUE,
    INVENTORY_FAMILY: INVENTORY_QUEUE,
}


def enqueue_webhook(queue: JobQueue, record: WebhookRecord) -> str | None:
    """Queue processing for a stored record, keyed `<family>:<record id>`.

    Returns the job key, or None when the event type has no processor or the
    job already exists.
    """
    family = event_family(record.event_type)
    if family is None:
        logger.info("No processor for event type %s (webhook %s) — stored only", record.event_type, record.id)
        return None

    payload = {
        "webhook_id": record.id,
        "shop_id": record.shop_id,
        "platform": record.platform.value,
        "event_type": record.event_type,
    }
    return queue.enqueue(FAMILY_QUEUES[family], payload, job_key=webhook_job_key(family, record.id))
