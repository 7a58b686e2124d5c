"""Operator endpoints — webhook inspection/replay and catalog imports."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.api.admin_auth import require_admin
from backend.api.webhook_routes import get_job_queue
from backend.database.db import get_db
from backend.database.models import Platform, WebhookStatus
from backend.services import webhook_records
from backend.services.catalog_import import enqueue_catalog_import
from backend.services.integration_store import IntegrationCredentialStore, IntegrationNotFoundError
from backend.services.job_queue import JobQueue, import_job_key, webhook_job_key
from backend.services.shopee_webhook import event_family
from backend.services.webhook_dispatch import enqueue_webhook
from backend.services.webhook_records import WebhookRecordNotFoundError

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# --- Response models ---

class WebhookRecordOut(BaseModel):
    id: int
    shop_id: str
    platform: Platform
    event_type: str
    raw_payload: Any
    signature: str | None
    status: WebhookStatus
    retry_count: int
    error_message: str | None
    received_at: datetime
    processed_at: datetime | None

    model_config = {"from_attributes": True}


def _load_record(db: Session, webhook_id: int):
    try:
        return webhook_records.load_webhook_record(db, webhook_id)
    except WebhookRecordNotFoundError:
        raise HTTPException(status_code=404, detail="Webhook not found")


def _require_integration(db: Session, shop_id: str) -> None:
    try:
        IntegrationCredentialStore(db).get(shop_id)
    except IntegrationNotFoundError:
        raise HTTPException(status_code=404, detail="Shopee integration not found")


# --- Webhook records ---

@admin_router.get("/webhooks/{webhook_id}", response_model=WebhookRecordOut)
def get_webhook(webhook_id: int, db: Session = Depends(get_db)):
    return _load_record(db, webhook_id)


@admin_router.post("/webhooks/{webhook_id}/replay")
def replay_webhook(
    webhook_id: int,
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    """Reprocess a FAILED record from its stored payload."""
    record = _load_record(db, webhook_id)
    if record.status != WebhookStatus.FAILED:
        raise HTTPException(status_code=409, detail=f"Only FAILED webhooks can be replayed (status is {record.status.value})")

    family = event_family(record.event_type)
    if family is None:
        raise HTTPException(status_code=409, detail=f"No processor for event type {record.event_type}")

    webhook_records.reset_for_replay(db, webhook_id)
    db.refresh(record)

    job_key = webhook_job_key(family, webhook_id)
    try:
        requeued = queue.retry_failed(job_key) or enqueue_webhook(queue, record) is not None
    except Exception:
        # The record is PENDING now, so the pending sweep picks it up once the broker is back
        logger.exception("Replay of webhook %s could not be dispatched", webhook_id)
        raise HTTPException(status_code=503, detail="Queue unavailable; replay will be retried by the pending sweep")
    logger.info("Replay of webhook %s requested (requeued=%s)", webhook_id, requeued)
    return {"webhook_id": webhook_id, "job_key": job_key, "requeued": requeued}


# --- Catalog imports ---

@admin_router.get("/integrations/shopee/{shop_id}/import")
def get_import_status(
    shop_id: str,
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    _require_integration(db, shop_id)
    return {"shop_id": shop_id, **queue.get_status(import_job_key(shop_id))}


@admin_router.post("/integrations/shopee/{shop_id}/import", status_code=202)
def start_import(
    shop_id: str,
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    _require_integration(db, shop_id)
    job_key = enqueue_catalog_import(queue, shop_id)
    if job_key is None:
        return {"shop_id": shop_id, "job_key": import_job_key(shop_id), "queued": False, "detail": "Import already in progress"}
    return {"shop_id": shop_id, "job_key": job_key, "queued": True}
