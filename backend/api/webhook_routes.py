"""Shopee webhook endpoint — separate router for raw body verification."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from backend.config.settings import get_settings
from backend.database.db import get_db
from backend.database.models import Platform
from backend.services.job_queue import JobQueue, build_job_queue
from backend.services.integration_store import IntegrationCredentialStore
from backend.services.order_processor import find_shop_for_order
from backend.services.shopee_webhook import (
    DEFERRED,
    extract_event_type,
    extract_shop_id,
    is_timestamp_valid,
    verify_signature,
)
from backend.services.webhook_dispatch import enqueue_webhook
from backend.services.webhook_records import create_webhook_record

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_job_queue(request: Request) -> JobQueue:
    """Dependency: the queue handle constructed at app startup."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        queue = build_job_queue()
        request.app.state.job_queue = queue
    return queue


def _signed_url(request: Request) -> str:
    """The URL Shopee signed: the configured public URL when behind a proxy."""
    public_url = get_settings().shopee_webhook_public_url
    if not public_url:
        return str(request.url)
    query = request.url.query
    return f"{public_url}?{query}" if query else public_url


def _resolve_tenant(db: Session, payload: dict, shopee_shop_id) -> str | None:
    if shopee_shop_id is DEFERRED:
        return find_shop_for_order(db, str(payload["order_id"]))
    return IntegrationCredentialStore(db).find_shop_id(shopee_shop_id)


def _accept(db: Session, queue: JobQueue, shop_id: str, event_type: str, payload: dict, raw_body: bytes, signature: str) -> None:
    record = create_webhook_record(
        db,
        shop_id=shop_id,
        event_type=event_type,
        payload=payload,
        raw_body=raw_body,
        signature=signature,
        platform=Platform.SHOPEE,
    )
    try:
        enqueue_webhook(queue, record)
    except Exception:
        # The record stays PENDING; the sweeper enqueues it later
        logger.exception("Failed to enqueue webhook %s (%s) — left PENDING", record.id, event_type)
        return
    logger.info("Webhook captured: %s for shop %s (record %s)", event_type, shop_id, record.id)


@webhook_router.post("/shopee")
async def shopee_webhook(
    request: Request,
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    """Receive a Shopee push. No auth — verified by the Shopee HMAC signature.

    Once the signature checks out, Shopee always gets 200 unless the payload
    is unusable or the shop is unknown; processing faults are retried from
    our own queue.
    """
    raw_body = await request.body()
    authorization = request.headers.get("authorization", "")
    signature = request.headers.get("x-shopee-signature", "")
    timestamp = request.query_params.get("timestamp", "")

    if not is_timestamp_valid(timestamp):
        logger.warning("Rejected Shopee webhook: invalid timestamp %r", timestamp)
        raise HTTPException(status_code=401, detail="Invalid timestamp")

    if not verify_signature(authorization, _signed_url(request), timestamp, raw_body, signature):
        logger.warning("Rejected Shopee webhook: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("Rejected Shopee webhook: body is not valid JSON")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    event_type = extract_event_type(payload)
    shopee_shop_id = extract_shop_id(event_type, payload)
    if shopee_shop_id is None:
        logger.warning("Rejected Shopee webhook %s: no shop_id in payload", event_type)
        raise HTTPException(status_code=400, detail="Missing shop_id")

    try:
        shop_id = await run_in_threadpool(_resolve_tenant, db, payload, shopee_shop_id)
    except Exception:
        logger.exception("Tenant lookup failed for Shopee webhook %s", event_type)
        return {"success": True}

    if shop_id is None:
        lookup = f"order {payload['order_id']}" if shopee_shop_id is DEFERRED else shopee_shop_id
        logger.warning("Rejected Shopee webhook %s: shop not found for %s", event_type, lookup)
        raise HTTPException(status_code=404, detail="Shop not found")

    try:
        await run_in_threadpool(_accept, db, queue, shop_id, event_type, payload, raw_body, signature)
    except Exception:
        logger.exception("Error storing Shopee webhook %s for shop %s", event_type, shop_id)

    return {"success": True}
