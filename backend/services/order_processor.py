"""
Shopee order webhook processing.

Handles the order.* family (order.created, order.status_updated,
order.cancelled, order.payment_completed, ...). Every event is applied as an
upsert on (shop_id, shopee_order_id), so replays and duplicate deliveries
converge on one row.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.database.db import upsert_insert
from backend.database.models import ConnectionState, Order, Platform, ShopeeIntegration, utcnow
from backend.services import webhook_records
from backend.services.shopee_webhook import ORDER_FAMILY, event_family
from backend.services.webhook_payloads import OrderEvent, from_epoch, parse_order_event

logger = logging.getLogger(__name__)


def upsert_order(
    db: Session,
    shop_id: str,
    platform: Platform,
    event: OrderEvent,
    fallback_order_date: datetime,
) -> None:
    """Create the order on first sight; afterwards only status, amount and items change.

    Buyer fields are never overwritten because later status events usually omit them.
    Status, amount and items are only updated when the event carries them.
    """
    now = utcnow()
    items = [item.normalized() for item in event.items] if event.items is not None else None
    stmt = upsert_insert(db, Order.__table__).values(
        shop_id=shop_id,
        platform=platform,
        shopee_order_id=event.order_id,
        order_number=event.order_sn or event.order_id,
        status=event.order_status or "UNKNOWN",
        total_amount=event.total if event.total is not None else Decimal("0.00"),
        customer_name=event.buyer_username or "Unknown",
        customer_email=event.buyer_email,
        customer_phone=event.buyer_phone,
        shipping_address=event.shipping_address_text,
        order_date=from_epoch(event.create_time) or fallback_order_date,
        items=items if items is not None else [],
        created_at=now,
        updated_at=now,
    )
    updates = {"updated_at": stmt.excluded["updated_at"]}
    if event.order_status is not None:
        updates["status"] = stmt.excluded["status"]
    if event.total is not None:
        updates["total_amount"] = stmt.excluded["total_amount"]
    if items is not None:
        updates["items"] = stmt.excluded["items"]
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop_id", "shopee_order_id"],
        set_=updates,
    )
    db.execute(stmt)
    db.commit()


def find_shop_for_order(db: Session, shopee_order_id: str) -> str | None:
    """Tenant owning a Shopee order id, for order events that omit shop_id.

    None when the order is unknown or the id is claimed by more than one active shop.
    """
    rows = db.execute(
        select(Order.shop_id)
        .join(ShopeeIntegration, ShopeeIntegration.shop_id == Order.shop_id)
        .where(
            Order.shopee_order_id == str(shopee_order_id),
            ShopeeIntegration.connection_state == ConnectionState.ACTIVE,
        )
        .group_by(Order.shop_id)
        .limit(2)
    ).scalars().all()
    if len(rows) != 1:
        return None
    return rows[0]


def process_order_webhook(db: Session, webhook_id: int, event_type: str, max_attempts: int) -> dict:
    """Apply one order webhook. Raises on failure so the queue retries."""
    if event_family(event_type) != ORDER_FAMILY:
        logger.info("Skipping non-order event: %s (webhook %s)", event_type, webhook_id)
        return {"status": "skipped", "event_type": event_type}

    record = webhook_records.load_webhook_record(db, webhook_id)
    if record.retry_count >= max_attempts:
        logger.error("Webhook %s permanently failed after %d attempts — not processing", webhook_id, record.retry_count)
        return {"status": "abandoned", "webhook_id": webhook_id}

    logger.info("Processing order webhook %s (%s)", webhook_id, event_type)
    webhook_records.mark_processing(db, webhook_id)

    try:
        event = parse_order_event(record.raw_payload)
        upsert_order(db, record.shop_id, record.platform, event, fallback_order_date=record.received_at)
        webhook_records.mark_completed(db, webhook_id)
    except Exception as exc:
        logger.exception("Failed to process order webhook %s", webhook_id)
        db.rollback()
        retry_count = webhook_records.mark_failed(db, webhook_id, exc)
        if retry_count >= max_attempts:
            logger.error("Webhook %s permanently failed after %d retries", webhook_id, retry_count)
        raise

    logger.info("Order %s: %s (shop %s)", event_type, event.order_sn or event.order_id, record.shop_id)
    return {"status": "processed", "webhook_id": webhook_id, "order_id": event.order_id}
