"""
Shopee inventory webhook processing.

Handles the product.* and inventory.* families:
- *.stock_updated: stock quantity changed
- *.price_updated: price changed
- *.updated: product details changed (sparse)
- *.deleted: product removed from the shop

Stock and price are last-write-wins; nothing is reconciled against prior values.
"""

import logging
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from backend.database.db import upsert_insert
from backend.database.models import Platform, Product, utcnow
from backend.services import webhook_records
from backend.services.shopee_webhook import INVENTORY_FAMILY, event_family
from backend.services.webhook_payloads import InventoryEvent, parse_inventory_event

logger = logging.getLogger(__name__)

STOCK_UPDATED = "stock_updated"
PRICE_UPDATED = "price_updated"
UPDATED = "updated"
DELETED = "deleted"

PLACEHOLDER_NAME = "Unknown Product"


def event_action(event_type: str) -> str:
    """'product.stock_updated' -> 'stock_updated'."""
    return event_type.split(".", 1)[1] if "." in event_type else ""


def changed_fields(action: str, event: InventoryEvent) -> dict:
    """Columns an event is allowed to touch on an existing product. Absent fields are left alone."""
    changes = {}
    if action == STOCK_UPDATED and event.stock is not None:
        changes["stock"] = event.stock
    elif action == PRICE_UPDATED and event.price is not None:
        changes["price"] = event.unit_price
    elif action == UPDATED:
        if event.stock is not None:
            changes["stock"] = event.stock
        if event.price is not None:
            changes["price"] = event.unit_price
        if event.item_name:
            changes["name"] = event.item_name
        if event.model_sku:
            changes["sku"] = event.model_sku
        if event.primary_image:
            changes["image_url"] = event.primary_image
    return changes


def _create_product(db: Session, shop_id: str, platform: Platform, action: str, event: InventoryEvent) -> None:
    now = utcnow()
    stmt = upsert_insert(db, Product.__table__).values(
        shop_id=shop_id,
        platform=platform,
        shopee_product_id=event.item_id,
        name=event.item_name or PLACEHOLDER_NAME,
        sku=event.model_sku,
        stock=event.stock if event.stock is not None else 0,
        price=event.unit_price if event.price is not None else Decimal("0.00"),
        image_url=event.primary_image,
        created_at=now,
        updated_at=now,
    )
    # A concurrent event may have created the row first; apply only what this event owns.
    changes = changed_fields(action, event)
    if changes:
        stmt = stmt.on_conflict_do_update(
            index_elements=["shop_id", "shopee_product_id"],
            set_={**changes, "updated_at": now},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=["shop_id", "shopee_product_id"])
    db.execute(stmt)


def apply_inventory_event(db: Session, shop_id: str, platform: Platform, event_type: str, event: InventoryEvent) -> str:
    """Apply one inventory event and return what happened: created, updated, deleted or noop."""
    action = event_action(event_type)
    product_id = db.scalar(
        select(Product.id).where(
            Product.shop_id == shop_id,
            Product.shopee_product_id == event.item_id,
        )
    )

    if action == DELETED:
        if product_id is None:
            logger.info("Delete for unknown product %s (shop %s) — nothing to do", event.item_id, shop_id)
            return "noop"
        db.execute(delete(Product).where(Product.id == product_id))
        db.commit()
        logger.info("Deleted product %s (shop %s)", event.item_id, shop_id)
        return "deleted"

    if product_id is None:
        _create_product(db, shop_id, platform, action, event)
        db.commit()
        logger.info("Created product %s (shop %s)", event.item_id, shop_id)
        return "created"

    changes = changed_fields(action, event)
    if not changes:
        logger.info("No applicable fields in %s for product %s", event_type, event.item_id)
        return "noop"

    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(updated_at=utcnow(), **changes)
    )
    db.commit()
    if result.rowcount == 0:
        logger.info("Product %s (shop %s) was deleted before the update applied", event.item_id, shop_id)
        return "noop"
    logger.info("Updated product %s (shop %s): %s", event.item_id, shop_id, ", ".join(sorted(changes)))
    return "updated"


def process_inventory_webhook(db: Session, webhook_id: int, event_type: str, max_attempts: int) -> dict:
    """Apply one inventory webhook. Raises on failure so the queue retries."""
    if event_family(event_type) != INVENTORY_FAMILY:
        logger.info("Skipping non-inventory event: %s (webhook %s)", event_type, webhook_id)
        return {"status": "skipped", "event_type": event_type}

    record = webhook_records.load_webhook_record(db, webhook_id)
    if record.retry_count >= max_attempts:
        logger.error("Webhook %s permanently failed after %d attempts — not processing", webhook_id, record.retry_count)
        return {"status": "abandoned", "webhook_id": webhook_id}

    logger.info("Processing inventory webhook %s (%s)", webhook_id, event_type)
    webhook_records.mark_processing(db, webhook_id)

    try:
        event = parse_inventory_event(record.raw_payload)
        outcome = apply_inventory_event(
            db, record.shop_id, record.platform, event.event_type or event_type, event
        )
        webhook_records.mark_completed(db, webhook_id)
    except Exception as exc:
        logger.exception("Failed to process inventory webhook %s", webhook_id)
        db.rollback()
        retry_count = webhook_records.mark_failed(db, webhook_id, exc)
        if retry_count >= max_attempts:
            logger.error("Webhook %s permanently failed after %d retries", webhook_id, retry_count)
        raise

    return {"status": "processed", "webhook_id": webhook_id, "outcome": outcome}
