"""Paginated Shopee catalog import into the products table."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from backend.database.db import upsert_insert
from backend.database.models import Platform, Product, utcnow
from backend.services.integration_store import IntegrationCredentialStore
from backend.services.job_queue import IMPORT_QUEUE, JobQueue, import_job_key
from backend.services.shopee_api import CatalogItem, ShopeeAPIClient, ShopeeAPIError, ShopeeTokenError

logger = logging.getLogger(__name__)


@dataclass
class ImportPageResult:
    imported: int
    total_imported: int
    total: int
    has_more: bool
    next_offset: int

    def as_dict(self) -> dict:
        return {
            "imported": self.imported,
            "total_imported": self.total_imported,
            "total": self.total,
            "has_more": self.has_more,
            "next_offset": self.next_offset,
        }


def enqueue_catalog_import(queue: JobQueue, shop_id: str) -> str | None:
    """Seed an import at offset 0. At most one import per shop is in flight.

    A previously FAILED import is resumed from the page it stopped at.
    Returns None when an import is already queued or running.
    """
    job_key = import_job_key(shop_id)
    if queue.enqueue(IMPORT_QUEUE, {"shop_id": shop_id, "offset": 0}, job_key=job_key):
        return job_key
    if queue.retry_failed(job_key):
        return job_key
    return None


def upsert_catalog_item(db: Session, shop_id: str, item: CatalogItem) -> None:
    now = utcnow()
    fields = {
        "name": item.name,
        "sku": item.sku,
        "stock": item.stock,
        "price": item.price,
        "image_url": item.image_url,
    }
    stmt = upsert_insert(db, Product.__table__).values(
        shop_id=shop_id,
        platform=Platform.SHOPEE,
        shopee_product_id=item.item_id,
        created_at=now,
        updated_at=now,
        **fields,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop_id", "shopee_product_id"],
        set_={**fields, "updated_at": now},
    )
    db.execute(stmt)


def import_catalog_page(
    db: Session,
    client: ShopeeAPIClient,
    store: IntegrationCredentialStore,
    shop_id: str,
    offset: int,
    page_size: int,
) -> ImportPageResult:
    logger.info("[Shopee Import] Starting import for shop %s, offset %d", shop_id, offset)
    page = client.get_product_list(shop_id, offset, page_size)

    for item in page.products:
        upsert_catalog_item(db, shop_id, item)
    db.commit()

    imported = len(page.products)
    result = ImportPageResult(
        imported=imported,
        total_imported=offset + imported,
        total=page.total_count,
        has_more=page.has_next_page,
        next_offset=page.next_offset,
    )
    logger.info(
        "[Shopee Import] Imported %d products (%d/%d) for shop %s",
        imported, result.total_imported, result.total, shop_id,
    )

    if not page.has_next_page:
        store.record_sync(shop_id)
        logger.info("[Shopee Import] Completed import for shop %s", shop_id)
    return result


def recover_from_token_error(client: ShopeeAPIClient, store: IntegrationCredentialStore, shop_id: str, exc: ShopeeTokenError):
    """Try one token refresh after an auth failure. Always raises.

    A successful refresh raises a retryable error so the page runs again with
    the new token; a failed refresh marks the integration UNHEALTHY.
    """
    logger.warning("[Shopee Import] Token error for shop %s, attempting refresh: %s", shop_id, exc)
    try:
        client.refresh_access_token(shop_id)
    except Exception as refresh_error:
        logger.error("[Shopee Import] Failed to refresh token for shop %s: %s", shop_id, refresh_error)
        store.mark_unhealthy(shop_id)
        raise refresh_error from exc
    raise ShopeeAPIError("Token refreshed, retrying import") from exc
