"""Celery task for the paginated Shopee catalog import."""

import logging

from backend.celery_app import app
from backend.config.settings import get_settings
from backend.database.db import SessionLocal
from backend.services.catalog_import import import_catalog_page, recover_from_token_error
from backend.services.integration_store import IntegrationCredentialStore, IntegrationNotFoundError
from backend.services.job_queue import IMPORT_QUEUE, IMPORT_TASK, import_job_key
from backend.services.shopee_api import ShopeeAPIClient, ShopeeTokenError
from backend.tasks.base import QueueTask

logger = logging.getLogger(__name__)


@app.task(bind=True, base=QueueTask, name=IMPORT_TASK)
def import_catalog(self, shop_id: str, offset: int = 0, job_key: str | None = None):
    """Import one catalog page, then hand the job key to the next page.

    Each page is its own task run so one slow shop cannot hold a worker slot
    for the whole catalog.
    """
    settings = get_settings()
    job_key = job_key or import_job_key(shop_id)
    queue = self.job_queue
    definition = queue.definition(IMPORT_QUEUE)

    db = SessionLocal()
    try:
        queue.mark_running(job_key)
        store = IntegrationCredentialStore(db)
        client = ShopeeAPIClient(store, settings)
        try:
            result = import_catalog_page(db, client, store, shop_id, offset, settings.import_page_size)
        except ShopeeTokenError as exc:
            recover_from_token_error(client, store, shop_id, exc)
    except IntegrationNotFoundError as exc:
        logger.error("[Shopee Import] Stopping import for shop %s: %s", shop_id, exc)
        queue.mark_failed(job_key, str(exc))
        return {"status": "not_found", "shop_id": shop_id}
    except Exception as exc:
        logger.exception("[Shopee Import] Import failed for shop %s at offset %d", shop_id, offset)
        db.rollback()
        self.retry_or_fail(definition, job_key, exc)
    finally:
        db.close()

    queue.update_progress(job_key, {"imported": result.total_imported, "total": result.total})

    if result.has_more:
        queue.continue_with(
            IMPORT_QUEUE,
            job_key,
            {"shop_id": shop_id, "offset": result.next_offset},
            countdown=settings.import_page_delay_seconds,
        )
        return {"status": "continued", **result.as_dict()}

    queue.mark_completed(job_key)
    return {"status": "completed", **result.as_dict()}
