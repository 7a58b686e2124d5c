"""WebhookRecord lifecycle: created by the receiver, advanced by the processors."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from backend.database.models import Platform, WebhookRecord, WebhookStatus, utcnow

logger = logging.getLogger(__name__)


class WebhookRecordNotFoundError(Exception):
    """Raised when a job references a webhook record that does not exist."""
    pass


def create_webhook_record(
    db: Session,
    shop_id: str,
    event_type: str,
    payload: dict,
    raw_body: bytes,
    signature: str | None,
    platform: Platform = Platform.SHOPEE,
) -> WebhookRecord:
    record = WebhookRecord(
        shop_id=shop_id,
        platform=platform,
        event_type=event_type,
        raw_payload=payload,
        raw_body=raw_body.decode("utf-8"),
        signature=signature or None,
        status=WebhookStatus.PENDING,
        retry_count=0,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def load_webhook_record(db: Session, webhook_id: int) -> WebhookRecord:
    record = db.get(WebhookRecord, webhook_id)
    if record is None:
        raise WebhookRecordNotFoundError(f"Webhook {webhook_id} not found")
    return record


def _set(db: Session, webhook_id: int, **values) -> None:
    db.execute(
        update(WebhookRecord)
        .where(WebhookRecord.id == webhook_id)
        .values(updated_at=utcnow(), **values)
    )
    db.commit()


def mark_processing(db: Session, webhook_id: int) -> None:
    _set(db, webhook_id, status=WebhookStatus.PROCESSING)


def mark_completed(db: Session, webhook_id: int) -> None:
    _set(db, webhook_id, status=WebhookStatus.COMPLETED, processed_at=utcnow())


def mark_failed(db: Session, webhook_id: int, error: Exception | str) -> int:
    """Record a failed attempt and return the new retry count."""
    _set(
        db,
        webhook_id,
        status=WebhookStatus.FAILED,
        error_message=str(error) or error.__class__.__name__,
        retry_count=WebhookRecord.retry_count + 1,
    )
    return db.scalar(select(WebhookRecord.retry_count).where(WebhookRecord.id == webhook_id)) or 0


def reset_for_replay(db: Session, webhook_id: int) -> None:
    """Operator replay of a FAILED record; the stored payload is left untouched."""
    _set(db, webhook_id, status=WebhookStatus.PENDING, retry_count=0)


def find_stale_pending(db: Session, older_than: datetime, prefixes: tuple[str, ...], limit: int = 500) -> list[WebhookRecord]:
    """PENDING records whose enqueue never happened, oldest first."""
    return list(db.scalars(
        select(WebhookRecord)
        .where(
            WebhookRecord.status == WebhookStatus.PENDING,
            WebhookRecord.received_at < older_than,
            or_(*(WebhookRecord.event_type.startswith(p) for p in prefixes)),
        )
        .order_by(WebhookRecord.received_at)
        .limit(limit)
    ))


def stale_cutoff(minutes: int) -> datetime:
    return utcnow() - timedelta(minutes=minutes)
