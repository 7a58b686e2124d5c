"""
Durable job queue: Celery for delivery, a `queued_jobs` ledger for dedupe and inspection.

Every job carries a job_key. Enqueueing a key that is already in the ledger
is a no-op, so "queue processing for webhook 42" can be repeated safely.
Jobs that exhaust their attempts stay in the ledger as FAILED until an
operator retries them.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backend.config.settings import Settings, get_settings
from backend.database.models import JobStatus, QueuedJob, utcnow

logger = logging.getLogger(__name__)

ORDER_QUEUE = "shopee-webhook.order"
INVENTORY_QUEUE = "shopee-webhook.inventory"
IMPORT_QUEUE = "shopee-catalog-import"

ORDER_TASK = "backend.tasks.webhook_tasks.process_order_webhook"
INVENTORY_TASK = "backend.tasks.webhook_tasks.process_inventory_webhook"
IMPORT_TASK = "backend.tasks.import_tasks.import_catalog"
SWEEP_TASK = "backend.tasks.webhook_tasks.sweep_pending_webhooks"


@dataclass(frozen=True)
class QueueDefinition:
    name: str
    task_name: str
    max_attempts: int
    backoff_seconds: float
    concurrency: int
    rate_limit: str | None = None
    # Completed keys may be claimed again (imports); webhook keys never are
    reuse_completed_keys: bool = False


def queue_definitions(settings: Settings | None = None) -> dict[str, QueueDefinition]:
    settings = settings or get_settings()
    return {
        ORDER_QUEUE: QueueDefinition(
            name=ORDER_QUEUE,
            task_name=ORDER_TASK,
            max_attempts=settings.webhook_max_attempts,
            backoff_seconds=settings.webhook_backoff_seconds,
            concurrency=settings.order_worker_concurrency,
            rate_limit=settings.order_rate_limit,
        ),
        INVENTORY_QUEUE: QueueDefinition(
            name=INVENTORY_QUEUE,
            task_name=INVENTORY_TASK,
            max_attempts=settings.webhook_max_attempts,
            backoff_seconds=settings.webhook_backoff_seconds,
            concurrency=settings.inventory_worker_concurrency,
            rate_limit=settings.inventory_rate_limit,
        ),
        IMPORT_QUEUE: QueueDefinition(
            name=IMPORT_QUEUE,
            task_name=IMPORT_TASK,
            max_attempts=settings.import_max_attempts,
            backoff_seconds=settings.import_backoff_seconds,
            concurrency=settings.import_worker_concurrency,
            rate_limit=settings.import_rate_limit,
            reuse_completed_keys=True,
        ),
    }


def webhook_job_key(family: str, webhook_id: int) -> str:
    return f"{family}:{webhook_id}"


def import_job_key(shop_id: str) -> str:
    return f"import:{shop_id}"


def backoff_delay(definition: QueueDefinition, retries: int) -> float:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return definition.backoff_seconds * (2 ** retries)


class JobQueue:
    """Handle passed to the webhook receiver and the workers.

    `send_task` is Celery's `app.send_task` in production and a mock in tests.
    The ledger uses its own short-lived sessions so it never joins the
    caller's transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        send_task: Callable,
        definitions: dict[str, QueueDefinition] | None = None,
    ):
        self._session_factory = session_factory
        self._send_task = send_task
        self.definitions = definitions or queue_definitions()

    def definition(self, queue_name: str) -> QueueDefinition:
        return self.definitions[queue_name]

    # --- Producer side ---

    def enqueue(self, queue_name: str, payload: dict, job_key: str, countdown: float | None = None) -> str | None:
        """Record and dispatch a job. Returns the job key, or None for a duplicate."""
        definition = self.definition(queue_name)
        db = self._session_factory()
        try:
            db.add(QueuedJob(
                job_key=job_key,
                queue=definition.name,
                task_name=definition.task_name,
                payload=payload,
                status=JobStatus.QUEUED,
                attempts=0,
                max_attempts=definition.max_attempts,
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                if not (definition.reuse_completed_keys and self._reclaim(db, job_key, payload)):
                    logger.info("Job %s already queued — skipping duplicate", job_key)
                    return None

            try:
                self._dispatch(definition, payload, job_key, countdown)
            except Exception:
                logger.exception("Dispatch failed for job %s on %s", job_key, definition.name)
                db.execute(delete(QueuedJob).where(
                    QueuedJob.job_key == job_key,
                    QueuedJob.status == JobStatus.QUEUED,
                ))
                db.commit()
                raise

            logger.info("Queued job %s on %s", job_key, definition.name)
            return job_key
        finally:
            db.close()

    def continue_with(self, queue_name: str, job_key: str, payload: dict, countdown: float | None = None) -> str:
        """Hand a running job's key to its follow-up (next import page)."""
        definition = self.definition(queue_name)
        self._update(job_key, payload=payload, status=JobStatus.QUEUED, attempts=0, last_error=None)
        try:
            self._dispatch(definition, payload, job_key, countdown)
        except Exception as exc:
            # Leave the key retryable from where it stopped
            self.mark_failed(job_key, f"Dispatch failed: {exc}")
            raise
        logger.info("Continued job %s on %s with %s", job_key, definition.name, payload)
        return job_key

    def retry_failed(self, job_key: str) -> bool:
        """Requeue a job that exhausted its attempts. False if it is not FAILED."""
        db = self._session_factory()
        try:
            job = db.scalar(select(QueuedJob).where(QueuedJob.job_key == job_key))
            if job is None or job.status != JobStatus.FAILED:
                return False
            definition = self.definition(job.queue)
            payload = dict(job.payload)
            result = db.execute(
                update(QueuedJob)
                .where(QueuedJob.job_key == job_key, QueuedJob.status == JobStatus.FAILED)
                .values(status=JobStatus.QUEUED, attempts=0, finished_at=None, updated_at=utcnow())
            )
            db.commit()
            if result.rowcount != 1:
                return False
        finally:
            db.close()

        try:
            self._dispatch(definition, payload, job_key, None)
        except Exception as exc:
            self.mark_failed(job_key, f"Dispatch failed: {exc}")
            raise
        logger.info("Retrying failed job %s on %s", job_key, definition.name)
        return True

    # --- Worker side ---

    def mark_running(self, job_key: str | None) -> None:
        self._update(job_key, status=JobStatus.RUNNING, attempts=QueuedJob.attempts + 1)

    def mark_retrying(self, job_key: str | None, error: str) -> None:
        self._update(job_key, status=JobStatus.RETRYING, last_error=error)

    def mark_completed(self, job_key: str | None) -> None:
        self._update(job_key, status=JobStatus.COMPLETED, finished_at=utcnow())

    def mark_failed(self, job_key: str | None, error: str) -> None:
        self._update(job_key, status=JobStatus.FAILED, last_error=error, finished_at=utcnow())
        if job_key:
            logger.error("Job %s exhausted its attempts: %s", job_key, error)

    def update_progress(self, job_key: str | None, progress: dict) -> None:
        self._update(job_key, progress=progress)

    def get_status(self, job_key: str) -> dict:
        db = self._session_factory()
        try:
            job = db.scalar(select(QueuedJob).where(QueuedJob.job_key == job_key))
            if job is None:
                return {"status": "not-found", "progress": 0}
            return {
                "status": job.status.value,
                "progress": job.progress or 0,
                "attempts": job.attempts,
                "failed_reason": job.last_error if job.status == JobStatus.FAILED else None,
                "payload": job.payload,
            }
        finally:
            db.close()

    # --- Internals ---

    def _reclaim(self, db: Session, job_key: str, payload: dict) -> bool:
        result = db.execute(
            update(QueuedJob)
            .where(QueuedJob.job_key == job_key, QueuedJob.status == JobStatus.COMPLETED)
            .values(
                status=JobStatus.QUEUED, payload=payload, attempts=0, last_error=None,
                progress=None, finished_at=None, updated_at=utcnow(),
            )
        )
        db.commit()
        return result.rowcount == 1

    def _update(self, job_key: str | None, **values) -> None:
        if not job_key:
            return
        db = self._session_factory()
        try:
            db.execute(
                update(QueuedJob)
                .where(QueuedJob.job_key == job_key)
                .values(updated_at=utcnow(), **values)
            )
            db.commit()
        finally:
            db.close()

    def _dispatch(self, definition: QueueDefinition, payload: dict, job_key: str, countdown: float | None) -> None:
        self._send_task(
            definition.task_name,
            kwargs={**payload, "job_key": job_key},
            queue=definition.name,
            countdown=countdown,
        )


def build_job_queue(settings: Settings | None = None) -> JobQueue:
    """Construct the process-wide queue handle (API startup / worker process init)."""
    from backend.celery_app import app
    from backend.database.db import SessionLocal

    return JobQueue(SessionLocal, app.send_task, queue_definitions(settings))
