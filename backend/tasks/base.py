"""Shared Celery task base for jobs tracked in the queued_jobs ledger."""

import logging

from celery import Task

from backend.services.job_queue import JobQueue, QueueDefinition, backoff_delay, build_job_queue

logger = logging.getLogger(__name__)


class QueueTask(Task):
    """Task with a per-process JobQueue handle and ledger-aware retries."""

    _job_queue: JobQueue | None = None

    @property
    def job_queue(self) -> JobQueue:
        if self._job_queue is None:
            self._job_queue = build_job_queue()
        return self._job_queue

    def retry_or_fail(self, definition: QueueDefinition, job_key: str | None, exc: Exception):
        """Schedule the next attempt with exponential backoff, or give up. Always raises.

        On the last attempt the ledger row is marked FAILED and the original
        exception propagates so Celery records the task as failed. A ledger
        write that fails here (the store being down) does not stop the retry.
        """
        retries = self.request.retries or 0
        attempt = retries + 1
        error = str(exc) or exc.__class__.__name__
        if attempt >= definition.max_attempts:
            self._record(self.job_queue.mark_failed, job_key, error)
            raise exc

        countdown = backoff_delay(definition, retries)
        logger.warning(
            "Attempt %d/%d of %s failed, retrying in %.1fs: %s",
            attempt, definition.max_attempts, job_key or self.name, countdown, exc,
        )
        self._record(self.job_queue.mark_retrying, job_key, error)
        raise self.retry(exc=exc, countdown=countdown, max_retries=definition.max_attempts - 1)

    def _record(self, mark, job_key: str | None, error: str) -> None:
        try:
            mark(job_key, error)
        except Exception:
            logger.exception("Could not update ledger row for %s", job_key)
