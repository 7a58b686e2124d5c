"""Worker entry point: one Celery worker per logical queue.

    python -m backend.worker order
    python -m backend.worker inventory
    python -m backend.worker import
    python -m backend.worker beat
"""

import argparse
import logging

from celery.signals import setup_logging

from backend.celery_app import app, definitions
from backend.config.logging_config import configure_logging
from backend.config.settings import get_settings
from backend.services.job_queue import IMPORT_QUEUE, INVENTORY_QUEUE, ORDER_QUEUE

logger = logging.getLogger(__name__)

WORKERS = {
    "order": ORDER_QUEUE,
    "inventory": INVENTORY_QUEUE,
    "import": IMPORT_QUEUE,
}


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.is_deployed)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Start a ShopDesk background worker")
    parser.add_argument("role", choices=[*WORKERS, "beat"])
    parser.add_argument("--concurrency", type=int, default=None, help="override the configured concurrency")
    args = parser.parse_args(argv)

    settings = get_settings()
    settings.validate_production()

    if args.role == "beat":
        logger.info("Starting Celery beat")
        app.start(["beat", "--loglevel", settings.log_level])
        return

    definition = definitions[WORKERS[args.role]]
    concurrency = args.concurrency or definition.concurrency
    logger.info("Starting %s worker on %s (concurrency=%d)", args.role, definition.name, concurrency)
    app.worker_main([
        "worker",
        "--queues", definition.name,
        "--concurrency", str(concurrency),
        "--hostname", f"{args.role}@%h",
        "--loglevel", settings.log_level,
    ])


if __name__ == "__main__":
    main()
