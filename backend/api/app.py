from fastapi import FastAPI

from backend.api.admin_routes import admin_router
from backend.api.webhook_routes import webhook_router
from backend.config.logging_config import configure_logging
from backend.config.settings import get_settings
from backend.database.db import init_db
from backend.services.job_queue import JobQueue

settings = get_settings()

VERSION = "0.1.0"


def create_app(job_queue: JobQueue | None = None) -> FastAPI:
    # Disable Swagger/ReDoc in production
    docs_kwargs = {}
    if settings.is_production:
        docs_kwargs = {"docs_url": None, "redoc_url": None}

    app = FastAPI(
        title="ShopDesk API",
        description="Shopee webhook ingestion and order/inventory sync",
        version=VERSION,
        **docs_kwargs,
    )

    # None means "build from settings on first use" (see get_job_queue)
    app.state.job_queue = job_queue

    app.include_router(webhook_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    def health_check():
        return {"status": "ok", "version": VERSION}

    @app.on_event("startup")
    def on_startup():
        settings.validate_production()
        configure_logging(settings.log_level, json_output=settings.is_deployed)
        if not settings.is_deployed:
            init_db()  # Deployed envs use: alembic upgrade head

    return app


app = create_app()
