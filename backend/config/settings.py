from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./shopdesk.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # Shopee partner credentials. The partner key doubles as the webhook HMAC secret.
    shopee_partner_id: str = ""
    shopee_partner_key: str = ""
    shopee_api_base_url: str = "https://partner.shopeemobile.com"

    # Public webhook URL as Shopee sees it (set when running behind a proxy)
    shopee_webhook_public_url: str = ""
    webhook_timestamp_tolerance_seconds: int = 300

    # Webhook processing queue
    webhook_max_attempts: int = 5
    webhook_backoff_seconds: float = 1.0
    order_worker_concurrency: int = 5
    order_rate_limit: str = "20/s"
    inventory_worker_concurrency: int = 10
    inventory_rate_limit: str = "50/s"
    pending_webhook_sweep_minutes: int = 5

    # Catalog import queue
    import_max_attempts: int = 3
    import_backoff_seconds: float = 2.0
    import_page_size: int = 50
    import_page_delay_seconds: int = 1
    import_worker_concurrency: int = 2
    import_rate_limit: str = "10/m"

    # Redis / Celery
    redis_url: str = ""
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    # Operator endpoints (disabled when empty)
    admin_api_token: str = ""

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_deployed(self) -> bool:
        return self.environment.lower() in ("production", "staging")

    @property
    def effective_celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url or "memory://"

    @property
    def effective_celery_backend(self) -> str:
        return self.celery_result_backend or self.redis_url or "cache+memory://"

    def validate_production(self) -> None:
        """Raise if production is missing required configuration."""
        if self.is_production and not self.shopee_partner_key:
            raise ValueError("SHOPEE_PARTNER_KEY must be set in production")
        if self.is_production and not self.shopee_partner_id:
            raise ValueError("SHOPEE_PARTNER_ID must be set in production")
        if self.is_production and not self.redis_url:
            raise ValueError("REDIS_URL must be set in production")
        if self.is_production and not self.admin_api_token:
            raise ValueError("ADMIN_API_TOKEN must be set in production")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
