import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Platform(str, enum.Enum):
    SHOPEE = "SHOPEE"


class WebhookStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class IntegrationStatus(str, enum.Enum):
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    DISCONNECTED = "DISCONNECTED"


class ConnectionState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DISCONNECTED = "DISCONNECTED"


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    RETRYING = "RETRYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=20, validate_strings=True)


class Shop(Base):
    """A tenant. Every other row is scoped by its shop_id."""
    __tablename__ = "shops"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ShopeeIntegration(Base):
    """Marketplace credentials produced by the OAuth connection flow."""
    __tablename__ = "shopee_integrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_id: Mapped[str] = mapped_column(String(36), ForeignKey("shops.id"), unique=True, nullable=False)
    shopee_shop_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)  # base64 encoded
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)  # base64 encoded
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[IntegrationStatus] = mapped_column(
        _enum(IntegrationStatus), default=IntegrationStatus.HEALTHY, index=True
    )
    connection_state: Mapped[ConnectionState] = mapped_column(
        _enum(ConnectionState), default=ConnectionState.ACTIVE
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    disconnected_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class WebhookRecord(Base):
    """One received marketplace notification, kept for audit and replay."""
    __tablename__ = "webhook_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_id: Mapped[str] = mapped_column(String(36), ForeignKey("shops.id"), index=True, nullable=False)
    platform: Mapped[Platform] = mapped_column(_enum(Platform), default=Platform.SHOPEE)
    event_type: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    raw_body: Mapped[str] = mapped_column(Text, nullable=False)  # exact signed bytes
    signature: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[WebhookStatus] = mapped_column(
        _enum(WebhookStatus), default=WebhookStatus.PENDING, index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Order(Base):
    """Marketplace order, unique per (shop, Shopee order id)."""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_id: Mapped[str] = mapped_column(String(36), ForeignKey("shops.id"), index=True, nullable=False)
    platform: Mapped[Platform] = mapped_column(_enum(Platform), default=Platform.SHOPEE)
    shopee_order_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)  # Shopee's own vocabulary
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(50))
    shipping_address: Mapped[str | None] = mapped_column(Text)
    order_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    items: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("shop_id", "shopee_order_id", name="uq_orders_shop_shopee_order"),
    )


class Product(Base):
    """Inventory item, unique per (shop, Shopee item id)."""
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_id: Mapped[str] = mapped_column(String(36), ForeignKey("shops.id"), index=True, nullable=False)
    platform: Mapped[Platform] = mapped_column(_enum(Platform), default=Platform.SHOPEE)
    shopee_product_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100))
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("shop_id", "shopee_product_id", name="uq_products_shop_shopee_product"),
    )


class QueuedJob(Base):
    """Ledger entry for a background job. job_key is the deduplication key."""
    __tablename__ = "queued_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    queue: Mapped[str] = mapped_column(String(100), nullable=False)
    task_name: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[JobStatus] = mapped_column(_enum(JobStatus), default=JobStatus.QUEUED)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)
    progress: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_queued_jobs_queue_status", "queue", "status"),
    )
