"""Baseline: shops, Shopee integrations, webhook records, orders, products, job ledger.

Revision ID: 0001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime()),
    )

    op.create_table(
        "shopee_integrations",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("shop_id", sa.String(36), sa.ForeignKey("shops.id"), unique=True, nullable=False),
        sa.Column("shopee_shop_id", sa.String(64), nullable=False, index=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(20), index=True),
        sa.Column("connection_state", sa.String(20)),
        sa.Column("last_sync_at", sa.DateTime()),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("disconnected_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "webhook_records",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("shop_id", sa.String(36), sa.ForeignKey("shops.id"), nullable=False, index=True),
        sa.Column("platform", sa.String(20)),
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("raw_body", sa.Text(), nullable=False),
        sa.Column("signature", sa.String(255)),
        sa.Column("status", sa.String(20), index=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text()),
        sa.Column("received_at", sa.DateTime(), index=True),
        sa.Column("processed_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("shop_id", sa.String(36), sa.ForeignKey("shops.id"), nullable=False, index=True),
        sa.Column("platform", sa.String(20)),
        sa.Column("shopee_order_id", sa.String(64), nullable=False, index=True),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("customer_phone", sa.String(50)),
        sa.Column("shipping_address", sa.Text()),
        sa.Column("order_date", sa.DateTime(), nullable=False, index=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.UniqueConstraint("shop_id", "shopee_order_id", name="uq_orders_shop_shopee_order"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("shop_id", sa.String(36), sa.ForeignKey("shops.id"), nullable=False, index=True),
        sa.Column("platform", sa.String(20)),
        sa.Column("shopee_product_id", sa.String(64), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100)),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("image_url", sa.Text()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.UniqueConstraint("shop_id", "shopee_product_id", name="uq_products_shop_shopee_product"),
    )

    op.create_table(
        "queued_jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("job_key", sa.String(255), nullable=False, unique=True),
        sa.Column("queue", sa.String(100), nullable=False),
        sa.Column("task_name", sa.String(255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20)),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text()),
        sa.Column("progress", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("finished_at", sa.DateTime()),
    )
    op.create_index("ix_queued_jobs_queue_status", "queued_jobs", ["queue", "status"])


def downgrade() -> None:
    op.drop_index("ix_queued_jobs_queue_status", table_name="queued_jobs")
    op.drop_table("queued_jobs")
    op.drop_table("products")
    op.drop_table("orders")
    op.drop_table("webhook_records")
    op.drop_table("shopee_integrations")
    op.drop_table("shops")
