"""Per-tenant Shopee credentials and integration health."""

import base64
import logging
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backend.database.models import ConnectionState, IntegrationStatus, ShopeeIntegration, utcnow

logger = logging.getLogger(__name__)


class IntegrationNotFoundError(Exception):
    """Raised when a shop has no active Shopee integration."""
    pass


class IntegrationConflictError(Exception):
    """Raised when a Shopee shop is already actively connected to another shop."""
    pass


def _encode(token: str) -> str:
    return base64.b64encode(token.encode("utf-8")).decode("ascii")


def _decode(stored: str) -> str:
    return base64.b64decode(stored).decode("utf-8")


class IntegrationCredentialStore:
    """Read/update access to ShopeeIntegration rows.

    Disconnected integrations are invisible to every lookup.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_shop_id(self, shopee_shop_id: str) -> str | None:
        """Tenant for a Shopee shop id. None when unknown or claimed by more than one active integration."""
        rows = self.db.scalars(
            select(ShopeeIntegration.shop_id)
            .where(
                ShopeeIntegration.shopee_shop_id == str(shopee_shop_id),
                ShopeeIntegration.connection_state == ConnectionState.ACTIVE,
            )
            .limit(2)
        ).all()
        if len(rows) > 1:
            logger.warning("Shopee shop %s is connected to more than one shop; refusing to pick one", shopee_shop_id)
            return None
        return rows[0] if rows else None

    def get(self, shop_id: str) -> ShopeeIntegration:
        integration = self.db.scalar(
            select(ShopeeIntegration).where(
                ShopeeIntegration.shop_id == shop_id,
                ShopeeIntegration.connection_state == ConnectionState.ACTIVE,
            )
        )
        if integration is None:
            raise IntegrationNotFoundError(f"Shopee integration not found or disconnected for shop {shop_id}")
        return integration

    def access_token(self, shop_id: str) -> str:
        return _decode(self.get(shop_id).access_token)

    def refresh_token(self, shop_id: str) -> str:
        return _decode(self.get(shop_id).refresh_token)

    def connect(
        self,
        shop_id: str,
        shopee_shop_id: str,
        access_token: str,
        refresh_token: str,
        expires_in: int,
    ) -> ShopeeIntegration:
        """Store credentials from the OAuth callback, reactivating a disconnected row if one exists."""
        owner = self.find_shop_id(shopee_shop_id)
        if owner is not None and owner != shop_id:
            raise IntegrationConflictError(f"Shopee shop {shopee_shop_id} is already connected to shop {owner}")
        integration = self.db.scalar(select(ShopeeIntegration).where(ShopeeIntegration.shop_id == shop_id))
        expires_at = utcnow() + timedelta(seconds=expires_in)
        if integration is None:
            integration = ShopeeIntegration(shop_id=shop_id)
            self.db.add(integration)
        integration.shopee_shop_id = str(shopee_shop_id)
        integration.access_token = _encode(access_token)
        integration.refresh_token = _encode(refresh_token)
        integration.expires_at = expires_at
        integration.status = IntegrationStatus.HEALTHY
        integration.connection_state = ConnectionState.ACTIVE
        integration.failure_count = 0
        integration.disconnected_at = None
        self.db.commit()
        self.db.refresh(integration)
        logger.info("Shopee shop %s connected to shop %s", shopee_shop_id, shop_id)
        return integration

    def disconnect(self, shop_id: str) -> None:
        self.db.execute(
            update(ShopeeIntegration)
            .where(ShopeeIntegration.shop_id == shop_id)
            .values(
                connection_state=ConnectionState.DISCONNECTED,
                status=IntegrationStatus.DISCONNECTED,
                disconnected_at=utcnow(),
                updated_at=utcnow(),
            )
        )
        self.db.commit()
        logger.info("Shopee integration disconnected for shop %s", shop_id)

    def save_tokens(self, shop_id: str, access_token: str, refresh_token: str, expires_in: int) -> None:
        self.db.execute(
            update(ShopeeIntegration)
            .where(ShopeeIntegration.shop_id == shop_id)
            .values(
                access_token=_encode(access_token),
                refresh_token=_encode(refresh_token),
                expires_at=utcnow() + timedelta(seconds=expires_in),
                updated_at=utcnow(),
            )
        )
        self.db.commit()

    def mark_unhealthy(self, shop_id: str) -> None:
        self.db.execute(
            update(ShopeeIntegration)
            .where(ShopeeIntegration.shop_id == shop_id)
            .values(
                status=IntegrationStatus.UNHEALTHY,
                failure_count=ShopeeIntegration.failure_count + 1,
                updated_at=utcnow(),
            )
        )
        self.db.commit()
        logger.warning("Shopee integration for shop %s marked UNHEALTHY", shop_id)

    def record_sync(self, shop_id: str) -> None:
        self.db.execute(
            update(ShopeeIntegration)
            .where(ShopeeIntegration.shop_id == shop_id)
            .values(last_sync_at=utcnow(), updated_at=utcnow())
        )
        self.db.commit()
