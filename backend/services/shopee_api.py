"""
Shopee Open Platform v2 client — catalog reads and token refresh.

Shop-level calls are signed with
HMAC-SHA256(partner_key, partner_id + path + timestamp + access_token + shop_id);
public calls (token refresh) drop the last two parts.
Timeouts, transport errors and HTTP error statuses are retried with exponential backoff.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from backend.config.settings import Settings, get_settings
from backend.services.integration_store import IntegrationCredentialStore

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(15.0, connect=5.0)

ITEM_LIST_PATH = "/api/v2/product/get_item_list"
ITEM_BASE_INFO_PATH = "/api/v2/product/get_item_base_info"
REFRESH_TOKEN_PATH = "/api/v2/auth/access_token/get"


class ShopeeAPIError(Exception):
    """Raised when the Shopee API rejects a request."""
    pass


class ShopeeTokenError(ShopeeAPIError):
    """Raised when the access token is expired or invalid."""
    pass


@dataclass
class CatalogItem:
    item_id: str
    name: str
    sku: str | None
    stock: int
    price: Decimal
    image_url: str | None


@dataclass
class ProductPage:
    products: list[CatalogItem] = field(default_factory=list)
    has_next_page: bool = False
    next_offset: int = 0
    total_count: int = 0


def _is_token_error(error: str, message: str) -> bool:
    text = f"{error} {message}".lower()
    return "token" in text or error == "error_auth"


def _normalize_item(raw: dict) -> CatalogItem:
    price_info = raw.get("price_info") or []
    if price_info:
        price = Decimal(str(price_info[0].get("current_price", 0)))
    else:
        price = Decimal(str(raw.get("price", 0)))

    stock_summary = (raw.get("stock_info_v2") or {}).get("summary_info") or {}
    stock = stock_summary.get("total_available_stock", raw.get("stock", 0))

    images = (raw.get("image") or {}).get("image_url_list") or raw.get("images") or []

    return CatalogItem(
        item_id=str(raw["item_id"]),
        name=raw.get("item_name") or "Unknown Product",
        sku=raw.get("item_sku") or None,
        stock=int(stock or 0),
        price=price.quantize(Decimal("0.01")),
        image_url=images[0] if images else None,
    )


class ShopeeAPIClient:
    """Authenticated Shopee partner API client for one process."""

    def __init__(self, store: IntegrationCredentialStore, settings: Settings | None = None):
        settings = settings or get_settings()
        if not settings.shopee_partner_id or not settings.shopee_partner_key or not settings.shopee_api_base_url:
            raise ShopeeAPIError("Shopee API credentials not configured")
        self.store = store
        self.partner_id = settings.shopee_partner_id
        self.partner_key = settings.shopee_partner_key
        self.base_url = settings.shopee_api_base_url.rstrip("/")

    def sign(self, path: str, timestamp: int, access_token: str = "", shopee_shop_id: str = "") -> str:
        base = f"{self.partner_id}{path}{timestamp}{access_token}{shopee_shop_id}"
        return hmac.new(self.partner_key.encode("utf-8"), base.encode("utf-8"), hashlib.sha256).hexdigest()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError, httpx.HTTPStatusError)),
        reraise=True,
    )
    def _send(self, method: str, path: str, params: dict, body: dict | None = None) -> dict:
        resp = httpx.request(method, f"{self.base_url}{path}", params=params, json=body, timeout=_TIMEOUT)
        if resp.status_code in (401, 403):
            raise ShopeeTokenError(f"Shopee API auth error: {resp.status_code}")
        resp.raise_for_status()
        data = resp.json()

        error = data.get("error") or ""
        if error:
            message = data.get("message") or error
            if _is_token_error(error, message):
                raise ShopeeTokenError(message)
            raise ShopeeAPIError(message)
        return data

    def _shop_request(self, method: str, path: str, shop_id: str, params: dict | None = None, body: dict | None = None) -> dict:
        integration = self.store.get(shop_id)
        access_token = self.store.access_token(shop_id)
        timestamp = int(time.time())
        query = {
            "partner_id": self.partner_id,
            "timestamp": timestamp,
            "access_token": access_token,
            "shop_id": integration.shopee_shop_id,
            "sign": self.sign(path, timestamp, access_token, integration.shopee_shop_id),
            **(params or {}),
        }
        return self._send(method, path, query, body)

    def get_product_list(self, shop_id: str, offset: int = 0, limit: int = 50) -> ProductPage:
        """One page of the shop's active items, with base info resolved."""
        data = self._shop_request("GET", ITEM_LIST_PATH, shop_id, params={
            "offset": offset,
            "page_size": limit,
            "item_status": "NORMAL",
        })
        response = data.get("response")
        if not response:
            raise ShopeeAPIError(data.get("message") or "Failed to fetch products")

        item_ids = [entry["item_id"] for entry in response.get("item", [])]
        products = self.get_product_details(shop_id, item_ids) if item_ids else []

        return ProductPage(
            products=products,
            has_next_page=bool(response.get("has_next_page")),
            next_offset=int(response.get("next_offset") or offset + len(item_ids)),
            total_count=int(response.get("total_count") or 0),
        )

    def get_product_details(self, shop_id: str, item_ids: list[int | str]) -> list[CatalogItem]:
        data = self._shop_request("GET", ITEM_BASE_INFO_PATH, shop_id, params={
            "item_id_list": ",".join(str(i) for i in item_ids),
        })
        response = data.get("response")
        if not response:
            raise ShopeeAPIError(data.get("message") or "Failed to fetch product details")
        return [_normalize_item(raw) for raw in response.get("item_list", [])]

    def refresh_access_token(self, shop_id: str) -> None:
        """Exchange the stored refresh token and persist the rotated pair."""
        integration = self.store.get(shop_id)
        refresh_token = self.store.refresh_token(shop_id)
        timestamp = int(time.time())
        params = {
            "partner_id": self.partner_id,
            "timestamp": timestamp,
            "sign": self.sign(REFRESH_TOKEN_PATH, timestamp),
        }
        body = {
            "partner_id": int(self.partner_id),
            "shop_id": int(integration.shopee_shop_id),
            "refresh_token": refresh_token,
        }
        data = self._send("POST", REFRESH_TOKEN_PATH, params, body)
        if not data.get("access_token") or not data.get("refresh_token"):
            raise ShopeeAPIError(data.get("message") or "Failed to refresh token")

        self.store.save_tokens(shop_id, data["access_token"], data["refresh_token"], int(data.get("expire_in") or 14400))
        logger.info("Refreshed Shopee access token for shop %s", shop_id)
