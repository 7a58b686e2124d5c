"""
Shopee webhook authentication and routing helpers.

Shopee signs each push as
HMAC-SHA256(partner_key, authorization + request_url + timestamp + request_body)
and sends the hex digest in the X-Shopee-Signature header. The timestamp is
passed as a query parameter and must be close to our clock to stop replays.
"""

import hashlib
import hmac
import logging
import time

from backend.config.settings import get_settings

logger = logging.getLogger(__name__)

UNKNOWN_EVENT_TYPE = "order.unknown"

ORDER_FAMILY = "order"
INVENTORY_FAMILY = "inventory"

# Event type prefixes that have a processor
ROUTABLE_PREFIXES = ("order", "product", "inventory")

# Marker returned by extract_shop_id when an order event carries only an order_id
DEFERRED = object()


def is_timestamp_valid(timestamp: str | None, now: float | None = None) -> bool:
    """True when the timestamp claim is within the freshness window of now."""
    settings = get_settings()
    try:
        webhook_time = int(timestamp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    return abs(current - webhook_time) < settings.webhook_timestamp_tolerance_seconds


def compute_signature(partner_key: str, authorization: str, url: str, timestamp: str, body: bytes) -> str:
    base = f"{authorization}{url}{timestamp}".encode("utf-8") + body
    return hmac.new(partner_key.encode("utf-8"), base, hashlib.sha256).hexdigest()


def verify_signature(authorization: str, url: str, timestamp: str, body: bytes, signature: str) -> bool:
    """Recompute the webhook HMAC and compare it in constant time.

    Never raises: missing configuration or malformed input counts as a failed check.
    """
    settings = get_settings()
    if not settings.shopee_partner_key:
        logger.error("SHOPEE_PARTNER_KEY not configured — rejecting webhook")
        return False
    if not signature:
        return False
    try:
        expected = compute_signature(settings.shopee_partner_key, authorization, url, timestamp, body)
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("ascii"))
    except (UnicodeError, TypeError, ValueError):
        logger.warning("Malformed webhook signature input")
        return False


def extract_event_type(payload) -> str:
    if isinstance(payload, dict):
        event_type = payload.get("event_type")
        if isinstance(event_type, str) and event_type:
            return event_type
    return UNKNOWN_EVENT_TYPE


def event_family(event_type: str) -> str | None:
    """Route key for an event type: order.* or product.*/inventory.*."""
    if event_type.startswith(ROUTABLE_PREFIXES[0]):
        return ORDER_FAMILY
    if event_type.startswith(ROUTABLE_PREFIXES[1:]):
        return INVENTORY_FAMILY
    return None


def extract_shop_id(event_type: str, payload):
    """Find the Shopee shop id in a payload.

    Returns the id as a string, DEFERRED for order events that only carry an
    order_id (the tenant is found through the order), or None.
    """
    if not isinstance(payload, dict):
        return None

    if payload.get("shop_id"):
        return str(payload["shop_id"])

    data = payload.get("data")
    if isinstance(data, dict) and data.get("shop_id"):
        return str(data["shop_id"])

    if "order" in event_type and payload.get("order_id"):
        return DEFERRED

    return None
