"""Tests for Shopee webhook signature, freshness and routing helpers."""

import time
from unittest.mock import patch

from backend.config.settings import Settings
from backend.services.shopee_webhook import (
    DEFERRED,
    INVENTORY_FAMILY,
    ORDER_FAMILY,
    UNKNOWN_EVENT_TYPE,
    compute_signature,
    event_family,
    extract_event_type,
    extract_shop_id,
    is_timestamp_valid,
    verify_signature,
)

URL = "https://api.example.com/webhooks/shopee?timestamp=1700000000"
BODY = b'{"event_type":"order.created","shop_id":5001}'


def _sign(body=BODY, key="test-partner-key", authorization="auth", url=URL, timestamp="1700000000"):
    return compute_signature(key, authorization, url, timestamp, body)


class TestTimestamp:

    def test_current_timestamp_is_valid(self):
        now = time.time()
        assert is_timestamp_valid(str(int(now)), now=now)

    def test_within_window_is_valid(self):
        assert is_timestamp_valid("1000", now=1299)
        assert is_timestamp_valid("1299", now=1000)

    def test_301_seconds_old_is_rejected(self):
        assert not is_timestamp_valid("1000", now=1301)

    def test_exactly_300_seconds_is_rejected(self):
        assert not is_timestamp_valid("1000", now=1300)

    def test_future_timestamp_outside_window_is_rejected(self):
        assert not is_timestamp_valid("2000", now=1000)

    def test_non_numeric_is_rejected(self):
        assert not is_timestamp_valid("yesterday")
        assert not is_timestamp_valid("")
        assert not is_timestamp_valid(None)


class TestSignature:

    def test_valid_signature(self):
        assert verify_signature("auth", URL, "1700000000", BODY, _sign())

    def test_uppercase_hex_accepted(self):
        assert verify_signature("auth", URL, "1700000000", BODY, _sign().upper())

    def test_tampered_body_rejected(self):
        signature = _sign()
        tampered = BODY.replace(b"5001", b"5002")
        assert not verify_signature("auth", URL, "1700000000", tampered, signature)

    def test_different_url_rejected(self):
        assert not verify_signature("auth", URL + "&x=1", "1700000000", BODY, _sign())

    def test_different_authorization_rejected(self):
        assert not verify_signature("other", URL, "1700000000", BODY, _sign())

    def test_wrong_key_rejected(self):
        assert not verify_signature("auth", URL, "1700000000", BODY, _sign(key="not-the-key"))

    def test_empty_signature_rejected(self):
        assert not verify_signature("auth", URL, "1700000000", BODY, "")

    def test_non_ascii_signature_rejected_without_raising(self):
        assert not verify_signature("auth", URL, "1700000000", BODY, "é" * 64)

    def test_missing_partner_key_rejects(self):
        with patch("backend.services.shopee_webhook.get_settings", return_value=Settings(shopee_partner_key="")):
            assert not verify_signature("auth", URL, "1700000000", BODY, _sign())

    def test_signature_covers_concatenation_in_order(self):
        # authorization + url + timestamp + body
        assert _sign(authorization="ab", url="c") == compute_signature("test-partner-key", "a", "bc", "1700000000", BODY)


class TestEventType:

    def test_reads_event_type(self):
        assert extract_event_type({"event_type": "product.updated"}) == "product.updated"

    def test_missing_event_type_defaults(self):
        assert extract_event_type({}) == UNKNOWN_EVENT_TYPE
        assert extract_event_type({"event_type": None}) == UNKNOWN_EVENT_TYPE
        assert extract_event_type([1, 2]) == UNKNOWN_EVENT_TYPE

    def test_families(self):
        assert event_family("order.created") == ORDER_FAMILY
        assert event_family("order.unknown") == ORDER_FAMILY
        assert event_family("product.stock_updated") == INVENTORY_FAMILY
        assert event_family("inventory.updated") == INVENTORY_FAMILY
        assert event_family("shop.deauthorized") is None


class TestShopId:

    def test_top_level_shop_id(self):
        assert extract_shop_id("product.updated", {"shop_id": 5001}) == "5001"

    def test_nested_shop_id(self):
        assert extract_shop_id("product.updated", {"data": {"shop_id": "5001"}}) == "5001"

    def test_order_without_shop_id_is_deferred(self):
        assert extract_shop_id("order.status_updated", {"order_id": "991"}) is DEFERRED

    def test_inventory_without_shop_id_is_none(self):
        assert extract_shop_id("product.updated", {"item_id": "77"}) is None

    def test_order_without_any_id_is_none(self):
        assert extract_shop_id("order.created", {"order_sn": "SN-1"}) is None

    def test_non_object_payload(self):
        assert extract_shop_id("order.created", ["not", "an", "object"]) is None
