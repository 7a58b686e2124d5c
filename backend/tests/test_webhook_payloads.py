"""Tests for typed webhook payload parsing and fixed-point money."""

from datetime import datetime
from decimal import Decimal

import pytest

from backend.services.webhook_payloads import (
    InventoryPayloadError,
    OrderPayloadError,
    from_epoch,
    parse_inventory_event,
    parse_order_event,
    to_decimal_amount,
)


class TestFixedPoint:

    def test_spec_example(self):
        assert to_decimal_amount(12345000) == Decimal("123.45")

    def test_zero(self):
        assert to_decimal_amount(0) == Decimal("0.00")

    def test_string_input(self):
        assert to_decimal_amount("500000") == Decimal("5.00")

    def test_rounds_half_up_to_cents(self):
        assert to_decimal_amount(1500) == Decimal("0.02")
        assert to_decimal_amount(1499) == Decimal("0.01")


class TestOrderEvent:

    def test_parses_full_order(self):
        event = parse_order_event({
            "event_type": "order.created",
            "shop_id": 5001,
            "order_id": 991,
            "order_sn": "SN-1",
            "order_status": "READY_TO_SHIP",
            "total_amount": 500000,
            "create_time": 1700000000,
            "buyer_username": "alice",
            "items": [{"item_id": "A", "item_name": "Widget", "quantity": 2, "item_price": 250000}],
        })
        assert event.order_id == "991"
        assert event.total == Decimal("5.00")
        assert event.items[0].normalized() == {
            "item_id": "A",
            "name": "Widget",
            "sku": None,
            "quantity": 2,
            "unit_price": "2.50",
        }

    def test_reads_fields_from_data_envelope(self):
        event = parse_order_event({"event_type": "order.status_updated", "data": {"order_id": "991", "order_status": "SHIPPED"}})
        assert event.order_id == "991"
        assert event.order_status == "SHIPPED"

    def test_omitted_fields_stay_unset(self):
        event = parse_order_event({"order_id": "991"})
        assert event.order_status is None
        assert event.total is None
        assert event.items is None

    def test_unknown_fields_are_allowed(self):
        event = parse_order_event({"order_id": "991", "promo_code": "X"})
        assert event.order_id == "991"

    def test_shipping_address_dict_flattened(self):
        event = parse_order_event({"order_id": "1", "shipping_address": {"street": "1 Main", "city": "Manila", "zip": None}})
        assert event.shipping_address_text == "1 Main, Manila"

    def test_missing_order_id_raises(self):
        with pytest.raises(OrderPayloadError):
            parse_order_event({"event_type": "order.created"})

    def test_non_object_raises(self):
        with pytest.raises(OrderPayloadError):
            parse_order_event(["order"])


class TestInventoryEvent:

    def test_parses_inventory_fields(self):
        event = parse_inventory_event({
            "event_type": "product.updated",
            "item_id": 77,
            "stock": 4,
            "price": 12345000,
            "images": ["https://img/1.jpg", "https://img/2.jpg"],
        })
        assert event.item_id == "77"
        assert event.unit_price == Decimal("123.45")
        assert event.primary_image == "https://img/1.jpg"

    def test_absent_fields_stay_none(self):
        event = parse_inventory_event({"item_id": "77"})
        assert event.stock is None
        assert event.unit_price is None
        assert event.primary_image is None

    def test_missing_item_id_raises(self):
        with pytest.raises(InventoryPayloadError):
            parse_inventory_event({"stock": 3})


def test_from_epoch():
    assert from_epoch(0) == datetime(1970, 1, 1)
    assert from_epoch(None) is None
