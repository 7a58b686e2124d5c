"""Typed views over raw Shopee webhook payloads, one model per event family.

Parsing is permissive: unknown fields are allowed and ignored here, they stay
in WebhookRecord.raw_payload. Only the fields the processors read are validated.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

# Shopee represents currency as integers with five implied decimal places
PRICE_SCALE = Decimal(100000)
_CENTS = Decimal("0.01")


class WebhookPayloadError(Exception):
    """Raised when a stored payload cannot be interpreted for its event family."""
    pass


class OrderPayloadError(WebhookPayloadError):
    pass


class InventoryPayloadError(WebhookPayloadError):
    pass


def _to_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


NativeId = Annotated[str, BeforeValidator(_to_str)]


def to_decimal_amount(raw: int | float | str) -> Decimal:
    """Convert a fixed-point wire amount to currency: 12345000 -> Decimal('123.45')."""
    return (Decimal(str(raw)) / PRICE_SCALE).quantize(_CENTS, rounding=ROUND_HALF_UP)


def from_epoch(seconds: int | None) -> datetime | None:
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def _merge_data(payload: dict) -> dict:
    """Flatten the optional `data` envelope; top-level keys win."""
    data = payload.get("data")
    if isinstance(data, dict):
        merged = dict(data)
        merged.update({k: v for k, v in payload.items() if k != "data"})
        return merged
    return payload


class OrderItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    item_id: NativeId
    item_name: str = ""
    model_sku: str | None = None
    quantity: int = 0
    item_price: int = 0

    def normalized(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.item_name,
            "sku": self.model_sku,
            "quantity": self.quantity,
            "unit_price": str(to_decimal_amount(self.item_price)),
        }


class OrderEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: str = ""
    order_id: NativeId
    order_sn: str | None = None
    order_status: str | None = None
    create_time: int | None = None
    update_time: int | None = None
    buyer_username: str | None = None
    buyer_email: str | None = None
    buyer_phone: str | None = None
    shipping_address: Any = None
    # None when the event omits the field; updates leave the stored value alone
    total_amount: int | float | None = None
    items: list[OrderItem] | None = None

    @property
    def total(self) -> Decimal | None:
        return to_decimal_amount(self.total_amount) if self.total_amount is not None else None

    @property
    def shipping_address_text(self) -> str | None:
        if self.shipping_address is None or isinstance(self.shipping_address, str):
            return self.shipping_address
        if isinstance(self.shipping_address, dict):
            return ", ".join(str(v) for v in self.shipping_address.values() if v)
        return str(self.shipping_address)


class InventoryEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: str = ""
    item_id: NativeId
    item_name: str | None = None
    model_sku: str | None = None
    stock: int | None = None
    price: int | float | None = None
    images: list[str] | None = None
    update_time: int | None = None

    @property
    def primary_image(self) -> str | None:
        return self.images[0] if self.images else None

    @property
    def unit_price(self) -> Decimal | None:
        return to_decimal_amount(self.price) if self.price is not None else None


def parse_order_event(payload: dict) -> OrderEvent:
    if not isinstance(payload, dict):
        raise OrderPayloadError("Order payload is not a JSON object")
    try:
        return OrderEvent.model_validate(_merge_data(payload))
    except ValidationError as exc:
        raise OrderPayloadError(f"Invalid order payload: {exc}") from exc


def parse_inventory_event(payload: dict) -> InventoryEvent:
    if not isinstance(payload, dict):
        raise InventoryPayloadError("Inventory payload is not a JSON object")
    try:
        return InventoryEvent.model_validate(_merge_data(payload))
    except ValidationError as exc:
        raise InventoryPayloadError(f"Invalid inventory payload: {exc}") from exc
