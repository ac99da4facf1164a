import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

import msgspec
from msgspec import Meta, Struct

from common.errors import invalid_event
from common.kafka.events_config import *

ProductId = Annotated[str, Meta(min_length=1, max_length=50)]
Quantity = Annotated[int, Meta(gt=0)]


class LineItem(Struct, rename="camel", frozen=True):
    product_id: ProductId
    quantity: Quantity


# ------------------------------------------
# Payloads
# ------------------------------------------
class OrderCreatedPayload(Struct, rename="camel"):
    order_id: str
    user_id: str
    products: Annotated[list[LineItem], Meta(min_length=1)]
    total_price: Annotated[float, Meta(ge=0)]


class InventoryStatusPayload(Struct, rename="camel", omit_defaults=True):
    order_id: str
    status: Literal["SUCCESS", "FAILURE"]
    reason: Optional[str] = None


class OrderStatusPayload(Struct, rename="camel"):
    order_id: str
    status: Literal["CONFIRMED", "CANCELLED"]
    user_id: str


class OrderCancelledPayload(Struct, rename="camel"):
    order_id: str
    products: list[LineItem]


# ------------------------------------------
# Envelopes, discriminated by "type"
# ------------------------------------------
class EventEnvelope(Struct, tag_field="type", rename="camel", kw_only=True):
    event_id: str
    version: str
    source: str
    timestamp: str

    @property
    def type(self) -> str:
        return self.__struct_config__.tag


class OrderCreated(EventEnvelope, tag=EVENT_ORDER_CREATED):
    payload: OrderCreatedPayload


class InventoryStatusUpdated(EventEnvelope, tag=EVENT_INVENTORY_STATUS_UPDATED):
    payload: InventoryStatusPayload


class OrderStatusUpdated(EventEnvelope, tag=EVENT_ORDER_STATUS_UPDATED):
    payload: OrderStatusPayload


class OrderCancelled(EventEnvelope, tag=EVENT_ORDER_CANCELLED):
    payload: OrderCancelledPayload


AppEvent = Union[OrderCreated, InventoryStatusUpdated, OrderStatusUpdated, OrderCancelled]

EVENT_CLASSES: dict[str, type[EventEnvelope]] = {
    EVENT_ORDER_CREATED: OrderCreated,
    EVENT_INVENTORY_STATUS_UPDATED: InventoryStatusUpdated,
    EVENT_ORDER_STATUS_UPDATED: OrderStatusUpdated,
    EVENT_ORDER_CANCELLED: OrderCancelled,
}

_encoder = msgspec.json.Encoder()
_decoder = msgspec.json.Decoder(AppEvent)


def new_event(event_type: str, payload, source: str) -> AppEvent:
    """Wrap a payload in a fresh envelope. Every call mints a new eventId."""
    try:
        cls = EVENT_CLASSES[event_type]
    except KeyError:
        raise invalid_event(event_type, "unknown event type") from None
    return cls(
        event_id=str(uuid.uuid4()),
        version=EVENT_VERSION,
        source=source,
        timestamp=datetime.now(timezone.utc).isoformat(),
        payload=payload,
    )


def encode_event(event: EventEnvelope) -> bytes:
    return _encoder.encode(event)


def decode_event(data: bytes) -> AppEvent:
    try:
        return _decoder.decode(data)
    except msgspec.DecodeError as e:
        raise invalid_event(_peek_type(data), str(e)) from e


def _peek_type(data: bytes) -> str:
    try:
        raw = msgspec.json.decode(data)
    except msgspec.DecodeError:
        return "unknown"
    if isinstance(raw, dict) and isinstance(raw.get("type"), str):
        return raw["type"]
    return "unknown"


def partition_key(event: EventEnvelope) -> bytes:
    # every payload carries the order id; one order's events share a partition
    return event.payload.order_id.encode("utf-8")
