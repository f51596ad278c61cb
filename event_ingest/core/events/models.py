from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, PositiveFloat, PositiveInt, field_validator


SUB_EVENT_TYPES: tuple[str, ...] = ("restock", "defect", "loss")

SubEventType = Literal["restock", "defect", "loss"]


class EventType(IntEnum):
    RESTOCK = 0
    PURCHASE = 1
    PRICE_CHANGE = 2
    RETURN = 3
    SHOP_STATUS = 4


ALL_EVENT_TYPES: tuple[EventType, ...] = tuple(EventType)


def utc_now_millis() -> str:
    """Current UTC time as ``YYYY-MM-DD HH:MM:SS.mmm``."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%d %H:%M:%S.") + f"{now.microsecond // 1000:03d}"


class EventPayload(BaseModel):
    # Strict: no str->int or str->bool coercion. Float fields still take ints.
    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


class RestockPayload(EventPayload):
    shop_id: PositiveInt
    good_id: PositiveInt
    delta_count: int
    reason: str = ""
    sub_event_type: SubEventType

    @field_validator("delta_count")
    @classmethod
    def _non_zero_delta(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Delta count cannot be zero")
        return v


class PurchasePayload(EventPayload):
    order_id: PositiveInt
    user_id: PositiveInt
    shop_id: PositiveInt
    good_id: PositiveInt
    qty: PositiveInt
    price_at_order: Optional[PositiveFloat] = None


class PriceChangePayload(EventPayload):
    shop_id: PositiveInt
    good_id: PositiveInt
    new_price: PositiveFloat
    old_price: Optional[float] = None


class ReturnPayload(EventPayload):
    order_id: PositiveInt
    user_id: PositiveInt
    good_id: PositiveInt
    qty: PositiveInt
    refund_amount: Optional[PositiveFloat] = None


class ShopStatusPayload(EventPayload):
    shop_id: PositiveInt
    active: bool


PAYLOAD_MODELS: dict[EventType, type[EventPayload]] = {
    EventType.RESTOCK: RestockPayload,
    EventType.PURCHASE: PurchasePayload,
    EventType.PRICE_CHANGE: PriceChangePayload,
    EventType.RETURN: ReturnPayload,
    EventType.SHOP_STATUS: ShopStatusPayload,
}

PAYLOAD_NAMES: dict[EventType, str] = {
    EventType.RESTOCK: "restock",
    EventType.PURCHASE: "purchase",
    EventType.PRICE_CHANGE: "price change",
    EventType.RETURN: "return",
    EventType.SHOP_STATUS: "shop status",
}


class Event(BaseModel):
    """Envelope around a serialized payload; the payload schema follows ``event_type``."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    event_type: int
    payload: bytes

    @classmethod
    def create(cls, event_type: int, payload: bytes) -> "Event":
        return cls(timestamp=utc_now_millis(), event_type=int(event_type), payload=payload)

    def payload_json(self) -> Any:
        return json.loads(self.payload)


class EventIn(BaseModel):
    """Body of ``POST /api/v1/events``; both fields are checked by ``validate_event``."""

    event_type: Any = None
    payload: Any = None
    timestamp: Optional[str] = None
