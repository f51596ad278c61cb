from __future__ import annotations

import logging
import random
from typing import Iterable, Optional, Sequence

from event_ingest.core.events.models import (
    ALL_EVENT_TYPES,
    SUB_EVENT_TYPES,
    Event,
    EventType,
    PriceChangePayload,
    PurchasePayload,
    RestockPayload,
    ReturnPayload,
    ShopStatusPayload,
    EventPayload,
)

logger = logging.getLogger(__name__)

ERROR_MARKER_PAYLOAD = b'{"error": "failed to generate payload"}'

BATCH_PRICES: tuple[float, ...] = (99.99, 199.99, 299.99)

RESTOCK_REASONS: tuple[str, ...] = (
    "restock",
    "defect",
    "loss",
    "inventory_adjustment",
    "damaged_goods",
    "expired_items",
    "theft",
    "return_to_supplier",
)

_MAX_INT63 = (1 << 63) - 1


def normalize_event_types(event_types: Optional[Iterable[int]]) -> list[EventType]:
    """Map raw ints to ``EventType``; None or empty means all five types.

    Raises ``ValueError`` for anything outside 0..4.
    """
    if not event_types:
        return list(ALL_EVENT_TYPES)
    out: list[EventType] = []
    for raw in event_types:
        try:
            out.append(EventType(int(raw)))
        except (TypeError, ValueError):
            raise ValueError(f"unknown event type: {raw!r}") from None
    return out


class EventGenerator:
    """Builds schema-valid events, either deterministically per index or at random.

    ``rng`` only feeds order IDs in batch mode; a seeded ``random.Random`` makes
    both modes reproducible.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def _order_id(self) -> int:
        return self._rng.randint(1, _MAX_INT63)

    # -- deterministic batch mode -------------------------------------------------

    def batch_payload(self, i: int) -> tuple[EventType, EventPayload]:
        event_type = EventType(i % 5)
        shop_id = 2 + (i % 10)
        good_id = 1 + (i % 5)
        price = BATCH_PRICES[i % 3]

        if event_type is EventType.RESTOCK:
            return event_type, RestockPayload(
                shop_id=shop_id,
                good_id=good_id,
                delta_count=1 + (i % 10),
                reason="test_generation",
                sub_event_type="restock",
            )
        if event_type is EventType.PURCHASE:
            return event_type, PurchasePayload(
                order_id=self._order_id(),
                user_id=1 + (i % 4),
                shop_id=shop_id,
                good_id=good_id,
                qty=1 + (i % 3),
                price_at_order=price,
            )
        if event_type is EventType.PRICE_CHANGE:
            return event_type, PriceChangePayload(
                shop_id=shop_id,
                good_id=good_id,
                new_price=99.99 + float(i % 100),
            )
        if event_type is EventType.RETURN:
            return event_type, ReturnPayload(
                order_id=self._order_id(),
                user_id=1 + (i % 4),
                good_id=good_id,
                qty=1 + (i % 3),
                refund_amount=price,
            )
        return event_type, ShopStatusPayload(shop_id=shop_id, active=i % 2 == 0)

    def generate_batch(self, count: int, start_index: int = 0) -> list[Event]:
        """``count`` events with ``event_type = i % 5`` for ``i`` from ``start_index``."""
        events: list[Event] = []
        for i in range(start_index, start_index + max(0, int(count))):
            event_type, payload = self.batch_payload(i)
            events.append(Event.create(event_type, payload.to_json_bytes()))
        return events

    # -- random single-event mode -------------------------------------------------

    def random_payload(self, event_type: EventType) -> EventPayload:
        rng = self._rng
        if event_type is EventType.RESTOCK:
            delta = rng.randint(-10, 9)
            if delta == 0:
                delta = 10
            return RestockPayload(
                shop_id=rng.randint(1, 20),
                good_id=rng.randint(1, 10),
                delta_count=delta,
                reason=rng.choice(RESTOCK_REASONS),
                sub_event_type=rng.choice(SUB_EVENT_TYPES),
            )
        if event_type is EventType.PURCHASE:
            return PurchasePayload(
                order_id=self._order_id(),
                user_id=rng.randint(1, 10),
                shop_id=rng.randint(1, 20),
                good_id=rng.randint(1, 10),
                qty=rng.randint(1, 5),
                price_at_order=50.0 + rng.random() * 950.0,
            )
        if event_type is EventType.PRICE_CHANGE:
            old_price = 50.0 + rng.random() * 950.0
            new_price = max(1.0, old_price + (rng.random() - 0.5) * 200.0)
            return PriceChangePayload(
                shop_id=rng.randint(1, 20),
                good_id=rng.randint(1, 10),
                new_price=new_price,
                old_price=old_price,
            )
        if event_type is EventType.RETURN:
            return ReturnPayload(
                order_id=self._order_id(),
                user_id=rng.randint(1, 10),
                good_id=rng.randint(1, 10),
                qty=rng.randint(1, 3),
                refund_amount=50.0 + rng.random() * 950.0,
            )
        return ShopStatusPayload(shop_id=rng.randint(1, 20), active=rng.random() < 0.5)

    def generate_one(self, allowed_types: Optional[Sequence[int]] = None) -> Event:
        """One random event whose type is drawn uniformly from ``allowed_types``."""
        types = normalize_event_types(allowed_types)
        event_type = self._rng.choice(types)
        try:
            payload = self.random_payload(event_type).to_json_bytes()
        except Exception:
            # Keep the envelope well-formed for the writer.
            logger.exception("generator.payload_failed event_type=%s", int(event_type))
            payload = ERROR_MARKER_PAYLOAD
        return Event.create(event_type, payload)
