"""Validation of externally submitted events.

Generated events are built from the payload models directly and never pass
through here.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Union

from pydantic import ValidationError

from event_ingest.core.events.models import PAYLOAD_MODELS, PAYLOAD_NAMES, EventType
from event_ingest.utils.exceptions import EventValidationError

RawPayload = Union[bytes, bytearray, str, Mapping[str, Any]]

# pydantic error types that mean "decoded fine, but the value breaks a rule"
_RULE_ERROR_TYPES = frozenset({"greater_than", "missing", "value_error", "literal_error"})

_RULE_MESSAGES: dict[str, str] = {
    "shop_id": "Shop ID must be positive",
    "good_id": "Good ID must be positive",
    "order_id": "Order ID must be positive",
    "user_id": "User ID must be positive",
    "qty": "Quantity must be positive",
    "delta_count": "Delta count cannot be zero",
    "new_price": "New price must be positive",
    "price_at_order": "Price at order must be positive",
    "refund_amount": "Refund amount must be positive",
    "sub_event_type": "Invalid sub event type",
    "active": "Active flag is required",
}


def _event_type(value: Any) -> EventType:
    # Exact ints only; bool is an int subclass.
    if not isinstance(value, int) or isinstance(value, bool):
        raise EventValidationError("event_type", "Event type must be between 0 and 4")
    try:
        return EventType(value)
    except ValueError:
        raise EventValidationError("event_type", "Event type must be between 0 and 4") from None


def _decode(event_type: EventType, payload: RawPayload) -> Any:
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise EventValidationError(
            "payload", f"Invalid {PAYLOAD_NAMES[event_type]} event payload: {exc}"
        ) from None


def _first_error(event_type: EventType, data: Any, exc: ValidationError) -> EventValidationError:
    err = exc.errors()[0]
    loc = err.get("loc") or ()
    field = str(loc[0]) if loc else "payload"

    if err.get("type") not in _RULE_ERROR_TYPES or field not in _RULE_MESSAGES:
        return EventValidationError(
            "payload", f"Invalid {PAYLOAD_NAMES[event_type]} event payload: {err.get('msg')}"
        )

    if field == "sub_event_type" and isinstance(data, dict) and not data.get("sub_event_type"):
        return EventValidationError(field, "Sub event type is required")
    return EventValidationError(field, _RULE_MESSAGES[field])


def validate_event(event_type: Any, payload: RawPayload):
    """Decode ``payload`` as the variant selected by ``event_type`` and check its field rules.

    Returns the parsed payload model. Raises ``EventValidationError`` carrying the
    offending field; a payload that isn't a JSON object is reported on ``payload``.
    """
    et = _event_type(event_type)
    data = _decode(et, payload)
    if not isinstance(data, dict):
        raise EventValidationError(
            "payload", f"Invalid {PAYLOAD_NAMES[et]} event payload: expected a JSON object"
        )

    model = PAYLOAD_MODELS[et]
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise _first_error(et, data, exc) from None
