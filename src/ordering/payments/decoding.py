"""Decoding of payment facts published by the payment service.

Messages arrive as JSON text or as an already decoded dict, and look like
``{"event": "PaymentSucceeded", "payload": {"order_id": ..., "payment_id":
..., "amount": ...}}``. Decoding never raises: every message becomes
either a ``ValidPaymentEvent`` or a ``MalformedPaymentEvent`` naming why it
was rejected.
"""

import json
from dataclasses import dataclass, field
from enum import Enum

from ordering.pricing.snapshot import to_number


class PaymentEventType(Enum):
    PAYMENT_SUCCEEDED = "PaymentSucceeded"
    PAYMENT_FAILED = "PaymentFailed"
    REFUND_COMPLETED = "RefundCompleted"


class MalformedReason(Enum):
    INVALID_JSON = "invalid_json"
    NOT_AN_OBJECT = "not_an_object"
    UNKNOWN_EVENT = "unknown_event"
    MISSING_PAYLOAD = "missing_payload"
    MISSING_ORDER_ID = "missing_order_id"
    INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class ValidPaymentEvent:
    event: PaymentEventType
    order_id: str
    payment_id: str | None = None
    refund_id: str | None = None
    amount: float | None = None
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MalformedPaymentEvent:
    reason: MalformedReason
    raw: str
    event: str | None = None


def _text(value) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def decode_payment_event(body) -> ValidPaymentEvent | MalformedPaymentEvent:
    if isinstance(body, dict):
        message = body
        raw = json.dumps(body, default=str)
    else:
        raw = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else str(body)
        try:
            message = json.loads(raw)
        except ValueError:
            return MalformedPaymentEvent(MalformedReason.INVALID_JSON, raw)

    if not isinstance(message, dict):
        return MalformedPaymentEvent(MalformedReason.NOT_AN_OBJECT, raw)

    event_name = message.get("event") or message.get("type")
    try:
        event = PaymentEventType(event_name)
    except ValueError:
        return MalformedPaymentEvent(MalformedReason.UNKNOWN_EVENT, raw, event=_text(event_name))

    payload = message.get("payload")
    if not isinstance(payload, dict):
        return MalformedPaymentEvent(MalformedReason.MISSING_PAYLOAD, raw, event=event.value)

    order_id = _text(payload.get("order_id"))
    if order_id is None:
        return MalformedPaymentEvent(MalformedReason.MISSING_ORDER_ID, raw, event=event.value)

    amount = None
    if payload.get("amount") is not None:
        amount = to_number(payload["amount"], default=-1.0)
        if amount < 0:
            return MalformedPaymentEvent(MalformedReason.INVALID_AMOUNT, raw, event=event.value)

    return ValidPaymentEvent(
        event=event,
        order_id=order_id,
        payment_id=_text(payload.get("payment_id")),
        refund_id=_text(payload.get("refund_id")),
        amount=amount,
        payload=payload,
    )
