"""Payment event subscriber.

Consumes payment facts from the ``payment_events`` stream and reconciles the
referenced order. The Protean Engine reads the stream with a consumer group
and acknowledges every message the subscriber returns from. Delivery is
at-least-once:

- malformed messages are logged, counted and dead-lettered;
- facts the state machine rejects are dead-lettered;
- unexpected failures propagate, so the broker subscription retries them and
  dead-letters them once ``[server.broker_subscription] max_retries`` is spent.

Dead letters go to ``payment_events:dlq`` in the subscription's own shape: the
original message plus a ``_dlq_metadata`` dict.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.payment import ReconcilePayment
from ordering.payments.decoding import MalformedPaymentEvent, decode_payment_event
from ordering.utils.metrics import (
    payment_events_dead_lettered_total,
    payment_events_malformed_total,
    payment_events_total,
)

logger = structlog.get_logger(__name__)

PAYMENT_EVENTS = "payment_events"
DEAD_LETTERS = f"{PAYMENT_EVENTS}:dlq"

MALFORMED = "malformed"
REJECTED = "rejected"
RETRY = "retry"


def dead_letter(message, reason: str, error: str | None = None) -> None:
    """Publish ``message`` to the payment dead-letter stream with the failure reason."""
    body = message if isinstance(message, dict) else {"body": message}
    current_domain.brokers[PaymentEventSubscriber.meta_.broker].publish(
        DEAD_LETTERS,
        {
            **body,
            "_dlq_metadata": {
                "original_stream": PAYMENT_EVENTS,
                "reason": reason,
                "error": error,
                "failed_at": datetime.now(UTC).isoformat(),
            },
        },
    )
    payment_events_dead_lettered_total.labels(reason=reason).inc()


@ordering.subscriber(stream=PAYMENT_EVENTS)
class PaymentEventSubscriber:
    def __call__(self, payload) -> str:
        decoded = decode_payment_event(payload)

        if isinstance(decoded, MalformedPaymentEvent):
            logger.warning("payment_event_malformed", reason=decoded.reason.value, payment_event=decoded.event)
            payment_events_malformed_total.labels(reason=decoded.reason.value).inc()
            dead_letter(payload, decoded.reason.value)
            return MALFORMED

        command = ReconcilePayment(
            order_id=decoded.order_id,
            event=decoded.event.value,
            payment_id=decoded.payment_id,
            refund_id=decoded.refund_id,
            amount=decoded.amount,
        )
        try:
            outcome = current_domain.process(command, asynchronous=False)
        except ValidationError as exc:
            logger.warning(
                "payment_event_rejected",
                order_id=decoded.order_id,
                payment_event=decoded.event.value,
                errors=exc.messages,
            )
            payment_events_total.labels(event=decoded.event.value, outcome=REJECTED).inc()
            dead_letter(payload, "rejected_transition", error=str(exc.messages))
            return REJECTED

        payment_events_total.labels(event=decoded.event.value, outcome=outcome).inc()
        return outcome

    @classmethod
    def handle_error(cls, exc: Exception, message: dict) -> None:
        """Count a failed attempt; the broker subscription decides between retry and dead-letter."""
        decoded = decode_payment_event(message)
        event = decoded.event if isinstance(decoded, MalformedPaymentEvent) else decoded.event.value
        logger.warning("payment_event_will_retry", payment_event=event, error=str(exc))
        payment_events_total.labels(event=event or "unknown", outcome=RETRY).inc()
