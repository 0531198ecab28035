"""Payment reconciliation — applies payment facts to orders.

PaymentSucceeded marks the order paid and confirms it when still pending;
PaymentFailed marks it failed; RefundCompleted marks it refunded and cancels
it when already completed. Re-applying a fact the order already reflects
changes nothing and only leaves an extra audit event.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import record_event
from ordering.order.order import Order
from ordering.order.state_machine import Trigger
from ordering.outbox.outbox import enqueue
from ordering.payments.decoding import PaymentEventType

logger = structlog.get_logger(__name__)

_TRIGGERS = {
    PaymentEventType.PAYMENT_SUCCEEDED: Trigger.PAYMENT_SUCCEEDED,
    PaymentEventType.PAYMENT_FAILED: Trigger.PAYMENT_FAILED,
    PaymentEventType.REFUND_COMPLETED: Trigger.REFUND_COMPLETED,
}

APPLIED = "applied"
DUPLICATE = "duplicate"
UNKNOWN_ORDER = "unknown_order"


@ordering.command(part_of="Order")
class ReconcilePayment:
    order_id = Identifier(required=True)
    event = String(required=True, choices=PaymentEventType)
    payment_id = String(max_length=255)
    refund_id = String(max_length=255)
    amount = Float()


@ordering.command_handler(part_of=Order)
class ReconcilePaymentHandler:
    @handle(ReconcilePayment)
    def reconcile(self, command):
        repo = current_domain.repository_for(Order)
        try:
            order = repo.get(command.order_id)
        except ObjectNotFoundError:
            logger.warning("payment_event_for_unknown_order", order_id=command.order_id, payment_event=command.event)
            return UNKNOWN_ORDER

        event = PaymentEventType(command.event)
        transition = order.transition(_TRIGGERS[event], note=command.payment_id or command.refund_id)
        repo.add(order)

        record_event(
            order.id,
            event.value,
            payload={
                "payment_id": command.payment_id,
                "refund_id": command.refund_id,
                "amount": command.amount,
                "previous_status": transition.previous_status.value,
                "previous_payment_status": transition.previous_payment_status.value,
            },
        )

        if not transition.changed:
            logger.info("payment_event_already_applied", order_id=str(order.id), payment_event=event.value)
            return DUPLICATE

        if event == PaymentEventType.PAYMENT_SUCCEEDED:
            enqueue(
                order.id,
                "order.payment_succeeded",
                {"order_id": str(order.id), "payment_id": command.payment_id, "amount": command.amount},
            )
        elif event == PaymentEventType.REFUND_COMPLETED:
            enqueue(
                order.id,
                "order.refunded",
                {"order_id": str(order.id), "refund_id": command.refund_id, "amount": command.amount},
            )

        logger.info(
            "payment_event_applied",
            order_id=str(order.id),
            payment_event=event.value,
            status=transition.status.value,
            payment_status=transition.payment_status.value,
        )
        return APPLIED
