"""Customer cancellation — command and handler."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import record_event
from ordering.order.order import Order
from ordering.order.state_machine import Trigger
from ordering.outbox.outbox import enqueue
from ordering.scoping import check_customer_owns

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    reason = String(max_length=500, default="customer_request")


@ordering.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        check_customer_owns(order, command.user_id)

        reason = command.reason or "customer_request"
        transition = order.transition(Trigger.CANCEL, actor_id=command.user_id, note=reason)
        repo.add(order)

        record_event(
            order.id,
            "OrderCancelled",
            actor_id=command.user_id,
            payload={"reason": reason, "previous_status": transition.previous_status.value},
        )
        enqueue(
            order.id,
            "order.status_updated",
            {
                "order_id": str(order.id),
                "previous_status": transition.previous_status.value,
                "status": transition.status.value,
                "actor": str(command.user_id),
                "reason": reason,
            },
        )
        logger.info("order_cancelled", order_id=str(order.id), actor=str(command.user_id), reason=reason)
