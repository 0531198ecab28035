"""Order creation — command and handler.

The handler is the transaction writer: one unit of work persists the order
with every child row, its first audit event, revision 1 and the outbox
entries announcing it. If any write fails nothing is persisted.
"""

import json
from dataclasses import asdict

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import record_event, record_revision
from ordering.order.order import Order
from ordering.order.payment_plan import PaymentPlan
from ordering.order.serialization import serialize_order
from ordering.outbox.outbox import enqueue
from ordering.pricing.snapshot import PricingSnapshot

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class CreateOrder:
    user_id = Identifier(required=True)
    request = Text(required=True)  # JSON: normalized order request
    pricing = Text(required=True)  # JSON: PricingSnapshot.to_dict()
    payment_method = String(max_length=50)


@ordering.command_handler(part_of=Order)
class CreateOrderHandler:
    @handle(CreateOrder)
    def create_order(self, command):
        request = json.loads(command.request)
        pricing = PricingSnapshot.from_dict(json.loads(command.pricing))
        payment = PaymentPlan.for_method(command.payment_method)

        order = Order.place(
            user_id=command.user_id,
            request=request,
            pricing=pricing,
            payment=payment,
        )
        current_domain.repository_for(Order).add(order)

        order_id = str(order.id)
        record_event(
            order_id,
            "OrderCreated",
            actor_id=command.user_id,
            payload={
                "payment_method": payment.method,
                "payment_flow": payment.flow.value,
                "pricing_source": pricing.source.value,
                "totals": asdict(pricing.totals),
            },
        )
        record_revision(order_id, serialize_order(order), reason="Order created", created_by=command.user_id)

        announcement = {
            "order_id": order_id,
            "user_id": str(order.user_id),
            "restaurant_id": str(order.restaurant_id),
            "branch_id": str(order.branch_id) if order.branch_id else None,
            "amount": order.total_amount,
            "currency": order.currency,
        }
        enqueue(
            order_id,
            "order.created",
            {**announcement, "payment_method": payment.method, "payment_flow": payment.flow.value},
        )
        enqueue(order_id, "PaymentPending", {**announcement, "method": payment.method, "flow": payment.flow.value})

        logger.info(
            "order_created",
            order_id=order_id,
            restaurant_id=str(order.restaurant_id),
            total_amount=order.total_amount,
            pricing_source=pricing.source.value,
        )
        return order_id
