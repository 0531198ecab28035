"""Owner status updates — command and handler.

Owners move their restaurant's orders forward through the lifecycle. The
requested status is mapped to a trigger and checked against the shared
transition table.
"""

import json

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import record_event
from ordering.order.order import Order
from ordering.order.state_machine import trigger_for_status
from ordering.outbox.outbox import enqueue
from ordering.scoping import OwnerScope

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    restaurant_ids = Text(required=True)  # JSON list: owner's restaurant scope
    branch_ids = Text()  # JSON list: owner's branch scope, empty for all branches
    status = String(required=True, max_length=50)
    note = Text()


@ordering.command_handler(part_of=Order)
class UpdateOrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_status(self, command):
        scope = OwnerScope.from_lists(json.loads(command.restaurant_ids), json.loads(command.branch_ids or "[]"))
        trigger = trigger_for_status(command.status)

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        scope.check(order)

        transition = order.transition(trigger, actor_id=command.actor_id, note=command.note)
        repo.add(order)

        record_event(
            order.id,
            "OrderStatusUpdated",
            actor_id=command.actor_id,
            payload={
                "previous": transition.previous_status.value,
                "next": transition.status.value,
                "note": command.note,
            },
        )
        enqueue(
            order.id,
            "order.status_updated",
            {
                "order_id": str(order.id),
                "previous_status": transition.previous_status.value,
                "status": transition.status.value,
                "actor": str(command.actor_id),
            },
        )
        logger.info(
            "order_status_updated",
            order_id=str(order.id),
            previous=transition.previous_status.value,
            next=transition.status.value,
        )
        return transition.status.value
