"""Manual revisions — an owner snapshots the current state of an order."""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import record_event, record_revision
from ordering.order.order import Order
from ordering.order.serialization import serialize_order
from ordering.outbox.outbox import enqueue
from ordering.scoping import OwnerScope


@ordering.command(part_of="Order")
class CreateOrderRevision:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    restaurant_ids = Text(required=True)  # JSON list
    branch_ids = Text()  # JSON list
    reason = String(max_length=500, default="Manual revision")


@ordering.command_handler(part_of=Order)
class CreateOrderRevisionHandler:
    @handle(CreateOrderRevision)
    def create_revision(self, command):
        scope = OwnerScope.from_lists(json.loads(command.restaurant_ids), json.loads(command.branch_ids or "[]"))
        order = current_domain.repository_for(Order).get(command.order_id)
        scope.check(order)

        reason = command.reason or "Manual revision"
        revision = record_revision(order.id, serialize_order(order), reason=reason, created_by=command.actor_id)
        record_event(
            order.id,
            "OrderRevisionCreated",
            actor_id=command.actor_id,
            payload={"rev_no": revision.rev_no, "reason": reason},
        )
        enqueue(
            order.id,
            "order.revision_created",
            {"order_id": str(order.id), "rev_no": revision.rev_no, "actor": str(command.actor_id)},
        )
        return revision.rev_no
