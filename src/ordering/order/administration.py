"""Administrative order changes — patch and forced cancellation.

Admins may move any order through the lifecycle (including cancelling it from
any active status) and adjust its payment status, note, promo code and
fulfillment type. Monetary totals are never patched.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import record_event
from ordering.order.order import Order
from ordering.order.state_machine import Trigger, trigger_for_payment_status, trigger_for_status
from ordering.outbox.outbox import enqueue

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class PatchOrder:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    status = String(max_length=50)
    payment_status = String(max_length=50)
    note = Text()
    promo_code = String(max_length=100)
    fulfillment_type = String(max_length=20)


@ordering.command(part_of="Order")
class CancelOrderByAdmin:
    order_id = Identifier(required=True)
    actor_id = Identifier(required=True)
    reason = String(max_length=500, default="admin_cancel")


@ordering.command_handler(part_of=Order)
class AdministerOrderHandler:
    @handle(PatchOrder)
    def patch_order(self, command):
        requested = {
            name: getattr(command, name)
            for name in ("status", "payment_status", "note", "promo_code", "fulfillment_type")
            if getattr(command, name) is not None
        }
        if not requested:
            raise ValidationError({"order": ["No changes requested"]})

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        changes = {}
        if command.status is not None and command.status != order.status:
            transition = order.transition(trigger_for_status(command.status, forced=True), actor_id=command.actor_id)
            changes["status"] = {"previous": transition.previous_status.value, "next": transition.status.value}
        if command.payment_status is not None and command.payment_status != order.payment_status:
            transition = order.transition(trigger_for_payment_status(command.payment_status), actor_id=command.actor_id)
            changes["payment_status"] = {
                "previous": transition.previous_payment_status.value,
                "next": transition.payment_status.value,
            }
        changes.update(
            order.amend(
                note=command.note,
                promo_code=command.promo_code,
                fulfillment_type=command.fulfillment_type,
            )
        )
        if not changes:
            return {}

        repo.add(order)
        record_event(order.id, "OrderAdminUpdated", actor_id=command.actor_id, payload={"changes": changes})
        enqueue(
            order.id,
            "order.admin_updated",
            {
                "order_id": str(order.id),
                "status": order.status,
                "payment_status": order.payment_status,
                "changes": changes,
                "actor": str(command.actor_id),
            },
        )
        logger.info("order_admin_updated", order_id=str(order.id), fields=sorted(changes))
        return changes

    @handle(CancelOrderByAdmin)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        reason = command.reason or "admin_cancel"
        transition = order.transition(Trigger.FORCE_CANCEL, actor_id=command.actor_id, note=reason)
        repo.add(order)

        record_event(
            order.id,
            "OrderAdminCancelled",
            actor_id=command.actor_id,
            payload={"reason": reason, "previous_status": transition.previous_status.value},
        )
        enqueue(
            order.id,
            "order.admin_updated",
            {
                "order_id": str(order.id),
                "previous_status": transition.previous_status.value,
                "status": transition.status.value,
                "actor": str(command.actor_id),
                "reason": reason,
            },
        )
        logger.info("order_admin_cancelled", order_id=str(order.id), reason=reason)
