"""Application tests for customer cancellation and owner status updates."""

import json

import pytest
from ordering.order.audit import OrderAuditEvent
from ordering.order.cancellation import CancelOrder
from ordering.order.order import Order
from ordering.order.payment import ReconcilePayment
from ordering.order.status import UpdateOrderStatus
from ordering.outbox.outbox import OutboxEntry
from ordering.scoping import ForbiddenError
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError


def _update_status(order_id, status, restaurant_ids=("rest-001",), branch_ids=(), note=None):
    return current_domain.process(
        UpdateOrderStatus(
            order_id=order_id,
            actor_id="owner-001",
            restaurant_ids=json.dumps(list(restaurant_ids)),
            branch_ids=json.dumps(list(branch_ids)),
            status=status,
            note=note,
        ),
        asynchronous=False,
    )


def _cancel(order_id, user_id="cust-001", **extra):
    current_domain.process(CancelOrder(order_id=order_id, user_id=user_id, **extra), asynchronous=False)


def _event_types(order_id):
    return [e.event_type for e in current_domain.repository_for(OrderAuditEvent).for_order(order_id)]


class TestCancelOrderCommand:
    def test_cancel_pending_order(self, place_order):
        order_id = place_order()

        _cancel(order_id, reason="Ordered twice")

        order = current_domain.repository_for(Order).get(order_id)
        assert order.status == "cancelled"
        assert order.metadata_dict["timeline"][-1]["note"] == "Ordered twice"
        assert _event_types(order_id) == ["OrderCreated", "OrderCancelled"]
        entries = current_domain.repository_for(OutboxEntry).for_aggregate(order_id)
        assert entries[-1].event_type == "order.status_updated"
        assert json.loads(entries[-1].payload)["status"] == "cancelled"

    def test_cancel_confirmed_order(self, place_order):
        order_id = place_order()
        _update_status(order_id, "confirmed")

        _cancel(order_id)

        assert current_domain.repository_for(Order).get(order_id).status == "cancelled"

    def test_cancel_preparing_order_is_rejected(self, place_order):
        order_id = place_order()
        _update_status(order_id, "confirmed")
        _update_status(order_id, "preparing")

        with pytest.raises(ValidationError):
            _cancel(order_id)

        assert current_domain.repository_for(Order).get(order_id).status == "preparing"
        assert "OrderCancelled" not in _event_types(order_id)

    def test_cancel_paid_order_is_rejected(self, place_order):
        order_id = place_order(payment_method="card")
        current_domain.process(ReconcilePayment(order_id=order_id, event="PaymentSucceeded", amount=186900), asynchronous=False)

        with pytest.raises(ValidationError):
            _cancel(order_id)

    def test_other_customer_cannot_see_the_order(self, place_order):
        order_id = place_order()
        with pytest.raises(ObjectNotFoundError):
            _cancel(order_id, user_id="cust-999")

    def test_unknown_order(self):
        with pytest.raises(ObjectNotFoundError):
            _cancel("missing-order")


class TestUpdateOrderStatusCommand:
    def test_owner_moves_order_through_lifecycle(self, place_order):
        order_id = place_order()

        for status in ("confirmed", "preparing", "ready", "delivering", "completed"):
            assert _update_status(order_id, status) == status

        order = current_domain.repository_for(Order).get(order_id)
        assert order.status == "completed"
        codes = [entry["code"] for entry in order.metadata_dict["timeline"]]
        assert codes == [
            "order.created",
            "order.confirm",
            "order.start_preparing",
            "order.mark_ready",
            "order.dispatch",
            "order.complete",
        ]
        assert _event_types(order_id).count("OrderStatusUpdated") == 5

    def test_pickup_order_completes_from_ready(self, place_order):
        order_id = place_order(fulfillment_type="pickup")
        for status in ("confirmed", "preparing", "ready", "completed"):
            _update_status(order_id, status)
        assert current_domain.repository_for(Order).get(order_id).status == "completed"

    def test_illegal_jump_is_rejected(self, place_order):
        order_id = place_order()
        with pytest.raises(ValidationError):
            _update_status(order_id, "delivering")

    def test_invalid_status_value(self, place_order):
        order_id = place_order()
        with pytest.raises(ValidationError) as exc:
            _update_status(order_id, "shipped")
        assert "status" in exc.value.messages

    def test_other_restaurant_looks_missing(self, place_order):
        order_id = place_order()
        with pytest.raises(ObjectNotFoundError):
            _update_status(order_id, "confirmed", restaurant_ids=("rest-999",))

    def test_unmanaged_branch_is_forbidden(self, place_order):
        order_id = place_order()
        with pytest.raises(ForbiddenError):
            _update_status(order_id, "confirmed", branch_ids=("branch-002",))
        assert current_domain.repository_for(Order).get(order_id).status == "pending"

    def test_owner_without_restaurants_is_forbidden(self, place_order):
        order_id = place_order()
        with pytest.raises(ForbiddenError):
            _update_status(order_id, "confirmed", restaurant_ids=())
