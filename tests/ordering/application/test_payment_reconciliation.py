"""Application tests for applying payment facts to orders."""

import json
import threading

import pytest
from ordering.order.audit import OrderAuditEvent
from ordering.order.order import Order
from ordering.order.payment import APPLIED, DUPLICATE, UNKNOWN_ORDER, ReconcilePayment
from ordering.order.status import UpdateOrderStatus
from ordering.outbox.outbox import OutboxEntry
from protean import current_domain
from protean.exceptions import ValidationError


def _reconcile(order_id, event, **fields):
    return current_domain.process(ReconcilePayment(order_id=order_id, event=event, **fields), asynchronous=False)


def _outbox_types(order_id):
    return [e.event_type for e in current_domain.repository_for(OutboxEntry).for_aggregate(order_id)]


class TestPaymentSucceeded:
    def test_marks_paid_and_confirms(self, place_order):
        order_id = place_order(payment_method="card")

        outcome = _reconcile(order_id, "PaymentSucceeded", payment_id="pay-1", amount=186900)

        assert outcome == APPLIED
        order = current_domain.repository_for(Order).get(order_id)
        assert (order.status, order.payment_status) == ("confirmed", "paid")
        assert order.metadata_dict["timeline"][-1]["code"] == "order.payment_succeeded"
        assert _outbox_types(order_id)[-1] == "order.payment_succeeded"
        entry = current_domain.repository_for(OutboxEntry).for_aggregate(order_id)[-1]
        assert json.loads(entry.payload) == {"order_id": order_id, "payment_id": "pay-1", "amount": 186900}

    def test_redelivery_changes_nothing_but_the_audit_trail(self, place_order):
        order_id = place_order(payment_method="card")
        _reconcile(order_id, "PaymentSucceeded", payment_id="pay-1")
        order_before = current_domain.repository_for(Order).get(order_id)

        outcome = _reconcile(order_id, "PaymentSucceeded", payment_id="pay-1")

        assert outcome == DUPLICATE
        order = current_domain.repository_for(Order).get(order_id)
        assert (order.status, order.payment_status) == ("confirmed", "paid")
        assert order.order_metadata == order_before.order_metadata
        assert _outbox_types(order_id).count("order.payment_succeeded") == 1
        events = [e.event_type for e in current_domain.repository_for(OrderAuditEvent).for_order(order_id)]
        assert events.count("PaymentSucceeded") == 2

    def test_does_not_move_an_order_past_pending(self, place_order):
        order_id = place_order(payment_method="card")
        current_domain.process(
            UpdateOrderStatus(
                order_id=order_id,
                actor_id="owner-001",
                restaurant_ids='["rest-001"]',
                branch_ids="[]",
                status="confirmed",
            ),
            asynchronous=False,
        )
        current_domain.process(
            UpdateOrderStatus(
                order_id=order_id,
                actor_id="owner-001",
                restaurant_ids='["rest-001"]',
                branch_ids="[]",
                status="preparing",
            ),
            asynchronous=False,
        )

        _reconcile(order_id, "PaymentSucceeded")

        order = current_domain.repository_for(Order).get(order_id)
        assert (order.status, order.payment_status) == ("preparing", "paid")

    def test_unknown_order_is_reported(self):
        assert _reconcile("no-such-order", "PaymentSucceeded") == UNKNOWN_ORDER


class TestPaymentFailed:
    def test_marks_payment_failed_and_keeps_order_pending(self, place_order):
        order_id = place_order(payment_method="card")

        assert _reconcile(order_id, "PaymentFailed", payment_id="pay-9") == APPLIED

        order = current_domain.repository_for(Order).get(order_id)
        assert (order.status, order.payment_status) == ("pending", "failed")
        assert "order.payment_succeeded" not in _outbox_types(order_id)

    def test_failure_after_success_is_rejected(self, place_order):
        order_id = place_order(payment_method="card")
        _reconcile(order_id, "PaymentSucceeded")

        with pytest.raises(ValidationError):
            _reconcile(order_id, "PaymentFailed")


class TestRefundCompleted:
    def test_refund_of_completed_order_cancels_it(self, place_order):
        order_id = place_order(payment_method="card", fulfillment_type="pickup")
        _reconcile(order_id, "PaymentSucceeded")
        for status in ("preparing", "ready", "completed"):
            current_domain.process(
                UpdateOrderStatus(
                    order_id=order_id,
                    actor_id="owner-001",
                    restaurant_ids='["rest-001"]',
                    branch_ids="[]",
                    status=status,
                ),
                asynchronous=False,
            )

        assert _reconcile(order_id, "RefundCompleted", refund_id="ref-1", amount=186900) == APPLIED

        order = current_domain.repository_for(Order).get(order_id)
        assert (order.status, order.payment_status) == ("cancelled", "refunded")
        assert _outbox_types(order_id)[-1] == "order.refunded"

    def test_refund_of_unpaid_order_is_rejected(self, place_order):
        order_id = place_order()
        with pytest.raises(ValidationError):
            _reconcile(order_id, "RefundCompleted")


class TestConcurrentWrites:
    def test_stale_write_is_retried_against_the_latest_order(self, place_order, monkeypatch):
        from ordering.domain import ordering

        order_id = place_order(payment_method="card")
        real_transition = Order.transition
        interleaved = []

        def confirm_elsewhere():
            with ordering.domain_context():
                current_domain.process(
                    UpdateOrderStatus(
                        order_id=order_id,
                        actor_id="owner-001",
                        restaurant_ids='["rest-001"]',
                        branch_ids="[]",
                        status="confirmed",
                    ),
                    asynchronous=False,
                )

        def transition_after_a_concurrent_write(order, trigger, **kwargs):
            # The first payment attempt has already loaded the order; commit a
            # status change underneath it so its write is stale
            if not interleaved:
                interleaved.append(trigger)
                writer = threading.Thread(target=confirm_elsewhere)
                writer.start()
                writer.join()
            return real_transition(order, trigger, **kwargs)

        monkeypatch.setattr(Order, "transition", transition_after_a_concurrent_write)

        outcome = _reconcile(order_id, "PaymentSucceeded", payment_id="pay-1")

        assert outcome == APPLIED
        assert interleaved
        order = current_domain.repository_for(Order).get(order_id)
        assert (order.status, order.payment_status) == ("confirmed", "paid")
        events = [e.event_type for e in current_domain.repository_for(OrderAuditEvent).for_order(order_id)]
        assert events.count("OrderStatusUpdated") == 1
        assert events.count("PaymentSucceeded") == 1
        assert _outbox_types(order_id).count("order.payment_succeeded") == 1

    def test_version_retry_is_configured(self):
        from ordering.domain import ordering

        version_retry = ordering.config["server"]["version_retry"]
        assert version_retry["enabled"] is True
        assert version_retry["max_retries"] == 3
