"""Shared BDD fixtures and step definitions for the Ordering domain."""

import json

import pytest
from ordering.order.cancellation import CancelOrder
from ordering.order.order import Order
from ordering.order.status import UpdateOrderStatus
from ordering.outbox.outbox import OutboxEntry
from protean import current_domain
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then, when


@pytest.fixture()
def outcome():
    """Container for the result or the error of the last action."""
    return {"result": None, "exc": None}


def _attempt(outcome, action):
    try:
        outcome["result"] = action()
        outcome["exc"] = None
    except ValidationError as exc:
        outcome["exc"] = exc


def _move(order_id, status):
    return current_domain.process(
        UpdateOrderStatus(
            order_id=order_id,
            actor_id="owner-001",
            restaurant_ids=json.dumps(["rest-001"]),
            branch_ids="[]",
            status=status,
        ),
        asynchronous=False,
    )


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a cash on delivery order was placed", target_fixture="order_id")
def _(place_order):
    return place_order()


@given("a card order was placed", target_fixture="order_id")
def _(place_order):
    return place_order(payment_method="card")


@given("a card pickup order was placed", target_fixture="order_id")
def _(place_order):
    return place_order(payment_method="card", fulfillment_type="pickup")


@given(parsers.cfparse('the restaurant moved the order to "{statuses}"'))
def _(order_id, statuses):
    for status in statuses.split(", "):
        _move(order_id, status)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the restaurant moves the order to "{status}"'))
def _(order_id, outcome, status):
    _attempt(outcome, lambda: _move(order_id, status))


@when("the customer cancels the order")
def _(order_id, outcome):
    command = CancelOrder(order_id=order_id, user_id="cust-001")
    _attempt(outcome, lambda: current_domain.process(command, asynchronous=False))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order_id, status):
    assert current_domain.repository_for(Order).get(order_id).status == status


@then(parsers.cfparse('the payment status is "{status}"'))
def _(order_id, status):
    assert current_domain.repository_for(Order).get(order_id).payment_status == status


@then("the action fails with a validation error")
def _(outcome):
    assert isinstance(outcome["exc"], ValidationError), "Expected a validation error but none was raised"


@then(parsers.cfparse('the outbox holds {count:d} "{event_type}" entries'))
def _(order_id, count, event_type):
    entries = current_domain.repository_for(OutboxEntry).for_aggregate(order_id)
    assert [e.event_type for e in entries].count(event_type) == count
