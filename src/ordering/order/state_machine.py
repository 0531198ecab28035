"""Order lifecycle state machine.

Every mutation of an order's ``status`` or ``payment_status`` goes through
:func:`next_state`, which looks the (state, trigger) pair up in a single
transition table. Customer cancellation, owner status updates, admin patches
and payment reconciliation all share it.

Order status:
    pending → confirmed → preparing → ready → delivering → completed
    ready → completed (pickup / dine-in)
    pending / confirmed → cancelled

Payment status:
    unpaid → pending → paid | failed
    paid → refunded | partially_refunded
"""

from dataclasses import dataclass
from enum import Enum

from protean.exceptions import ValidationError


class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class Trigger(Enum):
    CONFIRM = "confirm"
    START_PREPARING = "start_preparing"
    MARK_READY = "mark_ready"
    DISPATCH = "dispatch"
    COMPLETE = "complete"
    CANCEL = "cancel"
    FORCE_CANCEL = "force_cancel"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    REFUND_COMPLETED = "refund_completed"
    AWAIT_PAYMENT = "await_payment"
    MARK_PAID = "mark_paid"
    PARTIAL_REFUND = "partial_refund"


_ACTIVE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERING,
)

# (status, trigger) -> next status
_STATUS_TRANSITIONS = {
    (OrderStatus.PENDING, Trigger.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.CONFIRMED, Trigger.START_PREPARING): OrderStatus.PREPARING,
    (OrderStatus.PREPARING, Trigger.MARK_READY): OrderStatus.READY,
    (OrderStatus.READY, Trigger.DISPATCH): OrderStatus.DELIVERING,
    (OrderStatus.READY, Trigger.COMPLETE): OrderStatus.COMPLETED,
    (OrderStatus.DELIVERING, Trigger.COMPLETE): OrderStatus.COMPLETED,
    (OrderStatus.PENDING, Trigger.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.CONFIRMED, Trigger.CANCEL): OrderStatus.CANCELLED,
    **{(status, Trigger.FORCE_CANCEL): OrderStatus.CANCELLED for status in _ACTIVE_STATUSES},
    # Side effects of payment facts on the order status
    (OrderStatus.PENDING, Trigger.PAYMENT_SUCCEEDED): OrderStatus.CONFIRMED,
    (OrderStatus.PENDING, Trigger.MARK_PAID): OrderStatus.CONFIRMED,
    (OrderStatus.COMPLETED, Trigger.REFUND_COMPLETED): OrderStatus.CANCELLED,
}

# (payment status, trigger) -> next payment status
_PAYMENT_TRANSITIONS = {
    **{
        (status, trigger): PaymentStatus.PAID
        for trigger in (Trigger.PAYMENT_SUCCEEDED, Trigger.MARK_PAID)
        for status in (
            PaymentStatus.UNPAID,
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
            PaymentStatus.PAID,
        )
    },
    (PaymentStatus.UNPAID, Trigger.PAYMENT_FAILED): PaymentStatus.FAILED,
    (PaymentStatus.PENDING, Trigger.PAYMENT_FAILED): PaymentStatus.FAILED,
    (PaymentStatus.FAILED, Trigger.PAYMENT_FAILED): PaymentStatus.FAILED,
    (PaymentStatus.PAID, Trigger.REFUND_COMPLETED): PaymentStatus.REFUNDED,
    (PaymentStatus.PARTIALLY_REFUNDED, Trigger.REFUND_COMPLETED): PaymentStatus.REFUNDED,
    (PaymentStatus.REFUNDED, Trigger.REFUND_COMPLETED): PaymentStatus.REFUNDED,
    (PaymentStatus.PAID, Trigger.PARTIAL_REFUND): PaymentStatus.PARTIALLY_REFUNDED,
    (PaymentStatus.PARTIALLY_REFUNDED, Trigger.PARTIAL_REFUND): PaymentStatus.PARTIALLY_REFUNDED,
    (PaymentStatus.UNPAID, Trigger.AWAIT_PAYMENT): PaymentStatus.PENDING,
    (PaymentStatus.FAILED, Trigger.AWAIT_PAYMENT): PaymentStatus.PENDING,
}

# Triggers that must move the order status (a missing entry is a rejection)
_STATUS_TRIGGERS = {
    Trigger.CONFIRM,
    Trigger.START_PREPARING,
    Trigger.MARK_READY,
    Trigger.DISPATCH,
    Trigger.COMPLETE,
    Trigger.CANCEL,
    Trigger.FORCE_CANCEL,
}

# Triggers that must move the payment status; their status side effect is optional
_PAYMENT_TRIGGERS = {
    Trigger.PAYMENT_SUCCEEDED,
    Trigger.PAYMENT_FAILED,
    Trigger.REFUND_COMPLETED,
    Trigger.AWAIT_PAYMENT,
    Trigger.MARK_PAID,
    Trigger.PARTIAL_REFUND,
}


@dataclass(frozen=True)
class Transition:
    """Outcome of applying a trigger to an order's (status, payment_status)."""

    trigger: Trigger
    previous_status: OrderStatus
    status: OrderStatus
    previous_payment_status: PaymentStatus
    payment_status: PaymentStatus

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status or self.previous_payment_status != self.payment_status


def next_state(status, payment_status, trigger: Trigger) -> Transition:
    """Resolve ``trigger`` against the transition table.

    Raises ``ValidationError`` when the combination is not allowed.
    """
    status = OrderStatus(status)
    payment_status = PaymentStatus(payment_status)

    if trigger in _STATUS_TRIGGERS:
        target = _STATUS_TRANSITIONS.get((status, trigger))
        if target is None:
            raise ValidationError({"status": [f"Cannot {trigger.value} an order that is {status.value}"]})
        if trigger == Trigger.CANCEL and payment_status == PaymentStatus.PAID:
            raise ValidationError({"status": ["Paid orders cannot be cancelled by the customer"]})
        return Transition(trigger, status, target, payment_status, payment_status)

    target_payment = _PAYMENT_TRANSITIONS.get((payment_status, trigger))
    if target_payment is None:
        raise ValidationError(
            {"payment_status": [f"Cannot apply {trigger.value} to a payment that is {payment_status.value}"]}
        )
    target = _STATUS_TRANSITIONS.get((status, trigger), status)
    return Transition(trigger, status, target, payment_status, target_payment)


def can_apply(status, payment_status, trigger: Trigger) -> bool:
    try:
        next_state(status, payment_status, trigger)
    except ValidationError:
        return False
    return True


_TRIGGER_BY_STATUS = {
    OrderStatus.CONFIRMED: Trigger.CONFIRM,
    OrderStatus.PREPARING: Trigger.START_PREPARING,
    OrderStatus.READY: Trigger.MARK_READY,
    OrderStatus.DELIVERING: Trigger.DISPATCH,
    OrderStatus.COMPLETED: Trigger.COMPLETE,
    OrderStatus.CANCELLED: Trigger.CANCEL,
}

_TRIGGER_BY_PAYMENT_STATUS = {
    PaymentStatus.PENDING: Trigger.AWAIT_PAYMENT,
    PaymentStatus.PAID: Trigger.MARK_PAID,
    PaymentStatus.FAILED: Trigger.PAYMENT_FAILED,
    PaymentStatus.REFUNDED: Trigger.REFUND_COMPLETED,
    PaymentStatus.PARTIALLY_REFUNDED: Trigger.PARTIAL_REFUND,
}


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValidationError({"status": [f"Invalid status '{value}'. Allowed: {allowed}"]}) from None


def parse_payment_status(value) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in PaymentStatus)
        raise ValidationError({"payment_status": [f"Invalid payment status '{value}'. Allowed: {allowed}"]}) from None


def trigger_for_status(value, forced: bool = False) -> Trigger:
    """Map a requested target status to the trigger that reaches it.

    ``forced`` selects the administrative cancellation, which is allowed from
    every active status.
    """
    target = parse_status(value)
    if target == OrderStatus.CANCELLED and forced:
        return Trigger.FORCE_CANCEL
    trigger = _TRIGGER_BY_STATUS.get(target)
    if trigger is None:
        raise ValidationError({"status": [f"Orders cannot be moved back to {target.value}"]})
    return trigger


def trigger_for_payment_status(value) -> Trigger:
    target = parse_payment_status(value)
    trigger = _TRIGGER_BY_PAYMENT_STATUS.get(target)
    if trigger is None:
        raise ValidationError({"payment_status": [f"Payments cannot be moved to {target.value}"]})
    return trigger
