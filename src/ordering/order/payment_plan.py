"""Payment method classification.

Maps the client's payment method onto a settlement flow. Cash-like methods
are settled on hand-over and start ``unpaid``; online methods wait for a
payment fact from the payment service and start ``pending``.
"""

from dataclasses import dataclass
from enum import Enum

from ordering.order.state_machine import PaymentStatus

DEFAULT_PAYMENT_METHOD = "cod"


class PaymentFlow(Enum):
    CASH = "cash"
    ONLINE = "online"


_FLOW_BY_METHOD = {
    "cod": PaymentFlow.CASH,
    "cash": PaymentFlow.CASH,
    "cash_on_delivery": PaymentFlow.CASH,
    "bank_transfer": PaymentFlow.CASH,
    "wallet": PaymentFlow.ONLINE,
    "card": PaymentFlow.ONLINE,
    "stripe": PaymentFlow.ONLINE,
    "momo": PaymentFlow.ONLINE,
    "zalopay": PaymentFlow.ONLINE,
}


@dataclass(frozen=True)
class PaymentPlan:
    method: str
    flow: PaymentFlow

    @property
    def initial_status(self) -> PaymentStatus:
        return PaymentStatus.PENDING if self.flow == PaymentFlow.ONLINE else PaymentStatus.UNPAID

    @classmethod
    def for_method(cls, method: str | None) -> "PaymentPlan":
        method = (method or DEFAULT_PAYMENT_METHOD).strip().lower() or DEFAULT_PAYMENT_METHOD
        return cls(method=method, flow=_FLOW_BY_METHOD.get(method, PaymentFlow.CASH))
