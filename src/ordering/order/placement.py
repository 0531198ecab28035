"""Order placement — pricing followed by the atomic write.

Pricing is resolved outside the unit of work; the ``CreateOrder`` handler then
persists the whole order graph in one transaction. Once committed, the new
order's outbox entries are flushed right away on a best-effort basis.
"""

import json

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from ordering.order.creation import CreateOrder
from ordering.outbox.drain import OutboxDrain
from ordering.pricing.catalog import Deadline, DeadlineExceeded
from ordering.pricing.resolver import PricingResolver
from ordering.scoping import Principal

logger = structlog.get_logger(__name__)


class OrderPlacement:
    def __init__(self, resolver: PricingResolver, drain: OutboxDrain | None = None) -> None:
        self.resolver = resolver
        self.drain = drain

    def place(self, principal: Principal, request: dict, deadline: Deadline | None = None) -> str:
        if principal is None or not principal.id:
            raise ValidationError({"user_id": ["Unable to resolve the requesting user"]})
        if not request.get("restaurant_id"):
            raise ValidationError({"restaurant_id": ["restaurant_id is required"]})
        if not request.get("items"):
            raise ValidationError({"items": ["Order items are required"]})

        snapshot = self.resolver.resolve(request, deadline=deadline)
        if deadline is not None and deadline.cancelled:
            raise DeadlineExceeded("Order request was cancelled before the order was written")

        order_id = current_domain.process(
            CreateOrder(
                user_id=principal.id,
                request=json.dumps(request, default=str),
                pricing=json.dumps(snapshot.to_dict()),
                payment_method=request.get("payment_method"),
            ),
            asynchronous=False,
        )

        if self.drain is not None:
            published = self.drain.flush(order_id)
            logger.debug("order_events_flushed", order_id=order_id, published=published)
        return order_id
