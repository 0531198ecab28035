"""Ordering bounded context — order placement, pricing and payment reconciliation.

Orders are priced against the branch catalog, written atomically together
with their audit trail and outbox rows, and reconciled against payment facts
arriving from the payment service.
"""

import structlog
from protean.domain import Domain
from protean.port.broker import registry

ordering = Domain(name="ordering")

# Broker provider for the production Redis Streams configuration in domain.toml
registry.register("redis_streams", "ordering.messaging.redis_broker.ReclaimingRedisBroker")

logger = structlog.get_logger(__name__)
