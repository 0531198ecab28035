"""Composition of the ordering services.

``OrderingServices.build`` wires the catalog adapter, the pricing resolver,
the broker connection and the outbox drain from one ``OrderingSettings``.
Tests pass an in-memory catalog through ``catalog``; the broker itself comes
from the domain configuration.
"""

from dataclasses import dataclass, field

from ordering.config import OrderingSettings
from ordering.messaging.connection import BrokerConnectionManager
from ordering.order.placement import OrderPlacement
from ordering.outbox.drain import OutboxDrain
from ordering.pricing.catalog import BranchCatalog, Deadline
from ordering.pricing.http_catalog import HttpBranchCatalog
from ordering.pricing.resolver import PricingResolver
from ordering.queries.orders import ScopedOrderQueries


@dataclass
class OrderingServices:
    settings: OrderingSettings
    catalog: BranchCatalog
    resolver: PricingResolver
    connection: BrokerConnectionManager
    drain: OutboxDrain
    placement: OrderPlacement
    queries: ScopedOrderQueries = field(default_factory=ScopedOrderQueries)

    @classmethod
    def build(
        cls,
        settings: OrderingSettings,
        catalog: BranchCatalog | None = None,
    ) -> "OrderingServices":
        catalog = catalog or HttpBranchCatalog(settings.catalog_base_url, settings.catalog_timeout_seconds)
        resolver = PricingResolver(
            catalog,
            allow_client_fallback=settings.allow_client_pricing_fallback,
            fallback_tax_rate=settings.fallback_tax_rate,
            default_currency=settings.default_currency,
            timeout_seconds=settings.catalog_timeout_seconds,
        )
        connection = BrokerConnectionManager(reconnect_delay=settings.broker_reconnect_delay_seconds)
        drain = OutboxDrain(
            connection,
            queue=settings.order_events_queue,
            batch_size=settings.outbox_batch_size,
            poll_interval=settings.outbox_poll_interval_seconds,
        )
        return cls(
            settings=settings,
            catalog=catalog,
            resolver=resolver,
            connection=connection,
            drain=drain,
            placement=OrderPlacement(resolver, drain=drain),
        )

    def new_deadline(self) -> Deadline:
        return Deadline.after(self.settings.catalog_timeout_seconds)

    def close(self) -> None:
        self.connection.close()
        close_catalog = getattr(self.catalog, "close", None)
        if close_catalog is not None:
            close_catalog()
