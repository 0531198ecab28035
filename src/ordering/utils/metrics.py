"""Prometheus counters for the ordering service."""

from prometheus_client import Counter

payment_events_total = Counter(
    "ordering_payment_events_total",
    "Payment events consumed, by event type and outcome",
    ["event", "outcome"],
)

payment_events_malformed_total = Counter(
    "ordering_payment_events_malformed_total",
    "Payment events rejected at decoding",
    ["reason"],
)

payment_events_dead_lettered_total = Counter(
    "ordering_payment_events_dead_lettered_total",
    "Payment events routed to the dead-letter queue",
    ["reason"],
)

outbox_entries_published_total = Counter(
    "ordering_outbox_entries_published_total",
    "Outbox entries delivered to the broker",
    ["event_type"],
)

outbox_publish_failures_total = Counter(
    "ordering_outbox_publish_failures_total",
    "Outbox publish attempts that failed",
)

pricing_fallback_total = Counter(
    "ordering_pricing_fallback_total",
    "Catalog outages handled by the pricing resolver",
    ["outcome"],
)
