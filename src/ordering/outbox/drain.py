"""Outbox drain — delivers pending outbox entries to the broker.

``drain_once`` publishes the oldest pending entries; ``flush`` is the
low-latency path used right after a commit for a single order; ``run`` is the
polling worker loop. Delivery is at-least-once: an entry is marked published
only after the broker accepted it, so a crash in between republishes it with
the same idempotency key.
"""

import threading

import structlog
from protean.utils.globals import current_domain
from redis.exceptions import RedisError

from ordering.messaging.connection import BrokerConnectionManager, BrokerUnavailable
from ordering.outbox.outbox import OutboxEntry
from ordering.utils.metrics import outbox_entries_published_total, outbox_publish_failures_total

logger = structlog.get_logger(__name__)


class OutboxDrain:
    def __init__(
        self,
        connection: BrokerConnectionManager,
        queue: str = "order_events",
        batch_size: int = 50,
        poll_interval: float = 1.0,
    ) -> None:
        self.connection = connection
        self.queue = queue
        self.batch_size = batch_size
        self.poll_interval = poll_interval

    def drain_once(self) -> int:
        """Publish one batch of pending entries; returns how many were published."""
        entries = current_domain.repository_for(OutboxEntry).pending(limit=self.batch_size)
        return self._publish(entries)

    def flush(self, aggregate_id) -> int:
        """Publish the pending entries of one aggregate right away.

        Never raises: whatever is not published stays pending for the
        polling drain.
        """
        try:
            entries = current_domain.repository_for(OutboxEntry).pending_for(aggregate_id)
            return self._publish(entries)
        except Exception:
            logger.exception("outbox_flush_failed", aggregate_id=str(aggregate_id))
            return 0

    def _publish(self, entries) -> int:
        if not entries:
            return 0

        try:
            broker = self.connection.broker()
        except BrokerUnavailable as exc:
            logger.info("outbox_waiting_for_broker", pending=len(entries), error=str(exc))
            return 0

        repo = current_domain.repository_for(OutboxEntry)
        published = 0
        for entry in entries:
            try:
                broker.publish(self.queue, entry.envelope())
            except (RedisError, OSError) as exc:
                entry.mark_failed(str(exc))
                repo.add(entry)
                outbox_publish_failures_total.inc()
                self.connection.connection_lost(exc)
                logger.warning(
                    "outbox_publish_failed",
                    entry_id=str(entry.id),
                    event_type=entry.event_type,
                    attempts=entry.attempts,
                    error=str(exc),
                )
                break

            entry.mark_published()
            repo.add(entry)
            published += 1
            outbox_entries_published_total.labels(event_type=entry.event_type).inc()
            logger.debug("outbox_entry_published", entry_id=str(entry.id), event_type=entry.event_type)

        return published

    def run(self, stop: threading.Event) -> None:
        """Poll until ``stop`` is set. Must run inside a domain context."""
        logger.info("outbox_drain_started", queue=self.queue, batch_size=self.batch_size)
        while not stop.is_set():
            try:
                published = self.drain_once()
            except Exception:
                logger.exception("outbox_drain_iteration_failed")
                published = 0
            # A full batch means there is probably more waiting
            if published < self.batch_size:
                stop.wait(self.poll_interval)
        logger.info("outbox_drain_stopped")
