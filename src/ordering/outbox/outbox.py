"""Transactional outbox.

Each state-changing unit of work appends ``OutboxEntry`` rows next to the
rows it changes. The rows are the source of truth for what gets published;
``ordering.outbox.drain`` delivers them to the broker afterwards, at least
once. The entry id doubles as the idempotency key consumers deduplicate on.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering

EVENT_SOURCE = "order-service"


class OutboxStatus(Enum):
    PENDING = "Pending"
    PUBLISHED = "Published"


@ordering.aggregate(schema_name="outbox")
class OutboxEntry:
    aggregate_type = String(required=True, max_length=50)
    aggregate_id = Identifier(required=True)
    event_type = String(required=True, max_length=100)
    payload = Text(required=True)  # JSON
    status = String(choices=OutboxStatus, default=OutboxStatus.PENDING.value)
    attempts = Integer(default=0)
    last_error = Text()
    created_at = DateTime()
    published_at = DateTime()

    @property
    def idempotency_key(self) -> str:
        return str(self.id)

    @property
    def is_pending(self) -> bool:
        return self.status == OutboxStatus.PENDING.value

    def envelope(self) -> dict:
        """Message published to the broker for this entry."""
        return {
            "event": self.event_type,
            "payload": json.loads(self.payload),
            "emittedAt": (self.created_at or datetime.now(UTC)).isoformat(),
            "source": EVENT_SOURCE,
            "idempotency_key": self.idempotency_key,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": str(self.aggregate_id),
        }

    def mark_published(self) -> None:
        self.status = OutboxStatus.PUBLISHED.value
        self.attempts = (self.attempts or 0) + 1
        self.last_error = None
        self.published_at = datetime.now(UTC)

    def mark_failed(self, error: str) -> None:
        self.attempts = (self.attempts or 0) + 1
        self.last_error = error


@ordering.repository(part_of=OutboxEntry)
class OutboxEntryRepository:
    def pending(self, limit: int = 50) -> list[OutboxEntry]:
        return (
            self._dao.query.filter(status=OutboxStatus.PENDING.value)
            .order_by("created_at")
            .limit(limit)
            .all()
            .items
        )

    def pending_for(self, aggregate_id) -> list[OutboxEntry]:
        return (
            self._dao.query.filter(status=OutboxStatus.PENDING.value, aggregate_id=str(aggregate_id))
            .order_by("created_at")
            .all()
            .items
        )

    def for_aggregate(self, aggregate_id) -> list[OutboxEntry]:
        return self._dao.query.filter(aggregate_id=str(aggregate_id)).order_by("created_at").all().items


def enqueue(aggregate_id, event_type: str, payload: dict, aggregate_type: str = "order") -> OutboxEntry:
    """Append an outbox entry to the current unit of work."""
    entry = OutboxEntry(
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate_id),
        event_type=event_type,
        payload=json.dumps(payload, default=str),
        status=OutboxStatus.PENDING.value,
        attempts=0,
        created_at=datetime.now(UTC),
    )
    current_domain.repository_for(OutboxEntry).add(entry)
    return entry
