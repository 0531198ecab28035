"""Append-only audit trail of an order: events and revisions.

Every mutation of an order appends an ``OrderAuditEvent`` in the same unit of
work. Revisions capture the fully hydrated order; revision numbers are
contiguous per order starting at 1.
"""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering


@ordering.aggregate(schema_name="order_events")
class OrderAuditEvent:
    order_id = Identifier(required=True)
    event_type = String(required=True, max_length=100)
    actor_id = Identifier()
    payload = Text()  # JSON
    created_at = DateTime()

    @property
    def payload_dict(self) -> dict:
        return json.loads(self.payload) if self.payload else {}


@ordering.aggregate(schema_name="order_revisions")
class OrderRevision:
    order_id = Identifier(required=True)
    rev_no = Integer(required=True, min_value=1)
    snapshot = Text(required=True)  # JSON: hydrated order
    reason = String(max_length=500)
    created_by = Identifier()
    created_at = DateTime()

    @property
    def snapshot_dict(self) -> dict:
        return json.loads(self.snapshot)


@ordering.repository(part_of=OrderAuditEvent)
class OrderAuditEventRepository:
    def for_order(self, order_id) -> list[OrderAuditEvent]:
        return self._dao.query.filter(order_id=str(order_id)).order_by("created_at").all().items


@ordering.repository(part_of=OrderRevision)
class OrderRevisionRepository:
    def for_order(self, order_id) -> list[OrderRevision]:
        return self._dao.query.filter(order_id=str(order_id)).order_by("rev_no").all().items

    def next_number(self, order_id) -> int:
        return max((revision.rev_no for revision in self.for_order(order_id)), default=0) + 1


def record_event(order_id, event_type: str, actor_id=None, payload: dict | None = None) -> OrderAuditEvent:
    event = OrderAuditEvent(
        order_id=str(order_id),
        event_type=event_type,
        actor_id=str(actor_id) if actor_id else None,
        payload=json.dumps(payload or {}, default=str),
        created_at=datetime.now(UTC),
    )
    current_domain.repository_for(OrderAuditEvent).add(event)
    return event


def record_revision(order_id, snapshot: dict, reason: str, created_by=None) -> OrderRevision:
    repo = current_domain.repository_for(OrderRevision)
    revision = OrderRevision(
        order_id=str(order_id),
        rev_no=repo.next_number(order_id),
        snapshot=json.dumps(snapshot, default=str),
        reason=reason,
        created_by=str(created_by) if created_by else None,
        created_at=datetime.now(UTC),
    )
    repo.add(revision)
    return revision
