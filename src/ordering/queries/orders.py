"""Scoped order reads for customer, owner and admin views.

Every lookup is filtered by the principal's tenancy before it reaches the
repository: customers read only their own orders, owners read orders of the
restaurants (and, when restricted, branches) they manage, admins read all.
A scoped miss is an ``ObjectNotFoundError``.
"""

from datetime import UTC, date, datetime

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.audit import OrderAuditEvent, OrderRevision
from ordering.order.order import Order
from ordering.order.serialization import (
    serialize_event,
    serialize_order,
    serialize_revision,
    summarize_order,
)
from ordering.order.state_machine import parse_payment_status, parse_status
from ordering.scoping import OwnerScope, Principal, Role, check_customer_owns

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


@ordering.repository(part_of=Order)
class OrderRepository:
    def search(self, criteria: dict, limit: int = DEFAULT_LIMIT, offset: int = 0):
        return self._dao.query.filter(**criteria).order_by("-created_at").offset(offset).limit(limit).all()


def _clamp_limit(limit) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, limit))


def _moment(value, field: str, end_of_day: bool = False) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime.combine(value, datetime.max.time() if end_of_day else datetime.min.time())
    else:
        try:
            moment = datetime.fromisoformat(str(value))
        except ValueError:
            raise ValidationError({field: [f"Invalid date '{value}'"]}) from None
        if end_of_day and len(str(value)) == 10:
            moment = datetime.combine(moment.date(), datetime.max.time())
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


def order_filters(
    status=None,
    payment_status=None,
    restaurant_id=None,
    start_date=None,
    end_date=None,
) -> dict:
    """Translate optional list filters into repository criteria."""
    criteria = {}
    if status:
        criteria["status"] = parse_status(status).value
    if payment_status:
        criteria["payment_status"] = parse_payment_status(payment_status).value
    if restaurant_id:
        criteria["restaurant_id"] = str(restaurant_id)
    if start_date:
        criteria["created_at__gte"] = _moment(start_date, "start_date")
    if end_date:
        criteria["created_at__lte"] = _moment(end_date, "end_date", end_of_day=True)
    return criteria


class ScopedOrderQueries:
    def _page(self, criteria: dict, limit, offset) -> dict:
        limit = _clamp_limit(limit)
        offset = max(0, int(offset or 0))
        results = current_domain.repository_for(Order).search(criteria, limit=limit, offset=offset)
        return {
            "items": [summarize_order(order) for order in results.items],
            "total": results.total,
            "limit": limit,
            "offset": offset,
        }

    def _load(self, order_id) -> Order:
        return current_domain.repository_for(Order).get(order_id)

    # Customer
    def list_for_customer(self, principal: Principal, limit=DEFAULT_LIMIT, offset=0, **filters) -> dict:
        criteria = order_filters(**filters)
        criteria["user_id"] = principal.id
        return self._page(criteria, limit, offset)

    def get_for_customer(self, principal: Principal, order_id) -> dict:
        order = self._load(order_id)
        check_customer_owns(order, principal.id)
        return serialize_order(order)

    # Owner
    def list_for_owner(self, principal: Principal, limit=DEFAULT_LIMIT, offset=0, **filters) -> dict:
        principal.require_role(Role.OWNER, Role.ADMIN)
        scope = OwnerScope.of(principal)
        criteria = order_filters(**filters)

        requested = criteria.pop("restaurant_id", None)
        if requested is not None and not scope.covers_restaurant(requested):
            raise ObjectNotFoundError(f"Restaurant {requested} not found")
        if requested is not None:
            criteria["restaurant_id"] = requested
        else:
            criteria["restaurant_id__in"] = sorted(scope.restaurant_ids)
        if scope.branch_ids:
            criteria["branch_id__in"] = sorted(scope.branch_ids)
        return self._page(criteria, limit, offset)

    def get_for_owner(self, principal: Principal, order_id) -> dict:
        principal.require_role(Role.OWNER, Role.ADMIN)
        order = self._load(order_id)
        OwnerScope.of(principal).check(order)
        return serialize_order(order)

    # Admin
    def list_for_admin(self, principal: Principal, limit=DEFAULT_LIMIT, offset=0, **filters) -> dict:
        principal.require_role(Role.ADMIN)
        return self._page(order_filters(**filters), limit, offset)

    def get_for_admin(self, principal: Principal, order_id, include_history: bool = False) -> dict:
        principal.require_role(Role.ADMIN)
        order = self._load(order_id)
        data = serialize_order(order)
        if include_history:
            data["events"] = [
                serialize_event(event) for event in current_domain.repository_for(OrderAuditEvent).for_order(order.id)
            ]
            data["revisions"] = [
                serialize_revision(revision)
                for revision in current_domain.repository_for(OrderRevision).for_order(order.id)
            ]
        return data
