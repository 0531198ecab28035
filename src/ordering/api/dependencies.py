"""Request-scoped dependencies: principal, services and pricing deadline.

Authentication happens upstream; the gateway forwards the resolved principal
in ``X-User-Id``, ``X-User-Role``, ``X-Restaurant-Ids`` and ``X-Branch-Ids``
(comma-separated) headers.
"""

from fastapi import Depends, Header, Request

from ordering.pricing.catalog import Deadline
from ordering.scoping import Principal, Role
from ordering.services import OrderingServices


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def get_principal(
    x_user_id: str | None = Header(None),
    x_user_role: str = Header(Role.CUSTOMER.value),
    x_restaurant_ids: str | None = Header(None),
    x_branch_ids: str | None = Header(None),
) -> Principal:
    return Principal.of(
        x_user_id,
        role=x_user_role.strip().lower(),
        restaurant_ids=_split(x_restaurant_ids),
        branch_ids=_split(x_branch_ids),
    )


def get_services(request: Request) -> OrderingServices:
    return request.app.state.services


def pricing_deadline(services: OrderingServices = Depends(get_services)):
    """A pricing budget that is cancelled as soon as the request finishes."""
    deadline: Deadline = services.new_deadline()
    try:
        yield deadline
    finally:
        deadline.cancel()
