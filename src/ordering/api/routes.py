"""FastAPI routes for the Ordering domain — customer, owner and admin views."""

import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from ordering.api.dependencies import get_principal, get_services, pricing_deadline
from ordering.api.schemas import (
    AdminPatchRequest,
    AdminPatchResponse,
    CancelOrderRequest,
    CreateRevisionRequest,
    OrderIdResponse,
    OrderPage,
    OrderStatusResponse,
    PlaceOrderRequest,
    RevisionResponse,
    StatusResponse,
    UpdateStatusRequest,
)
from ordering.order.administration import CancelOrderByAdmin, PatchOrder
from ordering.order.cancellation import CancelOrder
from ordering.order.revision import CreateOrderRevision
from ordering.order.status import UpdateOrderStatus
from ordering.pricing.catalog import Deadline
from ordering.scoping import ForbiddenError, OwnerScope, Principal, Role
from ordering.services import OrderingServices

logger = structlog.get_logger(__name__)

DISCONNECT_POLL_SECONDS = 0.1


def _list_filters(
    status: str | None = None,
    payment_status: str | None = None,
    restaurant_id: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = Query(20),
    offset: int = Query(0, ge=0),
) -> dict:
    return {
        "status": status,
        "payment_status": payment_status,
        "restaurant_id": restaurant_id,
        "start_date": start_date,
        "end_date": end_date,
        "limit": limit,
        "offset": offset,
    }


def _flush(services: OrderingServices, order_id: str) -> None:
    services.drain.flush(order_id)


async def run_until_disconnected(request: Request, deadline: Deadline, func, /, *args, **kwargs):
    """Run blocking ``func`` on a worker thread, cancelling ``deadline`` if the client goes away first."""

    async def watch_disconnect() -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)
        logger.info("client_disconnected", path=request.url.path)
        deadline.cancel()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    finally:
        watcher.cancel()


# ---------------------------------------------------------------------------
# Customer Router
# ---------------------------------------------------------------------------
customer_router = APIRouter(prefix="/orders", tags=["orders"])


@customer_router.post("", status_code=201, response_model=OrderIdResponse)
async def place_order(
    request: Request,
    body: PlaceOrderRequest,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
    deadline: Deadline = Depends(pricing_deadline),
) -> OrderIdResponse:
    order_id = await run_until_disconnected(
        request, deadline, services.placement.place, principal, body.model_dump(exclude_none=True), deadline=deadline
    )
    return OrderIdResponse(order_id=order_id)


@customer_router.get("", response_model=OrderPage)
async def list_my_orders(
    filters: dict = Depends(_list_filters),
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> dict:
    return services.queries.list_for_customer(principal, **filters)


@customer_router.get("/{order_id}")
async def get_my_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> dict:
    return services.queries.get_for_customer(principal, order_id)


@customer_router.post("/{order_id}/cancel", response_model=StatusResponse)
async def cancel_my_order(
    order_id: str,
    body: CancelOrderRequest | None = None,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> StatusResponse:
    fields = {"order_id": order_id, "user_id": principal.id}
    if body is not None and body.reason:
        fields["reason"] = body.reason
    current_domain.process(CancelOrder(**fields), asynchronous=False)
    _flush(services, order_id)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Owner Router
# ---------------------------------------------------------------------------
owner_router = APIRouter(prefix="/owner/orders", tags=["owner"])


def _owner_scope(principal: Principal) -> OwnerScope:
    principal.require_role(Role.OWNER)
    return OwnerScope.of(principal)


@owner_router.get("", response_model=OrderPage)
async def list_restaurant_orders(
    filters: dict = Depends(_list_filters),
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> dict:
    _owner_scope(principal)
    return services.queries.list_for_owner(principal, **filters)


@owner_router.get("/{order_id}")
async def get_restaurant_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> dict:
    _owner_scope(principal)
    return services.queries.get_for_owner(principal, order_id)


@owner_router.patch("/{order_id}/status", response_model=OrderStatusResponse)
async def update_order_status(
    order_id: str,
    body: UpdateStatusRequest,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> OrderStatusResponse:
    scope = _owner_scope(principal)
    command = UpdateOrderStatus(
        order_id=order_id,
        actor_id=principal.id,
        restaurant_ids=json.dumps(sorted(scope.restaurant_ids)),
        branch_ids=json.dumps(sorted(scope.branch_ids)),
        status=body.status,
        note=body.note,
    )
    status = current_domain.process(command, asynchronous=False)
    _flush(services, order_id)
    return OrderStatusResponse(order_id=order_id, status=status)


@owner_router.post("/{order_id}/revisions", status_code=201, response_model=RevisionResponse)
async def create_revision(
    order_id: str,
    body: CreateRevisionRequest | None = None,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> RevisionResponse:
    scope = _owner_scope(principal)
    fields = {
        "order_id": order_id,
        "actor_id": principal.id,
        "restaurant_ids": json.dumps(sorted(scope.restaurant_ids)),
        "branch_ids": json.dumps(sorted(scope.branch_ids)),
    }
    if body is not None and body.reason:
        fields["reason"] = body.reason
    rev_no = current_domain.process(CreateOrderRevision(**fields), asynchronous=False)
    _flush(services, order_id)
    return RevisionResponse(order_id=order_id, rev_no=rev_no)


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


@admin_router.get("", response_model=OrderPage)
async def list_all_orders(
    filters: dict = Depends(_list_filters),
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> dict:
    return services.queries.list_for_admin(principal, **filters)


@admin_router.get("/{order_id}")
async def get_any_order(
    order_id: str,
    include_history: bool = False,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> dict:
    return services.queries.get_for_admin(principal, order_id, include_history=include_history)


@admin_router.patch("/{order_id}", response_model=AdminPatchResponse)
async def patch_order(
    order_id: str,
    body: AdminPatchRequest,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> AdminPatchResponse:
    principal.require_role(Role.ADMIN)
    command = PatchOrder(order_id=order_id, actor_id=principal.id, **body.model_dump(exclude_none=True))
    changes = current_domain.process(command, asynchronous=False)
    _flush(services, order_id)
    return AdminPatchResponse(order_id=order_id, changes=changes or {})


@admin_router.delete("/{order_id}", response_model=StatusResponse)
async def cancel_any_order(
    order_id: str,
    reason: str | None = None,
    principal: Principal = Depends(get_principal),
    services: OrderingServices = Depends(get_services),
) -> StatusResponse:
    principal.require_role(Role.ADMIN)
    fields = {"order_id": order_id, "actor_id": principal.id}
    if reason:
        fields["reason"] = reason
    current_domain.process(CancelOrderByAdmin(**fields), asynchronous=False)
    _flush(services, order_id)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
async def _forbidden(request: Request, exc: ForbiddenError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=403, content={"error": exc.message})


def register_forbidden_handler(app: FastAPI) -> None:
    app.add_exception_handler(ForbiddenError, _forbidden)
