"""Departure order, reservation and dispatch API endpoints."""
from typing import Optional
from datetime import date
import uuid

from fastapi import APIRouter, Query, status

from pharma_wms.api.deps import DB, CurrentActor, Scope
from pharma_wms.models.departure import DepartureOrder
from pharma_wms.schemas.inventory import (
    DepartureAllocationResponse,
    FifoPickSchema,
    FifoPlanResponse,
    ReservationRequest,
)
from pharma_wms.schemas.orders import (
    DepartureOrderApproval,
    DepartureOrderCreate,
    DepartureOrderLineResponse,
    DepartureOrderResponse,
    DispatchResponse,
)
from pharma_wms.services.departure_service import DepartureService
from pharma_wms.services.fifo_service import FifoSelector
from pharma_wms.services.order_service import OrderService


router = APIRouter(tags=["Departure Orders"])


def _order_response(order, lines) -> DepartureOrderResponse:
    response = DepartureOrderResponse.model_validate(order)
    response.lines = [DepartureOrderLineResponse.model_validate(line) for line in lines]
    return response


@router.post(
    "",
    response_model=DepartureOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_departure_order(
    data: DepartureOrderCreate,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """Register an outbound order. It starts PENDING approval."""
    service = OrderService(db)
    order, lines = await service.create_departure_order(data, actor, scope)
    return _order_response(order, lines)


@router.get(
    "/{order_id}",
    response_model=DepartureOrderResponse,
)
async def get_departure_order(
    order_id: uuid.UUID,
    db: DB,
    scope: Scope,
):
    service = OrderService(db)
    order, lines = await service.get_departure_order(order_id, scope)
    return _order_response(order, lines)


@router.post(
    "/{order_id}/approve",
    response_model=DepartureOrderResponse,
)
async def approve_departure_order(
    order_id: uuid.UUID,
    data: DepartureOrderApproval,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Approve, reject or send back a departure order.
    Requires: ADMIN or WAREHOUSE_INCHARGE
    """
    service = OrderService(db)
    await service.approve_departure_order(
        order_id, actor, scope, decision=data.decision, comments=data.comments,
    )
    order, lines = await service.get_departure_order(order_id, scope)
    return _order_response(order, lines)


# ==================== RESERVATIONS ====================

@router.get(
    "/lines/{line_id}/suggestion",
    response_model=FifoPlanResponse,
)
async def suggest_for_line(
    line_id: uuid.UUID,
    db: DB,
    scope: Scope,
    expiring_before: Optional[date] = Query(None),
):
    """FIFO plan for the line's outstanding quantity. Advisory only; nothing is locked."""
    departures = DepartureService(db)
    line = await departures.get_line(line_id, scope)
    order = await db.get(DepartureOrder, line.departure_order_id)
    outstanding = await departures.outstanding_quantity(line)
    if outstanding <= 0:
        return FifoPlanResponse(product_id=line.product_id, requested_quantity=0, picks=[], shortfall=0)

    plan = await FifoSelector(db).suggest_allocation(
        line.product_id,
        outstanding,
        scope,
        client_id=order.client_id,
        expiring_before=expiring_before,
    )
    return FifoPlanResponse(
        product_id=plan.product_id,
        requested_quantity=plan.requested_quantity,
        picks=[FifoPickSchema.model_validate(p) for p in plan.picks],
        shortfall=plan.shortfall,
    )


@router.post(
    "/lines/{line_id}/reservations",
    response_model=list[DepartureAllocationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def reserve(
    line_id: uuid.UUID,
    data: ReservationRequest,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Reserve stock for a departure line.

    With picks, reserves exactly that plan; without, plans FIFO and reserves
    the outstanding quantity.
    """
    service = DepartureService(db)
    if data.picks:
        reservations = await service.reserve_for_departure(line_id, data.picks, actor, scope)
    else:
        reservations = await service.reserve_fifo(line_id, actor, scope)
    return [DepartureAllocationResponse.model_validate(r) for r in reservations]


@router.get(
    "/lines/{line_id}/reservations",
    response_model=list[DepartureAllocationResponse],
)
async def list_line_reservations(
    line_id: uuid.UUID,
    db: DB,
    scope: Scope,
    reservation_status: Optional[str] = Query(None, alias="status"),
):
    service = DepartureService(db)
    await service.get_line(line_id, scope)
    reservations = await service.list_reservations(
        scope, line_id=line_id, status=reservation_status.upper() if reservation_status else None,
    )
    return [DepartureAllocationResponse.model_validate(r) for r in reservations]


@router.delete(
    "/lines/{line_id}/reservations",
)
async def release_reservations(
    line_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """Release every open reservation of a line."""
    service = DepartureService(db)
    released = await service.release_reservations(line_id, actor, scope)
    return {"line_id": str(line_id), "released_quantity": released}


# ==================== DISPATCH ====================

@router.post(
    "/{order_id}/dispatch",
    response_model=DispatchResponse,
)
async def dispatch(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Dispatch every open reservation of the order.
    Not available to CLIENT users.
    """
    service = DepartureService(db)
    order_status = await service.dispatch(order_id, actor, scope)
    return DispatchResponse(departure_order_id=order_id, order_status=order_status)


@router.post(
    "/{order_id}/complete",
    response_model=DepartureOrderResponse,
)
async def complete(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """Close a fully dispatched order."""
    await DepartureService(db).complete(order_id, actor, scope)
    order, lines = await OrderService(db).get_departure_order(order_id, scope)
    return _order_response(order, lines)
