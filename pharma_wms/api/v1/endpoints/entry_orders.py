"""Entry order API endpoints."""
import uuid

from fastapi import APIRouter, status

from pharma_wms.api.deps import DB, CurrentActor, Scope
from pharma_wms.schemas.orders import (
    EntryOrderCreate,
    EntryOrderReview,
    EntryOrderResponse,
    EntryOrderLineResponse,
)
from pharma_wms.services.order_service import OrderService


router = APIRouter(tags=["Entry Orders"])


def _order_response(order, lines) -> EntryOrderResponse:
    response = EntryOrderResponse.model_validate(order)
    response.lines = [EntryOrderLineResponse.model_validate(line) for line in lines]
    return response


@router.post(
    "",
    response_model=EntryOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_entry_order(
    data: EntryOrderCreate,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """Register an inbound order. It starts PENDING review."""
    service = OrderService(db)
    order, lines = await service.create_entry_order(data, actor, scope)
    return _order_response(order, lines)


@router.get(
    "/{order_id}",
    response_model=EntryOrderResponse,
)
async def get_entry_order(
    order_id: uuid.UUID,
    db: DB,
    scope: Scope,
):
    service = OrderService(db)
    order, lines = await service.get_entry_order(order_id, scope)
    return _order_response(order, lines)


@router.post(
    "/{order_id}/review",
    response_model=EntryOrderResponse,
)
async def review_entry_order(
    order_id: uuid.UUID,
    data: EntryOrderReview,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Approve, reject or send back an entry order.
    Requires: ADMIN, WAREHOUSE_INCHARGE or PHARMACIST
    """
    service = OrderService(db)
    await service.review_entry_order(order_id, data.review_status, actor, scope, comments=data.comments)
    order, lines = await service.get_entry_order(order_id, scope)
    return _order_response(order, lines)
