"""Allocation API endpoints."""
from typing import Optional
import uuid

from fastapi import APIRouter, Query, status

from pharma_wms.api.deps import DB, CurrentActor, Scope
from pharma_wms.schemas.inventory import (
    AllocationCreate,
    AllocationResponse,
    AllocationsByQualityResponse,
)
from pharma_wms.services.allocation_service import AllocationService
from pharma_wms.services.inventory_view_service import InventoryViewService


router = APIRouter(tags=["Allocations"])


@router.post(
    "",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def allocate(
    data: AllocationCreate,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Allocate part of an approved entry-order line to a cell.

    The allocation starts in QUARANTINE. Sending the same operation_id again
    returns the allocation created the first time.
    """
    service = AllocationService(db)
    allocation = await service.allocate(
        data.entry_order_line_id,
        data.cell_id,
        quantity=data.quantity,
        packages=data.packages,
        weight=data.weight,
        volume=data.volume,
        actor=actor,
        scope=scope,
        operation_id=data.operation_id,
        guide_number=data.guide_number,
        observations=data.observations,
    )
    return AllocationResponse.model_validate(allocation)


@router.get(
    "/by-quality",
    response_model=AllocationsByQualityResponse,
)
async def allocations_by_quality(
    db: DB,
    scope: Scope,
    product_id: Optional[uuid.UUID] = Query(None),
    cell_id: Optional[uuid.UUID] = Query(None),
):
    """Active allocations grouped by quality status."""
    service = InventoryViewService(db)
    groups = await service.allocations_by_quality(scope, product_id=product_id, cell_id=cell_id)
    return AllocationsByQualityResponse(
        groups={
            status_key: [AllocationResponse.model_validate(a) for a in allocations]
            for status_key, allocations in groups.items()
        }
    )


@router.get(
    "/{allocation_id}",
    response_model=AllocationResponse,
)
async def get_allocation(
    allocation_id: uuid.UUID,
    db: DB,
    scope: Scope,
):
    service = AllocationService(db)
    allocation = await service.get_allocation(allocation_id, scope)
    return AllocationResponse.model_validate(allocation)
