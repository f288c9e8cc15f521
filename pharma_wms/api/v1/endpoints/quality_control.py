"""Quality control API endpoints."""
from typing import Optional
import uuid

from fastapi import APIRouter, Query

from pharma_wms.api.deps import DB, CurrentActor, Scope
from pharma_wms.schemas.inventory import (
    AllocationResponse,
    TransitionRequest,
    TransitionRecordResponse,
    TransitionResponse,
)
from pharma_wms.services.quality_control_service import QualityControlService


router = APIRouter(tags=["Quality Control"])


@router.post(
    "/transitions",
    response_model=TransitionResponse,
)
async def transition(
    data: TransitionRequest,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Move stock of an allocation to another quality status.

    Moving less than the remaining quantity splits the allocation; the moved
    part is returned as new_allocation.
    Requires: ADMIN, WAREHOUSE_INCHARGE or PHARMACIST
    """
    service = QualityControlService(db)
    result = await service.transition(
        data.allocation_id,
        data.to_status,
        data.quantity,
        actor,
        scope,
        new_cell_id=data.new_cell_id,
        reason=data.reason,
        expected_version=data.expected_version,
        packages=data.packages,
        weight=data.weight,
        volume=data.volume,
    )
    return TransitionResponse(
        updated_allocation=AllocationResponse.model_validate(result.updated_allocation),
        new_allocation=(
            AllocationResponse.model_validate(result.new_allocation)
            if result.new_allocation else None
        ),
        transition_record=TransitionRecordResponse.model_validate(result.transition_record),
    )


@router.get(
    "/transitions",
    response_model=list[TransitionRecordResponse],
)
async def list_transitions(
    db: DB,
    scope: Scope,
    allocation_id: Optional[uuid.UUID] = Query(None),
    product_id: Optional[uuid.UUID] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Transition history, newest first."""
    service = QualityControlService(db)
    records = await service.list_transitions(
        scope,
        allocation_id=allocation_id,
        product_id=product_id,
        skip=skip,
        limit=limit,
    )
    return [TransitionRecordResponse.model_validate(r) for r in records]
