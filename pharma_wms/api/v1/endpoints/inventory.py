"""Inventory read API endpoints."""
from typing import Optional
from datetime import datetime
import uuid

from fastapi import APIRouter, HTTPException, Query, status

from pharma_wms.api.deps import DB, CurrentActor, Scope
from pharma_wms.core.scope import SUPERVISOR_ROLES
from pharma_wms.schemas.inventory import (
    InventoryRecordResponse,
    InventoryLogResponse,
    IntegrityIssueResponse,
)
from pharma_wms.services.inventory_audit_service import InventoryAuditService
from pharma_wms.services.inventory_view_service import InventoryViewService
from pharma_wms.services.integrity_service import InventoryIntegrityService


router = APIRouter(tags=["Inventory"])


@router.get(
    "/cells/{cell_id}",
    response_model=list[InventoryRecordResponse],
)
async def inventory_by_cell(
    cell_id: uuid.UUID,
    db: DB,
    scope: Scope,
):
    """Non-empty stock positions held in a cell."""
    service = InventoryViewService(db)
    records = await service.inventory_by_cell(cell_id, scope)
    return [InventoryRecordResponse.model_validate(r) for r in records]


@router.get(
    "/logs",
    response_model=list[InventoryLogResponse],
)
async def inventory_logs(
    db: DB,
    scope: Scope,
    product_id: Optional[uuid.UUID] = Query(None),
    cell_id: Optional[uuid.UUID] = Query(None),
    allocation_id: Optional[uuid.UUID] = Query(None),
    movement_type: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
):
    """Inventory movement history in write order."""
    service = InventoryAuditService(db)
    entries = await service.history(
        scope,
        product_id=product_id,
        cell_id=cell_id,
        allocation_id=allocation_id,
        movement_type=movement_type.upper() if movement_type else None,
        since=since,
        skip=skip,
        limit=limit,
    )
    return [InventoryLogResponse.model_validate(e) for e in entries]


@router.get(
    "/integrity",
    response_model=list[IntegrityIssueResponse],
)
async def integrity_check(
    db: DB,
    actor: CurrentActor,
    warehouse_id: Optional[uuid.UUID] = Query(None),
):
    """
    Verify line conservation, cell usage and inventory records.
    Requires: ADMIN or WAREHOUSE_INCHARGE
    """
    if actor.role not in SUPERVISOR_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators and warehouse in-charges can run integrity checks",
        )
    issues = await InventoryIntegrityService(db).verify(warehouse_id)
    return [
        IntegrityIssueResponse(
            kind=i.kind,
            entity_id=i.entity_id,
            expected=i.expected,
            actual=i.actual,
        )
        for i in issues
    ]
