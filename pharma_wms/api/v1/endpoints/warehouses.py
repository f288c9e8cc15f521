"""Warehouse and cell API endpoints."""
from typing import Optional
import uuid

from fastapi import APIRouter, Query, status

from pharma_wms.api.deps import DB, CurrentActor, Scope
from pharma_wms.schemas.warehouse import (
    WarehouseCreate,
    WarehouseResponse,
    CellResponse,
    CellRoleChange,
    CellAssignmentCreate,
    CellAssignmentResponse,
)
from pharma_wms.services.warehouse_service import WarehouseService


router = APIRouter(tags=["Warehouses"])


@router.post(
    "",
    response_model=WarehouseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_warehouse(
    data: WarehouseCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create a warehouse and its cell grid.
    Requires: ADMIN or WAREHOUSE_INCHARGE
    """
    service = WarehouseService(db)
    warehouse, cell_count = await service.create_warehouse(data, actor)
    response = WarehouseResponse.model_validate(warehouse)
    response.cell_count = cell_count
    return response


@router.get(
    "/{warehouse_id}/cells",
    response_model=list[CellResponse],
)
async def list_cells(
    warehouse_id: uuid.UUID,
    db: DB,
    scope: Scope,
    cell_role: Optional[str] = Query(None),
    only_available: bool = Query(False),
    include_passages: bool = Query(True),
):
    """Cells of a warehouse in address order. Client users only see their assigned cells."""
    service = WarehouseService(db)
    cells = await service.list_cells(
        warehouse_id,
        scope,
        cell_role=cell_role,
        only_available=only_available,
        include_passages=include_passages,
    )
    return [CellResponse.model_validate(c) for c in cells]


@router.patch(
    "/cells/{cell_id}/role",
    response_model=CellResponse,
)
async def change_cell_role(
    cell_id: uuid.UUID,
    data: CellRoleChange,
    db: DB,
    actor: CurrentActor,
    scope: Scope,
):
    """
    Change a cell's quality role.
    Requires: ADMIN
    """
    service = WarehouseService(db)
    cell = await service.change_cell_role(cell_id, data.cell_role, actor, scope, reason=data.reason)
    return CellResponse.model_validate(cell)


@router.post(
    "/cells/{cell_id}/clients",
    response_model=CellAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_cell(
    cell_id: uuid.UUID,
    data: CellAssignmentCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Assign a cell to a client.
    Requires: ADMIN or WAREHOUSE_INCHARGE
    """
    service = WarehouseService(db)
    assignment = await service.assign_cell_to_client(cell_id, data.client_id, actor, notes=data.notes)
    return CellAssignmentResponse.model_validate(assignment)
