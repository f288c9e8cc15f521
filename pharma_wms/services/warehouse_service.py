"""
Warehouse set-up: cell grids, client cell assignments and cell quality roles.
"""
import logging
import uuid
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.database import atomic
from pharma_wms.core.enum_utils import get_enum_value, to_enum
from pharma_wms.core.exceptions import (
    ValidationError,
    WarehouseNotFound,
    CellNotFound,
    CellUnavailable,
    PermissionDenied,
    ScopeDenied,
)
from pharma_wms.core.scope import Actor, ActorRole, ScopeFilter, SUPERVISOR_ROLES
from pharma_wms.models.inventory import InventoryAllocation, LifecycleStatus
from pharma_wms.models.warehouse import (
    Warehouse,
    WarehouseCell,
    ClientCellAssignment,
    CellRole,
    CellStatus,
)
from pharma_wms.schemas.warehouse import WarehouseCreate
from pharma_wms.services.audit_service import AuditService
from pharma_wms.services.qc_state_machine import statuses_for_cell_role


logger = logging.getLogger(__name__)


class WarehouseService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if not warehouse:
            raise WarehouseNotFound(
                f"Warehouse {warehouse_id} not found",
                details={"warehouse_id": str(warehouse_id)},
            )
        return warehouse

    async def get_cell(self, cell_id: uuid.UUID) -> WarehouseCell:
        cell = await self.db.get(WarehouseCell, cell_id)
        if not cell:
            raise CellNotFound(f"Cell {cell_id} not found", details={"cell_id": str(cell_id)})
        return cell

    async def create_warehouse(self, data: WarehouseCreate, actor: Actor) -> Tuple[Warehouse, int]:
        """Create a warehouse and its row/bay/position grid. Returns (warehouse, cell count)."""
        if actor.role not in SUPERVISOR_ROLES:
            raise PermissionDenied(
                "Only administrators and warehouse in-charges can create warehouses",
                details={"role": actor.role.value},
            )
        invalid_passages = [b for b in data.passage_bays if b < 1 or b > data.bays]
        if invalid_passages:
            raise ValidationError(
                "Passage bays must be within the bay range",
                details={"passage_bays": invalid_passages, "bays": data.bays},
            )

        async with atomic(self.db):
            warehouse = Warehouse(
                id=uuid.uuid4(),
                name=data.name,
                location=data.location,
                status="ACTIVE",
            )
            self.db.add(warehouse)

            passage_bays = set(data.passage_bays)
            count = 0
            for row in data.rows:
                for bay in range(1, data.bays + 1):
                    for position in range(1, data.positions + 1):
                        self.db.add(WarehouseCell(
                            warehouse_id=warehouse.id,
                            row=row,
                            bay=bay,
                            position=position,
                            cell_role=CellRole.STANDARD.value,
                            is_passage=bay in passage_bays,
                            status=CellStatus.AVAILABLE.value,
                            max_quantity=data.max_quantity,
                            max_packages=data.max_packages,
                            max_weight=data.max_weight,
                            max_volume=data.max_volume,
                        ))
                        count += 1

        logger.info(f"Created warehouse {warehouse.name} with {count} cells")
        return warehouse, count

    async def list_cells(
        self,
        warehouse_id: uuid.UUID,
        scope: ScopeFilter,
        cell_role: Optional[str] = None,
        only_available: bool = False,
        include_passages: bool = True,
    ) -> List[WarehouseCell]:
        """
        Cells of a warehouse in address order.

        Client-restricted scopes only see cells assigned to their clients.
        """
        await self.get_warehouse(warehouse_id)
        query = select(WarehouseCell).where(WarehouseCell.warehouse_id == warehouse_id)
        if cell_role:
            query = query.where(WarehouseCell.cell_role == get_enum_value(cell_role).upper())
        if only_available:
            query = query.where(
                WarehouseCell.status == CellStatus.AVAILABLE.value,
                WarehouseCell.is_active == True,
                WarehouseCell.is_passage == False,
            )
        elif not include_passages:
            query = query.where(WarehouseCell.is_passage == False)
        if scope.is_restricted:
            assigned = select(ClientCellAssignment.cell_id).where(
                ClientCellAssignment.is_active == True,
                ClientCellAssignment.client_id.in_(scope.allowed_client_ids),
            )
            query = query.where(WarehouseCell.id.in_(assigned))

        query = query.order_by(WarehouseCell.row, WarehouseCell.bay, WarehouseCell.position)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def assign_cell_to_client(
        self,
        cell_id: uuid.UUID,
        client_id: uuid.UUID,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> ClientCellAssignment:
        """Make a cell usable by a client's users. Re-activates a previous assignment."""
        if actor.role not in SUPERVISOR_ROLES:
            raise PermissionDenied(
                "Only administrators and warehouse in-charges can assign cells",
                details={"role": actor.role.value},
            )

        async with atomic(self.db):
            cell = await self.get_cell(cell_id)
            if cell.is_passage:
                raise CellUnavailable(
                    f"Cell {cell.address} is a passage",
                    details={"cell_id": str(cell.id)},
                )

            result = await self.db.execute(
                select(ClientCellAssignment).where(
                    ClientCellAssignment.client_id == client_id,
                    ClientCellAssignment.cell_id == cell_id,
                )
            )
            assignment = result.scalar_one_or_none()
            if assignment is None:
                assignment = ClientCellAssignment(
                    client_id=client_id,
                    cell_id=cell_id,
                    assigned_by=actor.user_id,
                    notes=notes,
                )
                self.db.add(assignment)
            else:
                assignment.is_active = True
                assignment.assigned_by = actor.user_id
                assignment.notes = notes or assignment.notes

            await self.audit.log(
                action="CLIENT_CELL_ASSIGNED",
                entity_type="WAREHOUSE_CELL",
                entity_id=cell.id,
                user_id=actor.user_id,
                new_values={"client_id": str(client_id)},
                description=f"Cell {cell.address} assigned to client {client_id}",
            )

        logger.info(f"Cell {cell.address} assigned to client {client_id}")
        return assignment

    async def change_cell_role(
        self,
        cell_id: uuid.UUID,
        new_role,
        actor: Actor,
        scope: ScopeFilter,
        reason: Optional[str] = None,
    ) -> WarehouseCell:
        """
        Change the quality role of a cell. ADMIN only.

        Refused while the cell holds ACTIVE allocations whose quality status
        the new role cannot hold.
        """
        if actor.role != ActorRole.ADMIN:
            raise PermissionDenied(
                "Only administrators can change a cell's quality role",
                details={"role": actor.role.value},
            )
        if scope.is_restricted:
            raise ScopeDenied("Client-restricted actors cannot change cell roles")

        role_value = get_enum_value(new_role)
        role = to_enum(role_value.upper() if role_value else None, CellRole)
        if role is None:
            raise ValidationError(f"Unknown cell role '{new_role}'", details={"cell_role": new_role})

        async with atomic(self.db):
            result = await self.db.execute(
                select(WarehouseCell)
                .where(WarehouseCell.id == cell_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            cell = result.scalar_one_or_none()
            if not cell:
                raise CellNotFound(f"Cell {cell_id} not found", details={"cell_id": str(cell_id)})
            if cell.is_passage:
                raise CellUnavailable(
                    f"Cell {cell.address} is a passage",
                    details={"cell_id": str(cell.id)},
                )

            old_role = cell.cell_role
            if old_role != role.value:
                allowed = statuses_for_cell_role(role.value)
                query = select(func.count(InventoryAllocation.id)).where(
                    InventoryAllocation.cell_id == cell.id,
                    InventoryAllocation.lifecycle_status == LifecycleStatus.ACTIVE.value,
                )
                if allowed:
                    query = query.where(InventoryAllocation.quality_status.not_in(allowed))
                conflict = await self.db.execute(query)
                conflicting = conflict.scalar() or 0
                if conflicting:
                    raise CellUnavailable(
                        f"Cell {cell.address} holds {conflicting} allocations incompatible with {role.value}",
                        details={
                            "cell_id": str(cell.id),
                            "cell_role": role.value,
                            "conflicting_allocations": conflicting,
                        },
                    )

                cell.cell_role = role.value
                await self.audit.log_cell_role_changed(
                    cell_id=cell.id,
                    address=cell.address,
                    old_role=old_role,
                    new_role=role.value,
                    user_id=actor.user_id,
                    reason=reason,
                )

        logger.info(f"Cell {cell.address} role {old_role} -> {role.value}")
        return cell
