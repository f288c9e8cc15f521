"""
Allocation Engine.

Binds quantities of an approved entry-order line to storage cells. Every
allocation starts in QUARANTINE; quality control releases it later.

USAGE:
    service = AllocationService(db)
    allocation = await service.allocate(
        line_id, cell_id, quantity=100, packages=10,
        weight=Decimal("50.00"), volume=Decimal("1.20"),
        actor=actor, scope=actor.scope,
    )
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings, settings as default_settings
from pharma_wms.database import atomic
from pharma_wms.core.exceptions import (
    ValidationError,
    NotApproved,
    CellUnavailable,
    QuantityExceedsRemaining,
    ScopeDenied,
    EntryOrderLineNotFound,
    EntryOrderNotFound,
    AllocationNotFound,
)
from pharma_wms.core.footprint import Footprint, to_measure
from pharma_wms.core.scope import Actor, ScopeFilter
from pharma_wms.models.audit_log import MovementType
from pharma_wms.models.entry_order import EntryOrder, EntryOrderLine
from pharma_wms.models.inventory import InventoryAllocation, QualityStatus, LifecycleStatus
from pharma_wms.models.warehouse import WarehouseCell, ClientCellAssignment, CellRole
from pharma_wms.services.inventory_delta_service import InventoryDeltaService, StockPosition


logger = logging.getLogger(__name__)


async def cell_assigned_to_scope(
    db: AsyncSession,
    cell_id: uuid.UUID,
    scope: ScopeFilter,
    client_id: Optional[uuid.UUID] = None,
) -> bool:
    """
    True when an unrestricted scope, or the cell is actively assigned to an
    allowed client. With ``client_id`` the assignment must belong to that
    client specifically.
    """
    if not scope.is_restricted:
        return True
    if client_id is not None and not scope.allows_client(client_id):
        return False
    query = select(func.count(ClientCellAssignment.id)).where(
        ClientCellAssignment.cell_id == cell_id,
        ClientCellAssignment.is_active == True,
    )
    if client_id is not None:
        query = query.where(ClientCellAssignment.client_id == client_id)
    else:
        query = query.where(ClientCellAssignment.client_id.in_(scope.allowed_client_ids))
    result = await db.execute(query)
    return (result.scalar() or 0) > 0


def ensure_cell_usable(cell: WarehouseCell, warehouse_id: Optional[uuid.UUID] = None) -> None:
    """Reject passage, inactive and foreign-warehouse cells."""
    details = {"cell_id": str(cell.id), "address": cell.address}
    if cell.is_passage:
        raise CellUnavailable(f"Cell {cell.address} is a passage", details=details)
    if not cell.is_active:
        raise CellUnavailable(f"Cell {cell.address} is inactive", details=details)
    if warehouse_id is not None and cell.warehouse_id != warehouse_id:
        raise CellUnavailable(
            f"Cell {cell.address} belongs to another warehouse",
            details={**details, "warehouse_id": str(warehouse_id)},
        )


class AllocationService:
    """Receipt of approved entry-order quantities into cells."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.delta = InventoryDeltaService(db, self.settings)

    async def get_allocation(self, allocation_id: uuid.UUID, scope: ScopeFilter) -> InventoryAllocation:
        result = await self.db.execute(
            select(InventoryAllocation).where(InventoryAllocation.id == allocation_id)
        )
        allocation = result.scalar_one_or_none()
        if not allocation:
            raise AllocationNotFound(
                f"Allocation {allocation_id} not found",
                details={"allocation_id": str(allocation_id)},
            )
        scope.ensure_client(allocation.client_id, "allocation")
        return allocation

    async def allocated_footprint(self, line_id: uuid.UUID) -> Footprint:
        """Sum of allocated_* over every allocation descended from the line."""
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(InventoryAllocation.allocated_quantity), 0),
                func.coalesce(func.sum(InventoryAllocation.allocated_packages), 0),
                func.coalesce(func.sum(InventoryAllocation.allocated_weight), 0),
                func.coalesce(func.sum(InventoryAllocation.allocated_volume), 0),
            ).where(InventoryAllocation.entry_order_line_id == line_id)
        )
        quantity, packages, weight, volume = result.one()
        return Footprint(int(quantity), int(packages), weight, volume)

    async def _lock_line(self, line_id: uuid.UUID) -> EntryOrderLine:
        result = await self.db.execute(
            select(EntryOrderLine)
            .where(EntryOrderLine.id == line_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        line = result.scalar_one_or_none()
        if not line:
            raise EntryOrderLineNotFound(
                f"Entry order line {line_id} not found",
                details={"line_id": str(line_id)},
            )
        return line

    async def _find_replayed(self, operation_id: uuid.UUID) -> Optional[InventoryAllocation]:
        entry = await self.delta.audit.find_entry(operation_id, movement_type=MovementType.RECEIPT.value)
        if entry is None:
            return None
        result = await self.db.execute(
            select(InventoryAllocation).where(InventoryAllocation.id == entry.allocation_id)
        )
        return result.scalar_one_or_none()

    async def allocate(
        self,
        line_id: uuid.UUID,
        cell_id: uuid.UUID,
        quantity: int,
        packages: int,
        weight: Decimal,
        volume: Decimal,
        actor: Actor,
        scope: ScopeFilter,
        operation_id: Optional[uuid.UUID] = None,
        guide_number: Optional[str] = None,
        observations: Optional[str] = None,
    ) -> InventoryAllocation:
        """
        Allocate part of an approved entry-order line to a cell.

        Creates a QUARANTINE allocation, the matching inventory record, the
        cell usage increment and one RECEIPT log entry in a single
        transaction. A repeated operation_id returns the allocation created
        by the first call.

        Raises:
            ValidationError: non-positive quantity or negative measures
            NotApproved: entry order not APPROVED
            CellUnavailable: passage, inactive, foreign or non-STANDARD cell
            QuantityExceedsRemaining: more than the line's unallocated remainder
            ScopeDenied: order client or cell outside the actor's scope
        """
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be positive", details={"quantity": quantity})
        if (packages or 0) < 0 or to_measure(weight) < 0 or to_measure(volume) < 0:
            raise ValidationError(
                "Packages, weight and volume cannot be negative",
                details={"packages": packages, "weight": str(weight), "volume": str(volume)},
            )
        requested = Footprint(quantity, packages or 0, weight, volume)

        if operation_id is not None:
            replayed = await self._find_replayed(operation_id)
            if replayed is not None:
                scope.ensure_client(replayed.client_id, "allocation")
                logger.info(f"Allocate {operation_id} replayed; returning allocation {replayed.id}")
                return replayed
        operation_id = operation_id or uuid.uuid4()

        async with atomic(self.db):
            line = await self._lock_line(line_id)
            order = await self.db.get(EntryOrder, line.entry_order_id)
            if order is None:
                raise EntryOrderNotFound(
                    f"Entry order {line.entry_order_id} not found",
                    details={"entry_order_id": str(line.entry_order_id)},
                )
            scope.ensure_client(order.client_id, "entry order")
            if not order.is_approved:
                raise NotApproved(
                    f"Entry order {order.order_no} is {order.review_status}, not APPROVED",
                    details={"entry_order_id": str(order.id), "review_status": order.review_status},
                )

            cell = await self.delta.ledger.lock_cell(cell_id)
            ensure_cell_usable(cell, order.warehouse_id)
            if cell.cell_role != CellRole.STANDARD.value:
                raise CellUnavailable(
                    f"Cell {cell.address} is reserved for {cell.cell_role} stock",
                    details={"cell_id": str(cell.id), "cell_role": cell.cell_role},
                )
            if not await cell_assigned_to_scope(self.db, cell.id, scope, order.client_id):
                raise ScopeDenied(
                    f"Cell {cell.address} is not assigned to the order's client",
                    details={"cell_id": str(cell.id), "client_id": str(order.client_id)},
                )

            unallocated = line.footprint - await self.allocated_footprint(line.id)
            if not requested.fits_within(unallocated):
                raise QuantityExceedsRemaining(
                    f"Requested {requested.quantity} exceeds unallocated remainder {unallocated.quantity}",
                    details={
                        "line_id": str(line.id),
                        "requested": requested.as_dict(),
                        "unallocated": unallocated.as_dict(),
                    },
                )

            allocation = InventoryAllocation(
                id=uuid.uuid4(),
                entry_order_id=order.id,
                entry_order_line_id=line.id,
                client_id=order.client_id,
                product_id=line.product_id,
                lot_number=line.lot_number,
                expiration_date=line.expiration_date,
                received_at=line.received_at,
                warehouse_id=cell.warehouse_id,
                cell_id=cell.id,
                allocated_quantity=requested.quantity,
                allocated_packages=requested.packages,
                allocated_weight=requested.weight,
                allocated_volume=requested.volume,
                remaining_quantity=0,
                remaining_packages=0,
                remaining_weight=Footprint.zero().weight,
                remaining_volume=Footprint.zero().volume,
                quality_status=QualityStatus.QUARANTINE.value,
                lifecycle_status=LifecycleStatus.ACTIVE.value,
                presentation=line.presentation,
                guide_number=guide_number or order.guide_number,
                observations=observations,
                allocated_by=actor.user_id,
            )
            self.db.add(allocation)

            await self.delta.apply_allocation_delta(
                allocation,
                requested,
                operation_id=operation_id,
                user_id=actor.user_id,
                movement_type=MovementType.RECEIPT,
                target=StockPosition(cell.id, QualityStatus.QUARANTINE.value),
                notes=f"Receipt from {order.order_no}",
            )

        logger.info(
            f"Allocated {requested.quantity} of line {line_id} to cell {cell.address} "
            f"(allocation {allocation.id}, operation {operation_id})"
        )
        return allocation
