"""
Allocation delta primitive.

Receipt, quality transition and dispatch all change stock the same way:
some footprint leaves one (cell, quality status) position and/or arrives at
another. ``apply_allocation_delta`` performs every dependent write for one
allocation in that change:

    allocation remaining_* counters and lifecycle
    InventoryRecord quantities at the source and target positions
    cell usage through the cell ledger
    one InventoryLog entry

It never commits; callers wrap it in ``database.atomic``.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings
from pharma_wms.core.exceptions import InsufficientQuantity
from pharma_wms.core.footprint import Footprint
from pharma_wms.models.audit_log import InventoryLog, MovementType
from pharma_wms.models.inventory import (
    InventoryAllocation,
    InventoryRecord,
    InventoryStatus,
    LifecycleStatus,
    QUALITY_TO_INVENTORY_STATUS,
)
from pharma_wms.services.cell_ledger_service import CellLedgerService
from pharma_wms.services.inventory_audit_service import InventoryAuditService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockPosition:
    """Where stock sits: a cell and the quality status it is held under."""
    cell_id: uuid.UUID
    quality_status: str


class InventoryDeltaService:

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.ledger = CellLedgerService(db, settings)
        self.audit = InventoryAuditService(db)

    async def _lock_record(
        self,
        product_id: uuid.UUID,
        position: StockPosition,
    ) -> Optional[InventoryRecord]:
        result = await self.db.execute(
            select(InventoryRecord)
            .where(
                InventoryRecord.product_id == product_id,
                InventoryRecord.cell_id == position.cell_id,
                InventoryRecord.quality_status == position.quality_status,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _move_record(
        self,
        allocation: InventoryAllocation,
        position: StockPosition,
        delta: Footprint,
        user_id: uuid.UUID,
    ) -> InventoryRecord:
        record = await self._lock_record(allocation.product_id, position)
        if record is None:
            record = InventoryRecord(
                id=uuid.uuid4(),
                product_id=allocation.product_id,
                warehouse_id=allocation.warehouse_id,
                cell_id=position.cell_id,
                quality_status=position.quality_status,
                current_quantity=0,
                current_packages=0,
                current_weight=Footprint.zero().weight,
                current_volume=Footprint.zero().volume,
            )
            self.db.add(record)

        current = Footprint(
            record.current_quantity or 0,
            record.current_packages or 0,
            record.current_weight or 0,
            record.current_volume or 0,
        )
        updated = current + delta
        if updated.has_negative:
            raise InsufficientQuantity(
                f"Inventory record for product {allocation.product_id} would become negative",
                details={
                    "cell_id": str(position.cell_id),
                    "quality_status": position.quality_status,
                    "current_quantity": current.quantity,
                    "delta_quantity": delta.quantity,
                },
            )

        record.current_quantity = updated.quantity
        record.current_packages = updated.packages
        record.current_weight = updated.weight
        record.current_volume = updated.volume
        record.last_modified_by = user_id
        if updated.quantity == 0:
            record.status = InventoryStatus.DEPLETED.value
        else:
            record.status = QUALITY_TO_INVENTORY_STATUS[position.quality_status]
        return record

    async def apply_allocation_delta(
        self,
        allocation: InventoryAllocation,
        footprint: Footprint,
        operation_id: uuid.UUID,
        user_id: uuid.UUID,
        movement_type: MovementType,
        source: Optional[StockPosition] = None,
        target: Optional[StockPosition] = None,
        logged_from: Optional[StockPosition] = None,
        logged_to: Optional[StockPosition] = None,
        departure_order_id: Optional[uuid.UUID] = None,
        departure_allocation_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> InventoryLog:
        """
        Move ``footprint`` of ``allocation`` out of ``source`` and into ``target``.

        source=None is a receipt into the allocation, target=None removes the
        footprint from it (dispatch, or the parent side of a split). The
        allocation's quality_status and cell_id must already hold their new
        values. Re-applying the same (operation_id, allocation) returns the
        existing log entry and writes nothing.
        """
        existing = await self.audit.find_entry(operation_id, allocation.id)
        if existing is not None:
            logger.info(
                f"Delta {operation_id} already applied to allocation {allocation.id}; skipping"
            )
            return existing

        remaining = allocation.remaining
        if target is not None:
            remaining = remaining + footprint
        if source is not None:
            remaining = remaining - footprint
        if remaining.has_negative:
            raise InsufficientQuantity(
                f"Allocation {allocation.id} has only {allocation.remaining_quantity} remaining",
                details={
                    "allocation_id": str(allocation.id),
                    "remaining": allocation.remaining.as_dict(),
                    "requested": footprint.as_dict(),
                },
            )

        allocation.remaining_quantity = remaining.quantity
        allocation.remaining_packages = remaining.packages
        allocation.remaining_weight = remaining.weight
        allocation.remaining_volume = remaining.volume
        allocation.last_modified_by = user_id
        if source is not None and remaining.quantity == 0:
            allocation.lifecycle_status = LifecycleStatus.DEPLETED.value

        if source is not None:
            await self._move_record(allocation, source, -footprint, user_id)
        if target is not None:
            await self._move_record(allocation, target, footprint, user_id)
        await self.db.flush()

        # Net cell usage; a status change in the same cell leaves usage alone
        cell_deltas = {}
        if source is not None:
            cell_deltas[source.cell_id] = cell_deltas.get(source.cell_id, Footprint.zero()) - footprint
        if target is not None:
            cell_deltas[target.cell_id] = cell_deltas.get(target.cell_id, Footprint.zero()) + footprint
        # Decrements first so a relocation never trips capacity on stale usage
        for cell_id, delta in sorted(cell_deltas.items(), key=lambda item: item[1].quantity):
            if not delta.is_zero:
                await self.ledger.apply_footprint(cell_id, delta)

        if movement_type == MovementType.RECEIPT:
            stock_change = footprint
        elif movement_type == MovementType.DEPARTURE:
            stock_change = -footprint
        else:
            stock_change = Footprint.zero()

        moved_from = logged_from or source
        moved_to = logged_to or target
        entry = await self.audit.record(
            operation_id=operation_id,
            user_id=user_id,
            movement_type=movement_type.value,
            allocation=allocation,
            stock_change=stock_change,
            quantity_moved=footprint.quantity,
            from_status=moved_from.quality_status if moved_from else None,
            to_status=moved_to.quality_status if moved_to else None,
            from_cell_id=moved_from.cell_id if moved_from else None,
            to_cell_id=moved_to.cell_id if moved_to else None,
            departure_order_id=departure_order_id,
            departure_allocation_id=departure_allocation_id,
            notes=notes,
        )
        await self.db.flush()
        return entry
