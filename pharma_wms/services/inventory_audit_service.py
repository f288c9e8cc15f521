"""Append-only inventory log: one row per quantity/state-affecting allocation change."""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.core.footprint import Footprint
from pharma_wms.core.scope import ScopeFilter
from pharma_wms.models.audit_log import InventoryLog
from pharma_wms.models.inventory import InventoryAllocation


class InventoryAuditService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_entry(
        self,
        operation_id: uuid.UUID,
        allocation_id: Optional[uuid.UUID] = None,
        movement_type: Optional[str] = None,
    ) -> Optional[InventoryLog]:
        query = select(InventoryLog).where(InventoryLog.operation_id == operation_id)
        if allocation_id:
            query = query.where(InventoryLog.allocation_id == allocation_id)
        if movement_type:
            query = query.where(InventoryLog.movement_type == movement_type)
        result = await self.db.execute(query.order_by(InventoryLog.created_at).limit(1))
        return result.scalar_one_or_none()

    async def record(
        self,
        operation_id: uuid.UUID,
        user_id: uuid.UUID,
        movement_type: str,
        allocation: InventoryAllocation,
        stock_change: Footprint,
        quantity_moved: int = 0,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        from_cell_id: Optional[uuid.UUID] = None,
        to_cell_id: Optional[uuid.UUID] = None,
        departure_order_id: Optional[uuid.UUID] = None,
        departure_allocation_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> InventoryLog:
        """Append one entry. Never updates or deletes existing rows."""
        entry = InventoryLog(
            operation_id=operation_id,
            user_id=user_id,
            movement_type=movement_type,
            product_id=allocation.product_id,
            allocation_id=allocation.id,
            warehouse_id=allocation.warehouse_id,
            cell_id=allocation.cell_id,
            quantity_change=stock_change.quantity,
            package_change=stock_change.packages,
            weight_change=stock_change.weight,
            volume_change=stock_change.volume,
            quantity_moved=quantity_moved,
            from_status=from_status,
            to_status=to_status,
            from_cell_id=from_cell_id,
            to_cell_id=to_cell_id,
            entry_order_line_id=allocation.entry_order_line_id,
            departure_order_id=departure_order_id,
            departure_allocation_id=departure_allocation_id,
            notes=notes,
        )
        self.db.add(entry)
        return entry

    async def history(
        self,
        scope: ScopeFilter,
        product_id: Optional[uuid.UUID] = None,
        cell_id: Optional[uuid.UUID] = None,
        allocation_id: Optional[uuid.UUID] = None,
        movement_type: Optional[str] = None,
        since: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[InventoryLog]:
        """
        Inventory log entries in the order they were written.

        Summing quantity_change over a product's entries gives its stock
        on hand; filtering by cell gives the cell's movement history.
        """
        query = select(InventoryLog)

        if product_id:
            query = query.where(InventoryLog.product_id == product_id)
        if cell_id:
            query = query.where(
                (InventoryLog.cell_id == cell_id)
                | (InventoryLog.from_cell_id == cell_id)
                | (InventoryLog.to_cell_id == cell_id)
            )
        if allocation_id:
            query = query.where(InventoryLog.allocation_id == allocation_id)
        if movement_type:
            query = query.where(InventoryLog.movement_type == movement_type)
        if since:
            query = query.where(InventoryLog.created_at >= since)
        if scope.is_restricted:
            owned = scope.apply(select(InventoryAllocation.id), InventoryAllocation.client_id)
            query = query.where(InventoryLog.allocation_id.in_(owned))

        query = query.order_by(InventoryLog.created_at, InventoryLog.id).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
