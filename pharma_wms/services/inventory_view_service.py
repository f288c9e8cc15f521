"""Read-only inventory views."""
import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.core.exceptions import CellNotFound, ScopeDenied
from pharma_wms.core.scope import ScopeFilter
from pharma_wms.models.inventory import (
    InventoryAllocation,
    InventoryRecord,
    LifecycleStatus,
    QualityStatus,
)
from pharma_wms.models.warehouse import WarehouseCell
from pharma_wms.services.allocation_service import cell_assigned_to_scope


logger = logging.getLogger(__name__)


class InventoryViewService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def allocations_by_quality(
        self,
        scope: ScopeFilter,
        product_id: Optional[uuid.UUID] = None,
        cell_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, List[InventoryAllocation]]:
        """
        ACTIVE allocations grouped by quality status.

        Every status key is present, empty lists included, so callers can
        render a fixed set of columns.
        """
        query = select(InventoryAllocation).where(
            InventoryAllocation.lifecycle_status == LifecycleStatus.ACTIVE.value,
        )
        if product_id:
            query = query.where(InventoryAllocation.product_id == product_id)
        if cell_id:
            query = query.where(InventoryAllocation.cell_id == cell_id)
        query = scope.apply(query, InventoryAllocation.client_id)
        query = query.order_by(
            InventoryAllocation.expiration_date,
            InventoryAllocation.received_at,
            InventoryAllocation.id,
        )

        result = await self.db.execute(query)
        groups: Dict[str, List[InventoryAllocation]] = {s.value: [] for s in QualityStatus}
        for allocation in result.scalars().all():
            groups.setdefault(allocation.quality_status, []).append(allocation)
        return groups

    async def inventory_by_cell(self, cell_id: uuid.UUID, scope: ScopeFilter) -> List[InventoryRecord]:
        """Non-empty inventory records held in a cell."""
        cell = await self.db.get(WarehouseCell, cell_id)
        if not cell:
            raise CellNotFound(f"Cell {cell_id} not found", details={"cell_id": str(cell_id)})
        if scope.is_restricted and not await cell_assigned_to_scope(self.db, cell_id, scope):
            raise ScopeDenied(
                f"Cell {cell.address} is not assigned to the actor's clients",
                details={"cell_id": str(cell_id)},
            )

        result = await self.db.execute(
            select(InventoryRecord)
            .where(
                InventoryRecord.cell_id == cell_id,
                InventoryRecord.current_quantity > 0,
            )
            .order_by(InventoryRecord.product_id, InventoryRecord.quality_status)
        )
        return list(result.scalars().all())
