"""
On-demand consistency checks over the stock tables.

Each check compares a stored counter with the sum it must equal and reports
every mismatch; nothing is repaired automatically.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.core.footprint import Footprint
from pharma_wms.models.entry_order import EntryOrderLine
from pharma_wms.models.inventory import InventoryAllocation, InventoryRecord, LifecycleStatus
from pharma_wms.models.warehouse import WarehouseCell


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntegrityIssue:
    kind: str
    entity_id: uuid.UUID
    expected: Dict[str, str] = field(default_factory=dict)
    actual: Dict[str, str] = field(default_factory=dict)


def _as_strings(values: dict) -> Dict[str, str]:
    return {k: str(v) for k, v in values.items()}


class InventoryIntegrityService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_line_conservation(self, warehouse_id: Optional[uuid.UUID] = None) -> List[IntegrityIssue]:
        """Allocated quantities of a line, split branches included, never exceed the line."""
        query = (
            select(
                InventoryAllocation.entry_order_line_id,
                func.sum(InventoryAllocation.allocated_quantity),
                func.sum(InventoryAllocation.allocated_packages),
            )
            .group_by(InventoryAllocation.entry_order_line_id)
        )
        if warehouse_id:
            query = query.where(InventoryAllocation.warehouse_id == warehouse_id)
        result = await self.db.execute(query)
        totals = {row[0]: (int(row[1] or 0), int(row[2] or 0)) for row in result.all()}
        if not totals:
            return []

        lines = await self.db.execute(
            select(EntryOrderLine).where(EntryOrderLine.id.in_(list(totals.keys())))
        )
        issues = []
        for line in lines.scalars().all():
            quantity, packages = totals[line.id]
            if quantity > line.quantity or packages > line.packages:
                issues.append(IntegrityIssue(
                    kind="LINE_OVER_ALLOCATED",
                    entity_id=line.id,
                    expected=_as_strings({"quantity": line.quantity, "packages": line.packages}),
                    actual=_as_strings({"quantity": quantity, "packages": packages}),
                ))
        return issues

    async def check_cell_usage(self, warehouse_id: Optional[uuid.UUID] = None) -> List[IntegrityIssue]:
        """Cell usage counters equal the remaining footprint of the ACTIVE allocations they hold."""
        query = (
            select(
                InventoryAllocation.cell_id,
                func.sum(InventoryAllocation.remaining_quantity),
                func.sum(InventoryAllocation.remaining_packages),
                func.sum(InventoryAllocation.remaining_weight),
                func.sum(InventoryAllocation.remaining_volume),
            )
            .where(InventoryAllocation.lifecycle_status == LifecycleStatus.ACTIVE.value)
            .group_by(InventoryAllocation.cell_id)
        )
        if warehouse_id:
            query = query.where(InventoryAllocation.warehouse_id == warehouse_id)
        result = await self.db.execute(query)
        expected_by_cell = {
            row[0]: Footprint(int(row[1] or 0), int(row[2] or 0), row[3] or 0, row[4] or 0)
            for row in result.all()
        }

        cells_query = select(WarehouseCell)
        if warehouse_id:
            cells_query = cells_query.where(WarehouseCell.warehouse_id == warehouse_id)
        cells = await self.db.execute(cells_query)

        issues = []
        for cell in cells.scalars().all():
            expected = expected_by_cell.get(cell.id, Footprint.zero())
            if cell.usage != expected:
                issues.append(IntegrityIssue(
                    kind="CELL_USAGE_MISMATCH",
                    entity_id=cell.id,
                    expected=expected.as_dict(),
                    actual=cell.usage.as_dict(),
                ))
        return issues

    async def check_inventory_records(self, warehouse_id: Optional[uuid.UUID] = None) -> List[IntegrityIssue]:
        """Inventory records equal the ACTIVE allocations at their (product, cell, status) position."""
        query = select(InventoryAllocation).where(
            InventoryAllocation.lifecycle_status == LifecycleStatus.ACTIVE.value,
        )
        if warehouse_id:
            query = query.where(InventoryAllocation.warehouse_id == warehouse_id)
        result = await self.db.execute(query)
        expected: Dict[Tuple[uuid.UUID, uuid.UUID, str], Footprint] = defaultdict(Footprint.zero)
        for allocation in result.scalars().all():
            key = (allocation.product_id, allocation.cell_id, allocation.quality_status)
            expected[key] = expected[key] + allocation.remaining

        records_query = select(InventoryRecord)
        if warehouse_id:
            records_query = records_query.where(InventoryRecord.warehouse_id == warehouse_id)
        records = await self.db.execute(records_query)

        issues = []
        seen = set()
        for record in records.scalars().all():
            key = (record.product_id, record.cell_id, record.quality_status)
            seen.add(key)
            actual = Footprint(
                record.current_quantity,
                record.current_packages,
                record.current_weight,
                record.current_volume,
            )
            wanted = expected.get(key, Footprint.zero())
            if actual != wanted:
                issues.append(IntegrityIssue(
                    kind="INVENTORY_RECORD_MISMATCH",
                    entity_id=record.id,
                    expected=wanted.as_dict(),
                    actual=actual.as_dict(),
                ))
        for key, wanted in expected.items():
            if key not in seen and not wanted.is_zero:
                # Stock with no record at all; report against the cell
                issues.append(IntegrityIssue(
                    kind="INVENTORY_RECORD_MISSING",
                    entity_id=key[1],
                    expected=wanted.as_dict(),
                    actual=Footprint.zero().as_dict(),
                ))
        return issues

    async def verify(self, warehouse_id: Optional[uuid.UUID] = None) -> List[IntegrityIssue]:
        issues = []
        issues.extend(await self.check_line_conservation(warehouse_id))
        issues.extend(await self.check_cell_usage(warehouse_id))
        issues.extend(await self.check_inventory_records(warehouse_id))
        if issues:
            logger.warning(f"Integrity check found {len(issues)} issues")
        return issues
