"""
Cell Occupancy Ledger.

The only code path that writes a cell's current_* usage counters. Callers
hand in a signed footprint delta and must already be inside a transaction;
the cell row is re-read FOR UPDATE so concurrent writers serialize on it,
and its version column catches anything that slips past the lock.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings, settings as default_settings
from pharma_wms.core.exceptions import (
    CellNotFound,
    CellUnavailable,
    CellCapacityExceeded,
    CellUsageUnderflow,
)
from pharma_wms.core.footprint import Footprint
from pharma_wms.models.warehouse import WarehouseCell, CellStatus


logger = logging.getLogger(__name__)


class CellLedgerService:
    """Per-cell usage counters and AVAILABLE/OCCUPIED status."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings

    async def get_cell(self, cell_id: uuid.UUID) -> WarehouseCell:
        result = await self.db.execute(
            select(WarehouseCell).where(WarehouseCell.id == cell_id)
        )
        cell = result.scalar_one_or_none()
        if not cell:
            raise CellNotFound(f"Cell {cell_id} not found", details={"cell_id": str(cell_id)})
        return cell

    async def lock_cell(self, cell_id: uuid.UUID) -> WarehouseCell:
        """Re-read a cell inside the current transaction, locking the row."""
        result = await self.db.execute(
            select(WarehouseCell)
            .where(WarehouseCell.id == cell_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        cell = result.scalar_one_or_none()
        if not cell:
            raise CellNotFound(f"Cell {cell_id} not found", details={"cell_id": str(cell_id)})
        return cell

    def _check_capacity(self, cell: WarehouseCell, usage: Footprint) -> None:
        ceilings = (
            ("quantity", cell.max_quantity, usage.quantity),
            ("packages", cell.max_packages, usage.packages),
            ("weight", cell.max_weight, usage.weight),
            ("volume", cell.max_volume, usage.volume),
        )
        for name, ceiling, value in ceilings:
            if ceiling is not None and value > ceiling:
                raise CellCapacityExceeded(
                    f"Cell {cell.address} {name} capacity exceeded: {value} > {ceiling}",
                    details={
                        "cell_id": str(cell.id),
                        "dimension": name,
                        "capacity": str(ceiling),
                        "requested_usage": str(value),
                    },
                )

    async def apply_footprint(self, cell_id: uuid.UUID, delta: Footprint) -> WarehouseCell:
        """
        Add a signed footprint delta to a cell's usage.

        Raises:
            CellNotFound: unknown cell
            CellUnavailable: passage cell
            CellUsageUnderflow: usage would go below zero
            CellCapacityExceeded: ceiling crossed while CELL_CAPACITY_POLICY=ENFORCE
        """
        cell = await self.lock_cell(cell_id)

        if cell.is_passage:
            raise CellUnavailable(
                f"Cell {cell.address} is a passage and cannot hold stock",
                details={"cell_id": str(cell.id)},
            )

        usage = cell.usage + delta
        if usage.has_negative:
            raise CellUsageUnderflow(
                f"Cell {cell.address} usage would become negative",
                details={
                    "cell_id": str(cell.id),
                    "current": cell.usage.as_dict(),
                    "delta": delta.as_dict(),
                },
            )

        growing = (
            delta.quantity > 0 or delta.packages > 0 or delta.weight > 0 or delta.volume > 0
        )
        if growing and self.settings.enforce_cell_capacity:
            self._check_capacity(cell, usage)

        cell.current_quantity = usage.quantity
        cell.current_packages = usage.packages
        cell.current_weight = usage.weight
        cell.current_volume = usage.volume
        cell.status = (
            CellStatus.OCCUPIED.value if usage.quantity > 0 else CellStatus.AVAILABLE.value
        )

        await self.db.flush()
        logger.debug(f"Cell {cell.address} usage -> {usage.as_dict()}")
        return cell
