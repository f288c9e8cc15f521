"""
FIFO Selector.

Read-only planner: which APPROVED allocations should satisfy an outbound
request, earliest expiry first. Takes no locks; reservation re-validates
every pick inside its own transaction.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Iterable

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.core.exceptions import ValidationError, InsufficientApprovedInventory
from pharma_wms.core.scope import ScopeFilter
from pharma_wms.models.departure import DepartureAllocation, DepartureAllocationStatus
from pharma_wms.models.inventory import InventoryAllocation, QualityStatus, LifecycleStatus
from pharma_wms.models.warehouse import ClientCellAssignment


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FifoPick:
    """One allocation and the quantity to take from it."""
    allocation_id: uuid.UUID
    quantity: int
    cell_id: Optional[uuid.UUID] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None
    received_at: Optional[datetime] = None
    available: int = 0


@dataclass
class FifoPlan:
    product_id: uuid.UUID
    requested_quantity: int
    picks: List[FifoPick] = field(default_factory=list)
    shortfall: int = 0

    @property
    def planned_quantity(self) -> int:
        return sum(pick.quantity for pick in self.picks)

    @property
    def is_sufficient(self) -> bool:
        return self.shortfall == 0

    def require_sufficient(self) -> "FifoPlan":
        if self.shortfall > 0:
            raise InsufficientApprovedInventory(
                f"insufficient approved inventory: shortfall={self.shortfall}",
                details={
                    "product_id": str(self.product_id),
                    "requested": self.requested_quantity,
                    "planned": self.planned_quantity,
                    "shortfall": self.shortfall,
                },
            )
        return self


def _as_naive_utc(value: datetime) -> datetime:
    # SQLite hands back naive UTC values, PostgreSQL aware ones
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def fifo_sort_key(allocation: InventoryAllocation):
    """Expiry ascending with undated stock last, then receipt time, then id."""
    return (
        allocation.expiration_date is None,
        allocation.expiration_date or date.max,
        _as_naive_utc(allocation.received_at),
        allocation.id,
    )


async def reserved_by_allocation(
    db: AsyncSession,
    allocation_ids: Iterable[uuid.UUID],
) -> Dict[uuid.UUID, int]:
    """Quantity held by open (RESERVED) departure allocations, per source allocation."""
    ids = list(allocation_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(
            DepartureAllocation.source_allocation_id,
            func.sum(DepartureAllocation.reserved_quantity),
        )
        .where(
            DepartureAllocation.source_allocation_id.in_(ids),
            DepartureAllocation.status == DepartureAllocationStatus.RESERVED.value,
        )
        .group_by(DepartureAllocation.source_allocation_id)
    )
    return {allocation_id: int(total or 0) for allocation_id, total in result.all()}


class FifoSelector:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _candidates(
        self,
        product_id: uuid.UUID,
        scope: ScopeFilter,
        client_id: Optional[uuid.UUID],
        expiring_before: Optional[date],
    ) -> List[InventoryAllocation]:
        query = select(InventoryAllocation).where(
            InventoryAllocation.product_id == product_id,
            InventoryAllocation.quality_status == QualityStatus.APPROVED.value,
            InventoryAllocation.lifecycle_status == LifecycleStatus.ACTIVE.value,
            InventoryAllocation.remaining_quantity > 0,
        )
        if client_id is not None:
            query = query.where(InventoryAllocation.client_id == client_id)
        if expiring_before is not None:
            query = query.where(InventoryAllocation.expiration_date < expiring_before)

        query = scope.apply(query, InventoryAllocation.client_id)
        if scope.is_restricted:
            assigned_cells = select(ClientCellAssignment.cell_id).where(
                ClientCellAssignment.is_active == True,
                ClientCellAssignment.client_id.in_(scope.allowed_client_ids),
            )
            query = query.where(InventoryAllocation.cell_id.in_(assigned_cells))

        result = await self.db.execute(query)
        return sorted(result.scalars().all(), key=fifo_sort_key)

    async def suggest_allocation(
        self,
        product_id: uuid.UUID,
        requested_quantity: int,
        scope: ScopeFilter,
        client_id: Optional[uuid.UUID] = None,
        expiring_before: Optional[date] = None,
    ) -> FifoPlan:
        """
        Greedy FIFO plan for ``requested_quantity`` of a product.

        Available stock per allocation is remaining minus open reservations.
        An unsatisfiable request returns the partial plan with
        ``shortfall`` set; call ``require_sufficient()`` to turn that into
        InsufficientApprovedInventory.
        """
        if requested_quantity is None or requested_quantity <= 0:
            raise ValidationError(
                "Requested quantity must be positive",
                details={"requested_quantity": requested_quantity},
            )

        candidates = await self._candidates(product_id, scope, client_id, expiring_before)
        reserved = await reserved_by_allocation(self.db, (a.id for a in candidates))

        plan = FifoPlan(product_id=product_id, requested_quantity=requested_quantity)
        still_needed = requested_quantity
        for allocation in candidates:
            if still_needed == 0:
                break
            available = allocation.remaining_quantity - reserved.get(allocation.id, 0)
            if available <= 0:
                continue
            take = min(available, still_needed)
            plan.picks.append(
                FifoPick(
                    allocation_id=allocation.id,
                    quantity=take,
                    cell_id=allocation.cell_id,
                    lot_number=allocation.lot_number,
                    expiration_date=allocation.expiration_date,
                    received_at=allocation.received_at,
                    available=available,
                )
            )
            still_needed -= take

        plan.shortfall = still_needed
        logger.debug(
            f"FIFO plan for product {product_id}: {plan.planned_quantity}/{requested_quantity} "
            f"from {len(plan.picks)} allocations"
        )
        return plan
