"""
Quality Control Service.

Moves all or part of an allocation between pharmaceutical quality states,
optionally relocating it to a cell reserved for the target status. A
partial move splits the allocation: the original keeps the rest and a new
allocation (parent_allocation_id = original) carries the moved footprint.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings, settings as default_settings
from pharma_wms.database import atomic
from pharma_wms.core.enum_utils import to_enum, get_enum_value
from pharma_wms.core.exceptions import (
    ValidationError,
    AllocationNotFound,
    InsufficientQuantity,
    InvalidTransition,
    CellUnavailable,
    ConcurrencyConflict,
)
from pharma_wms.core.footprint import Footprint, to_measure
from pharma_wms.core.scope import Actor, ScopeFilter, QUALITY_ROLES
from pharma_wms.models.audit_log import MovementType
from pharma_wms.models.departure import DepartureAllocation, DepartureAllocationStatus
from pharma_wms.models.inventory import (
    InventoryAllocation,
    QualityControlTransition,
    QualityStatus,
    LifecycleStatus,
)
from pharma_wms.services.allocation_service import ensure_cell_usable
from pharma_wms.services.inventory_delta_service import InventoryDeltaService, StockPosition
from pharma_wms.services.qc_state_machine import (
    validate_transition,
    cell_role_accepts,
    get_transition_action,
)


logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    updated_allocation: InventoryAllocation
    new_allocation: Optional[InventoryAllocation]
    transition_record: QualityControlTransition

    @property
    def was_split(self) -> bool:
        return self.new_allocation is not None


class QualityControlService:

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.delta = InventoryDeltaService(db, self.settings)

    async def _lock_allocation(self, allocation_id: uuid.UUID) -> InventoryAllocation:
        result = await self.db.execute(
            select(InventoryAllocation)
            .where(InventoryAllocation.id == allocation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        allocation = result.scalar_one_or_none()
        if not allocation:
            raise AllocationNotFound(
                f"Allocation {allocation_id} not found",
                details={"allocation_id": str(allocation_id)},
            )
        return allocation

    async def _reserved_quantity(self, allocation_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(DepartureAllocation.reserved_quantity), 0)).where(
                DepartureAllocation.source_allocation_id == allocation_id,
                DepartureAllocation.status == DepartureAllocationStatus.RESERVED.value,
            )
        )
        return int(result.scalar() or 0)

    @staticmethod
    def _moved_footprint(
        allocation: InventoryAllocation,
        quantity: int,
        packages: Optional[int],
        weight: Optional[Decimal],
        volume: Optional[Decimal],
    ) -> Footprint:
        remaining = allocation.remaining
        if quantity == remaining.quantity:
            return remaining
        moved = remaining.share(quantity).with_overrides(packages, weight, volume)
        if not moved.fits_within(remaining) or moved.has_negative:
            raise InsufficientQuantity(
                "Moved packages, weight or volume exceed what the allocation holds",
                details={"remaining": remaining.as_dict(), "requested": moved.as_dict()},
            )
        return moved

    async def transition(
        self,
        allocation_id: uuid.UUID,
        to_status,
        quantity: int,
        actor: Actor,
        scope: ScopeFilter,
        new_cell_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        packages: Optional[int] = None,
        weight: Optional[Decimal] = None,
        volume: Optional[Decimal] = None,
    ) -> TransitionResult:
        """
        Move ``quantity`` of an allocation to ``to_status``.

        quantity == remaining mutates the allocation in place; a smaller
        quantity splits it. Packages, weight and volume of the moved part are
        taken proportionally unless given.

        Raises:
            AllocationNotFound, InsufficientQuantity, InvalidTransition,
            CellUnavailable, ScopeDenied, ConcurrencyConflict (expected_version)
        """
        raw_status = get_enum_value(to_status)
        target_status = to_enum(raw_status.upper() if raw_status else None, QualityStatus)
        if target_status is None:
            raise ValidationError(
                f"Unknown quality status '{to_status}'",
                details={"to_status": to_status},
            )
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be positive", details={"quantity": quantity})
        if (packages is not None and packages < 0) or (
            weight is not None and to_measure(weight) < 0
        ) or (volume is not None and to_measure(volume) < 0):
            raise ValidationError("Packages, weight and volume cannot be negative")

        if actor.role not in QUALITY_ROLES:
            raise InvalidTransition(
                f"Role {actor.role.value} may not change quality status",
                details={"role": actor.role.value},
            )

        async with atomic(self.db):
            allocation = await self._lock_allocation(allocation_id)
            scope.ensure_client(allocation.client_id, "allocation")

            if expected_version is not None and allocation.version != expected_version:
                raise ConcurrencyConflict(
                    f"Allocation {allocation.id} changed since it was read",
                    details={
                        "allocation_id": str(allocation.id),
                        "expected_version": expected_version,
                        "actual_version": allocation.version,
                    },
                )
            if allocation.lifecycle_status != LifecycleStatus.ACTIVE.value:
                raise InvalidTransition(
                    f"Allocation {allocation.id} is {allocation.lifecycle_status}",
                    details={"allocation_id": str(allocation.id)},
                )

            from_status = allocation.quality_status
            validate_transition(
                from_status,
                target_status.value,
                allow_recall=self.settings.QC_ALLOW_RECALL_FROM_APPROVED,
            )

            available = allocation.remaining_quantity
            if from_status == QualityStatus.APPROVED.value:
                # Reserved stock is promised to a departure
                available -= await self._reserved_quantity(allocation.id)
            if quantity > available:
                raise InsufficientQuantity(
                    f"Requested {quantity} but only {available} available in allocation",
                    details={
                        "allocation_id": str(allocation.id),
                        "requested": quantity,
                        "available": available,
                        "remaining": allocation.remaining_quantity,
                    },
                )

            moved = self._moved_footprint(allocation, quantity, packages, weight, volume)

            source_cell_id = allocation.cell_id
            target_cell_id = source_cell_id
            if new_cell_id is not None and new_cell_id != source_cell_id:
                cell = await self.delta.ledger.lock_cell(new_cell_id)
                ensure_cell_usable(cell, allocation.warehouse_id)
                if not cell_role_accepts(cell.cell_role, target_status.value):
                    raise CellUnavailable(
                        f"Cell {cell.address} ({cell.cell_role}) cannot hold {target_status.value} stock",
                        details={
                            "cell_id": str(cell.id),
                            "cell_role": cell.cell_role,
                            "to_status": target_status.value,
                        },
                    )
                target_cell_id = cell.id

            operation_id = uuid.uuid4()
            source = StockPosition(source_cell_id, from_status)
            target = StockPosition(target_cell_id, target_status.value)
            new_allocation = None

            if quantity == allocation.remaining_quantity:
                allocation.quality_status = target_status.value
                allocation.cell_id = target_cell_id
                await self.delta.apply_allocation_delta(
                    allocation,
                    moved,
                    operation_id=operation_id,
                    user_id=actor.user_id,
                    movement_type=MovementType.QUALITY_TRANSITION,
                    source=source,
                    target=target,
                    notes=reason,
                )
            else:
                remaining_share = allocation.allocated - moved
                allocation.allocated_quantity = remaining_share.quantity
                allocation.allocated_packages = remaining_share.packages
                allocation.allocated_weight = remaining_share.weight
                allocation.allocated_volume = remaining_share.volume

                new_allocation = InventoryAllocation(
                    id=uuid.uuid4(),
                    entry_order_id=allocation.entry_order_id,
                    entry_order_line_id=allocation.entry_order_line_id,
                    parent_allocation_id=allocation.id,
                    client_id=allocation.client_id,
                    product_id=allocation.product_id,
                    lot_number=allocation.lot_number,
                    expiration_date=allocation.expiration_date,
                    received_at=allocation.received_at,
                    warehouse_id=allocation.warehouse_id,
                    cell_id=target_cell_id,
                    allocated_quantity=moved.quantity,
                    allocated_packages=moved.packages,
                    allocated_weight=moved.weight,
                    allocated_volume=moved.volume,
                    remaining_quantity=0,
                    remaining_packages=0,
                    remaining_weight=Footprint.zero().weight,
                    remaining_volume=Footprint.zero().volume,
                    quality_status=target_status.value,
                    lifecycle_status=LifecycleStatus.ACTIVE.value,
                    presentation=allocation.presentation,
                    guide_number=allocation.guide_number,
                    observations=reason,
                    allocated_by=actor.user_id,
                )
                self.db.add(new_allocation)

                await self.delta.apply_allocation_delta(
                    allocation,
                    moved,
                    operation_id=operation_id,
                    user_id=actor.user_id,
                    movement_type=MovementType.QUALITY_TRANSITION,
                    source=source,
                    logged_to=target,
                    notes=reason,
                )
                await self.delta.apply_allocation_delta(
                    new_allocation,
                    moved,
                    operation_id=operation_id,
                    user_id=actor.user_id,
                    movement_type=MovementType.QUALITY_TRANSITION,
                    target=target,
                    logged_from=source,
                    notes=reason,
                )

            record = QualityControlTransition(
                allocation_id=allocation.id,
                new_allocation_id=new_allocation.id if new_allocation else None,
                product_id=allocation.product_id,
                from_status=from_status,
                to_status=target_status.value,
                quantity_moved=moved.quantity,
                packages_moved=moved.packages,
                weight_moved=moved.weight,
                volume_moved=moved.volume,
                from_cell_id=source_cell_id,
                to_cell_id=target_cell_id,
                reason=reason,
                performed_by=actor.user_id,
            )
            self.db.add(record)

        logger.info(
            f"{get_transition_action(from_status, target_status.value)}: {moved.quantity} of allocation "
            f"{allocation.id} {from_status} -> {target_status.value}"
            + (f" (split into {new_allocation.id})" if new_allocation else "")
        )
        return TransitionResult(
            updated_allocation=allocation,
            new_allocation=new_allocation,
            transition_record=record,
        )

    async def list_transitions(
        self,
        scope: ScopeFilter,
        allocation_id: Optional[uuid.UUID] = None,
        product_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[QualityControlTransition]:
        """Transition history, newest first."""
        query = select(QualityControlTransition)
        if allocation_id:
            query = query.where(
                (QualityControlTransition.allocation_id == allocation_id)
                | (QualityControlTransition.new_allocation_id == allocation_id)
            )
        if product_id:
            query = query.where(QualityControlTransition.product_id == product_id)
        if scope.is_restricted:
            owned = scope.apply(select(InventoryAllocation.id), InventoryAllocation.client_id)
            query = query.where(QualityControlTransition.allocation_id.in_(owned))

        query = query.order_by(QualityControlTransition.performed_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
