"""
Departure Reservation & Dispatch.

Reservation freezes quantities of specific APPROVED allocations for a
departure line without touching stock; dispatch turns every open
reservation of an order into a physical removal.

Flow:
1. FifoSelector.suggest_allocation()  advisory plan, no locks
2. reserve_for_departure()            re-validates the plan under row locks
3. dispatch()                         decrements allocations, records and cells
   release_reservations()             cancels open reservations of a line
"""
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Optional, List, Iterable, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings, settings as default_settings
from pharma_wms.database import atomic
from pharma_wms.core.enum_utils import status_in
from pharma_wms.core.exceptions import (
    ValidationError,
    AllocationNotFound,
    DepartureOrderNotFound,
    DepartureOrderLineNotFound,
    InvalidOrderState,
    PlanMismatch,
    AlreadyDispatched,
    InsufficientApprovedInventory,
    ConcurrencyConflict,
    AllocationMutatedSinceReservation,
    PermissionDenied,
    ScopeDenied,
)
from pharma_wms.core.footprint import Footprint
from pharma_wms.core.scope import Actor, ActorRole, ScopeFilter
from pharma_wms.models.audit_log import MovementType
from pharma_wms.models.departure import (
    DepartureOrder,
    DepartureOrderLine,
    DepartureAllocation,
    DepartureStatus,
    DepartureAllocationStatus,
)
from pharma_wms.models.inventory import InventoryAllocation, QualityStatus, LifecycleStatus
from pharma_wms.services.allocation_service import cell_assigned_to_scope
from pharma_wms.services.audit_service import AuditService
from pharma_wms.services.fifo_service import FifoPlan, FifoPick, FifoSelector
from pharma_wms.services.inventory_delta_service import InventoryDeltaService, StockPosition


logger = logging.getLogger(__name__)


RESERVABLE_ORDER_STATUSES = (DepartureStatus.APPROVED, DepartureStatus.PARTIALLY_DISPATCHED)


class DepartureService:

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.delta = InventoryDeltaService(db, self.settings)
        self.fifo = FifoSelector(db)
        self.audit = AuditService(db)

    # ==================== LOOKUPS ====================

    async def _lock_order(self, order_id: uuid.UUID) -> DepartureOrder:
        result = await self.db.execute(
            select(DepartureOrder)
            .where(DepartureOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise DepartureOrderNotFound(
                f"Departure order {order_id} not found",
                details={"departure_order_id": str(order_id)},
            )
        return order

    async def _read_line(self, line_id: uuid.UUID, lock: bool = False) -> DepartureOrderLine:
        query = select(DepartureOrderLine).where(DepartureOrderLine.id == line_id)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        line = result.scalar_one_or_none()
        if not line:
            raise DepartureOrderLineNotFound(
                f"Departure order line {line_id} not found",
                details={"line_id": str(line_id)},
            )
        return line

    async def _lock_order_then_line(self, line_id: uuid.UUID):
        """Lock a line and its order, order row first as dispatch does."""
        line = await self._read_line(line_id)
        order = await self._lock_order(line.departure_order_id)
        line = await self._read_line(line_id, lock=True)
        return order, line

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

    async def _open_reserved_footprint(self, allocation_id: uuid.UUID) -> Footprint:
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(DepartureAllocation.reserved_quantity), 0),
                func.coalesce(func.sum(DepartureAllocation.reserved_packages), 0),
                func.coalesce(func.sum(DepartureAllocation.reserved_weight), 0),
                func.coalesce(func.sum(DepartureAllocation.reserved_volume), 0),
            ).where(
                DepartureAllocation.source_allocation_id == allocation_id,
                DepartureAllocation.status == DepartureAllocationStatus.RESERVED.value,
            )
        )
        quantity, packages, weight, volume = result.one()
        return Footprint(int(quantity), int(packages), weight, volume)

    async def _open_reserved_for_line(self, line_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(DepartureAllocation.reserved_quantity), 0)).where(
                DepartureAllocation.departure_order_line_id == line_id,
                DepartureAllocation.status == DepartureAllocationStatus.RESERVED.value,
            )
        )
        return int(result.scalar() or 0)

    async def get_line(self, line_id: uuid.UUID, scope: ScopeFilter) -> DepartureOrderLine:
        line = await self.db.get(DepartureOrderLine, line_id)
        if not line:
            raise DepartureOrderLineNotFound(
                f"Departure order line {line_id} not found",
                details={"line_id": str(line_id)},
            )
        order = await self.db.get(DepartureOrder, line.departure_order_id)
        scope.ensure_client(order.client_id, "departure order")
        return line

    async def outstanding_quantity(self, line: DepartureOrderLine) -> int:
        """Requested minus dispatched minus already reserved."""
        reserved = await self._open_reserved_for_line(line.id)
        return line.requested_quantity - line.dispatched_quantity - reserved

    async def list_reservations(
        self,
        scope: ScopeFilter,
        departure_order_id: Optional[uuid.UUID] = None,
        line_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
    ) -> List[DepartureAllocation]:
        query = select(DepartureAllocation)
        if departure_order_id:
            query = query.where(DepartureAllocation.departure_order_id == departure_order_id)
        if line_id:
            query = query.where(DepartureAllocation.departure_order_line_id == line_id)
        if status:
            query = query.where(DepartureAllocation.status == status)
        if scope.is_restricted:
            owned = scope.apply(select(DepartureOrder.id), DepartureOrder.client_id)
            query = query.where(DepartureAllocation.departure_order_id.in_(owned))
        result = await self.db.execute(query.order_by(DepartureAllocation.reserved_at))
        return list(result.scalars().all())

    # ==================== RESERVATION ====================

    @staticmethod
    def _aggregate_plan(plan: Union[FifoPlan, Iterable[FifoPick]]) -> "OrderedDict[uuid.UUID, int]":
        picks = plan.picks if isinstance(plan, FifoPlan) else list(plan)
        merged: "OrderedDict[uuid.UUID, int]" = OrderedDict()
        for pick in picks:
            if pick.quantity is None or pick.quantity <= 0:
                raise ValidationError(
                    "Planned quantities must be positive",
                    details={"allocation_id": str(pick.allocation_id), "quantity": pick.quantity},
                )
            merged[pick.allocation_id] = merged.get(pick.allocation_id, 0) + pick.quantity
        if not merged:
            raise ValidationError("Reservation plan is empty")
        return merged

    async def reserve_for_departure(
        self,
        departure_line_id: uuid.UUID,
        plan: Union[FifoPlan, Iterable[FifoPick]],
        actor: Actor,
        scope: ScopeFilter,
    ) -> List[DepartureAllocation]:
        """
        Reserve a plan against live allocations for one departure line.

        Each planned allocation is locked and re-read; it must still be
        APPROVED and ACTIVE with enough unreserved stock. The plan must cover
        the line's outstanding quantity exactly. Allocation, cell and
        inventory-record quantities are not touched.

        Raises:
            InvalidOrderState: order not APPROVED / PARTIALLY_DISPATCHED
            PlanMismatch: plan total differs from outstanding, or wrong product/client
            ConcurrencyConflict: a planned allocation no longer has the stock
        """
        planned = self._aggregate_plan(plan)

        async with atomic(self.db):
            order, line = await self._lock_order_then_line(departure_line_id)
            scope.ensure_client(order.client_id, "departure order")

            if not status_in(order.order_status, *RESERVABLE_ORDER_STATUSES):
                raise InvalidOrderState(
                    f"Departure order {order.order_no} is {order.order_status}; "
                    f"reservations need APPROVED or PARTIALLY_DISPATCHED",
                    details={"departure_order_id": str(order.id), "order_status": order.order_status},
                )

            outstanding = await self.outstanding_quantity(line)
            total = sum(planned.values())
            if total != outstanding:
                raise PlanMismatch(
                    f"Plan covers {total} but line outstanding is {outstanding}",
                    details={"line_id": str(line.id), "planned": total, "outstanding": outstanding},
                )

            reservations = []
            # Lock in id order so concurrent reservations cannot deadlock
            for allocation_id in sorted(planned):
                quantity = planned[allocation_id]
                allocation = await self._lock_allocation(allocation_id)

                if allocation.product_id != line.product_id or allocation.client_id != order.client_id:
                    raise PlanMismatch(
                        f"Allocation {allocation.id} does not hold this client's product",
                        details={
                            "allocation_id": str(allocation.id),
                            "product_id": str(line.product_id),
                        },
                    )
                if not await cell_assigned_to_scope(self.db, allocation.cell_id, scope, order.client_id):
                    raise ScopeDenied(
                        f"Allocation {allocation.id} sits in a cell not assigned to the order's client",
                        details={"allocation_id": str(allocation.id), "cell_id": str(allocation.cell_id)},
                    )

                reserved = await self._open_reserved_footprint(allocation.id)
                free = allocation.remaining - reserved
                usable = (
                    allocation.quality_status == QualityStatus.APPROVED.value
                    and allocation.lifecycle_status == LifecycleStatus.ACTIVE.value
                )
                available = free.quantity if usable else 0
                if available < quantity:
                    raise ConcurrencyConflict(
                        f"Allocation {allocation.id} has {available} available, plan needs {quantity}",
                        details={
                            "allocation_id": str(allocation.id),
                            "available": max(available, 0),
                            "planned": quantity,
                            "quality_status": allocation.quality_status,
                            "lifecycle_status": allocation.lifecycle_status,
                        },
                    )

                share = free.share(quantity)
                reservation = DepartureAllocation(
                    departure_order_id=order.id,
                    departure_order_line_id=line.id,
                    source_allocation_id=allocation.id,
                    cell_id=allocation.cell_id,
                    reserved_quantity=share.quantity,
                    reserved_packages=share.packages,
                    reserved_weight=share.weight,
                    reserved_volume=share.volume,
                    status=DepartureAllocationStatus.RESERVED.value,
                    reserved_by=actor.user_id,
                )
                self.db.add(reservation)
                # Visible to the next iteration's reserved-footprint query
                await self.db.flush()
                reservations.append(reservation)

        logger.info(
            f"Reserved {total} for departure line {departure_line_id} "
            f"across {len(reservations)} allocations"
        )
        return reservations

    async def reserve_fifo(
        self,
        departure_line_id: uuid.UUID,
        actor: Actor,
        scope: ScopeFilter,
    ) -> List[DepartureAllocation]:
        """Plan the line's outstanding quantity FIFO and reserve it."""
        line = await self.get_line(departure_line_id, scope)
        order = await self.db.get(DepartureOrder, line.departure_order_id)
        if not status_in(order.order_status, *RESERVABLE_ORDER_STATUSES):
            raise InvalidOrderState(
                f"Departure order {order.order_no} is {order.order_status}",
                details={"departure_order_id": str(order.id), "order_status": order.order_status},
            )
        outstanding = await self.outstanding_quantity(line)
        if outstanding <= 0:
            raise PlanMismatch(
                "Departure line has nothing outstanding to reserve",
                details={"line_id": str(line.id), "outstanding": outstanding},
            )
        plan = await self.fifo.suggest_allocation(
            line.product_id,
            outstanding,
            scope,
            client_id=order.client_id,
        )
        plan.require_sufficient()
        return await self.reserve_for_departure(line.id, plan, actor, scope)

    async def release_reservations(
        self,
        departure_line_id: uuid.UUID,
        actor: Actor,
        scope: ScopeFilter,
    ) -> int:
        """Cancel every open reservation of a line. Returns the released quantity."""
        async with atomic(self.db):
            order, line = await self._lock_order_then_line(departure_line_id)
            scope.ensure_client(order.client_id, "departure order")

            result = await self.db.execute(
                select(DepartureAllocation).where(
                    DepartureAllocation.departure_order_line_id == line.id,
                    DepartureAllocation.status == DepartureAllocationStatus.RESERVED.value,
                )
            )
            released = 0
            now = datetime.now(timezone.utc)
            for reservation in result.scalars().all():
                reservation.status = DepartureAllocationStatus.RELEASED.value
                reservation.released_at = now
                released += reservation.reserved_quantity

            if released:
                await self.audit.log(
                    action="RESERVATION_RELEASED",
                    entity_type="DEPARTURE_ORDER_LINE",
                    entity_id=line.id,
                    user_id=actor.user_id,
                    new_values={"released_quantity": released},
                    description=f"{order.order_no}: released {released} reserved units",
                )

        logger.info(f"Released {released} reserved units of departure line {departure_line_id}")
        return released

    # ==================== DISPATCH ====================

    async def dispatch(
        self,
        departure_order_id: uuid.UUID,
        actor: Actor,
        scope: ScopeFilter,
    ) -> str:
        """
        Dispatch every open reservation of an order.

        Returns the new order status: DISPATCHED when every line is fully
        covered, PARTIALLY_DISPATCHED otherwise.

        Raises:
            AlreadyDispatched: order DISPATCHED or COMPLETED
            InvalidOrderState: order not yet approved
            InsufficientApprovedInventory: nothing reserved (reports shortfall)
            AllocationMutatedSinceReservation: source allocation changed underneath
        """
        if actor.role == ActorRole.CLIENT:
            raise PermissionDenied(
                "Client users cannot dispatch departure orders",
                details={"role": actor.role.value},
            )

        async with atomic(self.db):
            order = await self._lock_order(departure_order_id)
            scope.ensure_client(order.client_id, "departure order")

            if status_in(order.order_status, DepartureStatus.DISPATCHED, DepartureStatus.COMPLETED):
                raise AlreadyDispatched(
                    f"Departure order {order.order_no} is already {order.order_status}",
                    details={"departure_order_id": str(order.id), "order_status": order.order_status},
                )
            if not status_in(order.order_status, *RESERVABLE_ORDER_STATUSES):
                raise InvalidOrderState(
                    f"Departure order {order.order_no} is {order.order_status}",
                    details={"departure_order_id": str(order.id), "order_status": order.order_status},
                )

            lines_result = await self.db.execute(
                select(DepartureOrderLine)
                .where(DepartureOrderLine.departure_order_id == order.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            lines = {line.id: line for line in lines_result.scalars().all()}

            reservations_result = await self.db.execute(
                select(DepartureAllocation)
                .where(
                    DepartureAllocation.departure_order_id == order.id,
                    DepartureAllocation.status == DepartureAllocationStatus.RESERVED.value,
                )
                # Source allocations are locked in id order, as in reserve_for_departure
                .order_by(DepartureAllocation.source_allocation_id, DepartureAllocation.id)
            )
            reservations = list(reservations_result.scalars().all())

            if not reservations:
                shortfall = sum(
                    line.requested_quantity - line.dispatched_quantity for line in lines.values()
                )
                raise InsufficientApprovedInventory(
                    f"insufficient approved inventory: shortfall={shortfall}",
                    details={"departure_order_id": str(order.id), "shortfall": shortfall},
                )

            now = datetime.now(timezone.utc)
            dispatched_total = 0
            for reservation in reservations:
                allocation = await self._lock_allocation(reservation.source_allocation_id)
                footprint = reservation.footprint
                intact = (
                    allocation.quality_status == QualityStatus.APPROVED.value
                    and allocation.lifecycle_status == LifecycleStatus.ACTIVE.value
                    and footprint.fits_within(allocation.remaining)
                )
                if not intact:
                    raise AllocationMutatedSinceReservation(
                        f"Allocation {allocation.id} changed since it was reserved",
                        details={
                            "allocation_id": str(allocation.id),
                            "departure_allocation_id": str(reservation.id),
                            "reserved": reservation.reserved_quantity,
                            "remaining": allocation.remaining_quantity,
                            "quality_status": allocation.quality_status,
                            "lifecycle_status": allocation.lifecycle_status,
                        },
                    )

                await self.delta.apply_allocation_delta(
                    allocation,
                    footprint,
                    # One operation per reservation keeps dispatch idempotent per row
                    operation_id=reservation.id,
                    user_id=actor.user_id,
                    movement_type=MovementType.DEPARTURE,
                    source=StockPosition(allocation.cell_id, allocation.quality_status),
                    departure_order_id=order.id,
                    departure_allocation_id=reservation.id,
                    notes=f"Dispatch {order.order_no}",
                )

                reservation.status = DepartureAllocationStatus.DISPATCHED.value
                reservation.dispatched_at = now
                line = lines[reservation.departure_order_line_id]
                line.dispatched_quantity += reservation.reserved_quantity
                dispatched_total += reservation.reserved_quantity

            fully_covered = all(line.is_fully_dispatched for line in lines.values())
            order.order_status = (
                DepartureStatus.DISPATCHED.value if fully_covered
                else DepartureStatus.PARTIALLY_DISPATCHED.value
            )
            order.dispatched_by = actor.user_id
            order.dispatched_at = now

        logger.info(
            f"Dispatched {dispatched_total} units for {order.order_no} "
            f"({len(reservations)} reservations) -> {order.order_status}"
        )
        return order.order_status

    async def complete(
        self,
        departure_order_id: uuid.UUID,
        actor: Actor,
        scope: ScopeFilter,
    ) -> DepartureOrder:
        """Close a fully dispatched order."""
        async with atomic(self.db):
            order = await self._lock_order(departure_order_id)
            scope.ensure_client(order.client_id, "departure order")
            if order.order_status != DepartureStatus.DISPATCHED.value:
                raise InvalidOrderState(
                    f"Only DISPATCHED orders can be completed; {order.order_no} is {order.order_status}",
                    details={"departure_order_id": str(order.id), "order_status": order.order_status},
                )
            old_status = order.order_status
            order.order_status = DepartureStatus.COMPLETED.value
            order.completed_at = datetime.now(timezone.utc)
            await self.audit.log_order_status_changed(
                action="DEPARTURE_ORDER_COMPLETED",
                entity_type="DEPARTURE_ORDER",
                order_id=order.id,
                order_no=order.order_no,
                old_status=old_status,
                new_status=order.order_status,
                user_id=actor.user_id,
            )

        logger.info(f"Departure order {order.order_no} completed")
        return order
