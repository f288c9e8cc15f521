"""
Departure reservation and dispatch.

Reservations never move stock; dispatch removes exactly what was reserved
from allocations, inventory records and cells in one transaction.
"""
import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from pharma_wms.core.exceptions import (
    AllocationMutatedSinceReservation,
    AlreadyDispatched,
    ConcurrencyConflict,
    InsufficientApprovedInventory,
    InvalidOrderState,
    PermissionDenied,
    PlanMismatch,
    ScopeDenied,
)
from pharma_wms.models.audit_log import InventoryLog, MovementType
from pharma_wms.models.departure import DepartureAllocation, DepartureOrder, DepartureOrderLine
from pharma_wms.models.inventory import InventoryAllocation, InventoryRecord
from pharma_wms.schemas.orders import DepartureOrderCreate, DepartureOrderLineCreate
from pharma_wms.services.departure_service import DepartureService
from pharma_wms.services.fifo_service import FifoPick
from pharma_wms.services.order_service import OrderService

from tests.conftest import CLIENT_ID, PRODUCT_ID


@pytest.fixture
def departures(db, stock):
    return DepartureService(db, stock.settings)


class TestReservation:

    async def test_reservation_leaves_stock_untouched(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(quantity=50)
        _, line = await stock.departure_line(30)

        reservations = await departures.reserve_fifo(line.id, admin, admin.scope)

        assert len(reservations) == 1
        assert reservations[0].source_allocation_id == allocation.id
        assert reservations[0].reserved_quantity == 30
        assert reservations[0].status == "RESERVED"
        refreshed = await db.get(InventoryAllocation, allocation.id)
        assert refreshed.remaining_quantity == 50
        assert (await stock.cell("A.01.01")).current_quantity == 50
        assert await departures.outstanding_quantity(line) == 0

    async def test_plan_must_cover_outstanding(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(quantity=50)
        _, line = await stock.departure_line(30)

        with pytest.raises(PlanMismatch) as exc_info:
            await departures.reserve_for_departure(
                line.id, [FifoPick(allocation_id=allocation.id, quantity=25)], admin, admin.scope,
            )
        assert exc_info.value.details["outstanding"] == 30

    async def test_plan_for_another_product_is_refused(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(quantity=50, product_id=uuid.uuid4())
        _, line = await stock.departure_line(30)

        with pytest.raises(PlanMismatch):
            await departures.reserve_for_departure(
                line.id, [FifoPick(allocation_id=allocation.id, quantity=30)], admin, admin.scope,
            )

    async def test_quarantined_stock_cannot_be_reserved(self, db, stock, admin, departures):
        line_in = await stock.approved_line(quantity=50)
        allocation = await stock.allocate(line_in)
        _, line = await stock.departure_line(30)

        with pytest.raises(ConcurrencyConflict):
            await departures.reserve_for_departure(
                line.id, [FifoPick(allocation_id=allocation.id, quantity=30)], admin, admin.scope,
            )

    async def test_reservations_cannot_oversubscribe_an_allocation(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(quantity=50)
        allocation_id = allocation.id
        _, first = await stock.departure_line(40)
        _, second = await stock.departure_line(20)
        second_id = second.id

        await departures.reserve_for_departure(
            first.id, [FifoPick(allocation_id=allocation_id, quantity=40)], admin, admin.scope,
        )
        with pytest.raises(ConcurrencyConflict) as exc_info:
            await departures.reserve_for_departure(
                second_id, [FifoPick(allocation_id=allocation_id, quantity=20)], admin, admin.scope,
            )
        assert exc_info.value.details["available"] == 10

        reserved = await departures.list_reservations(admin.scope, line_id=second_id)
        assert reserved == []

    async def test_fifo_reservation_reports_shortfall(self, db, stock, admin, departures):
        await stock.approved_allocation(quantity=50)
        _, line = await stock.departure_line(80)

        with pytest.raises(InsufficientApprovedInventory) as exc_info:
            await departures.reserve_fifo(line.id, admin, admin.scope)
        assert exc_info.value.details["shortfall"] == 30

    async def test_unapproved_order_cannot_reserve(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(quantity=50)
        _, line = await stock.departure_line(30, approve=False)

        with pytest.raises(InvalidOrderState):
            await departures.reserve_for_departure(
                line.id, [FifoPick(allocation_id=allocation.id, quantity=30)], admin, admin.scope,
            )

    async def test_release_returns_quantity_to_the_line(self, db, stock, admin, departures):
        await stock.approved_allocation(quantity=50)
        order, line = await stock.departure_line(30)
        order_id, line_id = order.id, line.id
        await departures.reserve_fifo(line_id, admin, admin.scope)

        released = await departures.release_reservations(line_id, admin, admin.scope)

        assert released == 30
        line = await db.get(DepartureOrderLine, line_id)
        assert await departures.outstanding_quantity(line) == 30
        rows = await departures.list_reservations(admin.scope, line_id=line_id)
        assert [row.status for row in rows] == ["RELEASED"]

        with pytest.raises(InsufficientApprovedInventory) as exc_info:
            await departures.dispatch(order_id, admin, admin.scope)
        assert exc_info.value.details["shortfall"] == 30


class TestDispatch:

    async def test_dispatch_depletes_allocation(self, db, stock, admin, incharge, departures):
        allocation = await stock.approved_allocation(quantity=30)
        allocation_id = allocation.id
        order, line = await stock.departure_line(30)
        await departures.reserve_fifo(line.id, admin, admin.scope)

        status = await departures.dispatch(order.id, incharge, incharge.scope)

        assert status == "DISPATCHED"
        allocation = await db.get(InventoryAllocation, allocation_id)
        assert allocation.remaining_quantity == 0
        assert allocation.lifecycle_status == "DEPLETED"
        cell = await stock.cell("A.01.01")
        assert cell.current_quantity == 0
        assert cell.current_weight == Decimal("0")
        assert cell.status == "AVAILABLE"

        line = await db.get(DepartureOrderLine, line.id)
        assert line.dispatched_quantity == 30
        order = await db.get(DepartureOrder, order.id)
        assert order.order_status == "DISPATCHED"
        assert order.dispatched_by == incharge.user_id

        record = (await db.execute(
            select(InventoryRecord).where(
                InventoryRecord.cell_id == cell.id,
                InventoryRecord.quality_status == "APPROVED",
            )
        )).scalar_one()
        assert record.current_quantity == 0
        assert record.status == "DEPLETED"

        entry = (await db.execute(
            select(InventoryLog).where(InventoryLog.movement_type == MovementType.DEPARTURE.value)
        )).scalar_one()
        assert entry.quantity_change == -30
        assert entry.departure_order_id == order.id
        reservation = (await db.execute(select(DepartureAllocation))).scalar_one()
        assert entry.operation_id == reservation.id
        assert reservation.status == "DISPATCHED"

    async def test_partial_allocation_keeps_proportional_remainder(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(
            quantity=50, packages=10, weight=Decimal("50.00"), volume=Decimal("2.00"),
        )
        order, line = await stock.departure_line(30)
        await departures.reserve_fifo(line.id, admin, admin.scope)
        await departures.dispatch(order.id, admin, admin.scope)

        allocation = await db.get(InventoryAllocation, allocation.id)
        assert allocation.lifecycle_status == "ACTIVE"
        assert allocation.remaining_quantity == 20
        assert allocation.remaining_packages == 4
        assert allocation.remaining_weight == Decimal("20.00")
        cell = await stock.cell("A.01.01")
        assert cell.current_quantity == 20
        assert cell.current_packages == 4

    async def test_order_with_uncovered_line_is_partially_dispatched(self, db, stock, admin, departures):
        await stock.approved_allocation(quantity=50)
        orders = OrderService(db, stock.settings)
        order, lines = await orders.create_departure_order(
            DepartureOrderCreate(
                client_id=CLIENT_ID,
                warehouse_id=stock.warehouse_id,
                lines=[
                    DepartureOrderLineCreate(product_id=PRODUCT_ID, requested_quantity=20),
                    DepartureOrderLineCreate(product_id=uuid.uuid4(), requested_quantity=5),
                ],
            ),
            admin,
            admin.scope,
        )
        await orders.approve_departure_order(order.id, admin, admin.scope)
        covered = next(line for line in lines if line.product_id == PRODUCT_ID)
        await departures.reserve_fifo(covered.id, admin, admin.scope)

        status = await departures.dispatch(order.id, admin, admin.scope)
        assert status == "PARTIALLY_DISPATCHED"

    async def test_second_dispatch_is_refused(self, db, stock, admin, departures):
        await stock.approved_allocation(quantity=30)
        order, line = await stock.departure_line(30)
        order_id = order.id
        await departures.reserve_fifo(line.id, admin, admin.scope)
        await departures.dispatch(order_id, admin, admin.scope)

        with pytest.raises(AlreadyDispatched):
            await departures.dispatch(order_id, admin, admin.scope)
        assert (await stock.cell("A.01.01")).current_quantity == 0

    async def test_mutated_allocation_aborts_dispatch(self, db, stock, admin, departures):
        allocation = await stock.approved_allocation(quantity=50)
        allocation_id = allocation.id
        order, line = await stock.departure_line(30)
        order_id = order.id
        await departures.reserve_fifo(line.id, admin, admin.scope)

        allocation.quality_status = "REJECTED"
        await db.commit()

        with pytest.raises(AllocationMutatedSinceReservation):
            await departures.dispatch(order_id, admin, admin.scope)

        allocation = await db.get(InventoryAllocation, allocation_id)
        assert allocation.remaining_quantity == 50
        order = await db.get(DepartureOrder, order_id)
        assert order.order_status == "APPROVED"

    async def test_client_cannot_dispatch(self, db, stock, admin, client_user, departures):
        await stock.approved_allocation(quantity=30)
        order, line = await stock.departure_line(30)
        await departures.reserve_fifo(line.id, admin, admin.scope)

        with pytest.raises(PermissionDenied):
            await departures.dispatch(order.id, client_user, client_user.scope)

    async def test_complete_after_dispatch(self, db, stock, admin, departures):
        await stock.approved_allocation(quantity=30)
        order, line = await stock.departure_line(30)
        order_id, line_id = order.id, line.id

        with pytest.raises(InvalidOrderState):
            await departures.complete(order_id, admin, admin.scope)

        await departures.reserve_fifo(line_id, admin, admin.scope)
        await departures.dispatch(order_id, admin, admin.scope)

        completed = await departures.complete(order_id, admin, admin.scope)
        assert completed.order_status == "COMPLETED"
        assert completed.completed_at is not None


class TestParallelReservation:

    async def test_parallel_reservations_cannot_oversubscribe(self, db, session_factory, stock, admin):
        allocation = await stock.approved_allocation(quantity=50)
        allocation_id = allocation.id
        _, first = await stock.departure_line(40)
        _, second = await stock.departure_line(20)
        plans = {first.id: 40, second.id: 20}
        await db.commit()

        async def reserve(line_id, quantity):
            async with session_factory() as session:
                try:
                    await DepartureService(session, stock.settings).reserve_for_departure(
                        line_id, [FifoPick(allocation_id=allocation_id, quantity=quantity)],
                        admin, admin.scope,
                    )
                except ConcurrencyConflict:
                    return "conflict"
                return "reserved"

        outcomes = await asyncio.gather(*(reserve(line_id, qty) for line_id, qty in plans.items()))
        assert sorted(outcomes) == ["conflict", "reserved"]

        reservations = await DepartureService(db, stock.settings).list_reservations(admin.scope)
        assert len(reservations) == 1
        assert sum(r.reserved_quantity for r in reservations) <= 50


class TestLockOrder:

    async def test_reservation_locks_order_before_line(self, db, stock, admin, departures, monkeypatch):
        await stock.approved_allocation(quantity=50)
        _, line = await stock.departure_line(30)
        locked = []

        lock_order = departures._lock_order
        read_line = departures._read_line

        async def recording_lock_order(order_id):
            locked.append("order")
            return await lock_order(order_id)

        async def recording_read_line(line_id, lock=False):
            if lock:
                locked.append("line")
            return await read_line(line_id, lock=lock)

        monkeypatch.setattr(departures, "_lock_order", recording_lock_order)
        monkeypatch.setattr(departures, "_read_line", recording_read_line)

        await departures.reserve_fifo(line.id, admin, admin.scope)
        await departures.release_reservations(line.id, admin, admin.scope)
        assert locked == ["order", "line", "order", "line"]

    async def test_dispatch_locks_allocations_in_id_order(self, db, stock, admin, departures, monkeypatch):
        first = await stock.approved_allocation("A.01.01", quantity=10)
        second = await stock.approved_allocation("A.01.02", quantity=10)
        low, high = sorted([first.id, second.id])

        orders = OrderService(db, stock.settings)
        order, lines = await orders.create_departure_order(
            DepartureOrderCreate(
                client_id=CLIENT_ID,
                warehouse_id=stock.warehouse_id,
                lines=[
                    DepartureOrderLineCreate(product_id=PRODUCT_ID, requested_quantity=10),
                    DepartureOrderLineCreate(product_id=PRODUCT_ID, requested_quantity=10),
                ],
            ),
            admin,
            admin.scope,
        )
        order_id = order.id
        line_ids = [line.id for line in lines]
        await orders.approve_departure_order(order_id, admin, admin.scope)
        # Higher id reserved first: reservation time and id order disagree
        await departures.reserve_for_departure(
            line_ids[0], [FifoPick(allocation_id=high, quantity=10)], admin, admin.scope,
        )
        await departures.reserve_for_departure(
            line_ids[1], [FifoPick(allocation_id=low, quantity=10)], admin, admin.scope,
        )

        locked = []
        lock_allocation = departures._lock_allocation

        async def recording_lock_allocation(allocation_id):
            locked.append(allocation_id)
            return await lock_allocation(allocation_id)

        monkeypatch.setattr(departures, "_lock_allocation", recording_lock_allocation)

        assert await departures.dispatch(order_id, admin, admin.scope) == "DISPATCHED"
        assert locked == [low, high]


class TestClientReservation:

    async def test_client_cannot_reserve_from_unassigned_cell(self, db, stock, client_user, departures):
        allocation = await stock.approved_allocation(quantity=50)
        allocation_id = allocation.id
        _, line = await stock.departure_line(30)
        line_id = line.id

        with pytest.raises(ScopeDenied):
            await departures.reserve_for_departure(
                line_id, [FifoPick(allocation_id=allocation_id, quantity=30)], client_user, client_user.scope,
            )
        assert await departures.list_reservations(client_user.scope, line_id=line_id) == []

        await stock.assign("A.01.01", CLIENT_ID)
        reservations = await departures.reserve_for_departure(
            line_id, [FifoPick(allocation_id=allocation_id, quantity=30)], client_user, client_user.scope,
        )
        assert [r.reserved_quantity for r in reservations] == [30]
