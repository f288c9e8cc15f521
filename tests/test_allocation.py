"""
Receipt of approved entry-order lines into cells.

Covers quantity conservation against the line, cell occupancy, the
inventory record and RECEIPT log written with each allocation, and the
rejections for unapproved orders, unusable cells and foreign scopes.
"""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from pharma_wms.config import Settings
from pharma_wms.core.exceptions import (
    CellCapacityExceeded,
    CellUnavailable,
    NotApproved,
    QuantityExceedsRemaining,
    ScopeDenied,
    ValidationError,
)
from pharma_wms.core.scope import Actor, ActorRole
from pharma_wms.models.audit_log import InventoryLog, MovementType
from pharma_wms.models.entry_order import EntryOrderLine
from pharma_wms.models.inventory import InventoryAllocation, InventoryRecord, QualityStatus
from pharma_wms.services.allocation_service import AllocationService

from tests.conftest import CLIENT_ID, OTHER_CLIENT_ID


async def record_for(db, cell_id, status):
    result = await db.execute(
        select(InventoryRecord).where(
            InventoryRecord.cell_id == cell_id,
            InventoryRecord.quality_status == status,
        )
    )
    return result.scalar_one_or_none()


class TestAllocate:

    async def test_allocation_starts_in_quarantine(self, db, stock):
        line = await stock.approved_line(quantity=100)
        allocation = await stock.allocate(line, "A.01.01")

        assert allocation.quality_status == QualityStatus.QUARANTINE.value
        assert allocation.lifecycle_status == "ACTIVE"
        assert allocation.allocated_quantity == 100
        assert allocation.remaining_quantity == 100
        assert allocation.client_id == CLIENT_ID
        assert allocation.version == 1

    async def test_cell_usage_and_record_follow_the_allocation(self, db, stock):
        line = await stock.approved_line(
            quantity=100, packages=10, weight=Decimal("50.00"), volume=Decimal("2.00"),
        )
        await stock.allocate(line, "A.01.01")

        cell = await stock.cell("A.01.01")
        assert cell.current_quantity == 100
        assert cell.current_packages == 10
        assert cell.current_weight == Decimal("50.00")
        assert cell.current_volume == Decimal("2.00")
        assert cell.status == "OCCUPIED"

        record = await record_for(db, cell.id, QualityStatus.QUARANTINE.value)
        assert record is not None
        assert record.current_quantity == 100
        assert record.status == "QUARANTINED"

    async def test_receipt_is_logged_once(self, db, stock):
        line = await stock.approved_line(quantity=100)
        allocation = await stock.allocate(line, "A.01.01")

        result = await db.execute(
            select(InventoryLog).where(InventoryLog.allocation_id == allocation.id)
        )
        entries = result.scalars().all()
        assert len(entries) == 1
        assert entries[0].movement_type == MovementType.RECEIPT.value
        assert entries[0].quantity_change == 100
        assert entries[0].to_status == QualityStatus.QUARANTINE.value

    async def test_line_split_across_cells_conserves_quantity(self, db, stock):
        line = await stock.approved_line(
            quantity=100, packages=10, weight=Decimal("50.00"), volume=Decimal("2.00"),
        )
        await stock.allocate(line, "A.01.01", quantity=60, packages=6,
                             weight=Decimal("30.00"), volume=Decimal("1.20"))
        await stock.allocate(line, "A.01.02", quantity=40, packages=4,
                             weight=Decimal("20.00"), volume=Decimal("0.80"))
        line_id = line.id

        with pytest.raises(QuantityExceedsRemaining) as exc_info:
            await stock.allocate(line, "B.01.01", quantity=1, packages=0,
                                 weight=Decimal("0"), volume=Decimal("0"))
        assert exc_info.value.details["unallocated"]["quantity"] == 0

        result = await db.execute(
            select(InventoryAllocation).where(InventoryAllocation.entry_order_line_id == line_id)
        )
        allocations = result.scalars().all()
        assert sum(a.allocated_quantity for a in allocations) == 100
        assert (await stock.cell("B.01.01")).current_quantity == 0

    async def test_over_allocation_in_one_call_is_rejected(self, db, stock):
        line = await stock.approved_line(quantity=100)
        with pytest.raises(QuantityExceedsRemaining):
            await stock.allocate(line, "A.01.01", quantity=101)
        assert (await stock.cell("A.01.01")).current_quantity == 0

    async def test_non_positive_quantity_is_rejected(self, db, stock):
        line = await stock.approved_line(quantity=100)
        with pytest.raises(ValidationError):
            await stock.allocate(line, "A.01.01", quantity=0)


class TestAllocationRejections:

    async def test_unapproved_order_cannot_be_allocated(self, db, stock):
        line = await stock.approved_line(approve=False)
        with pytest.raises(NotApproved):
            await stock.allocate(line, "A.01.01")

    async def test_passage_cell_is_rejected(self, db, stock):
        line = await stock.approved_line()
        with pytest.raises(CellUnavailable):
            await stock.allocate(line, "A.02.01")
        assert (await stock.cell("A.02.01")).current_quantity == 0

    async def test_quality_cell_is_rejected(self, db, stock):
        await stock.set_role("B.03.02", "REJECTED")
        line = await stock.approved_line()
        with pytest.raises(CellUnavailable):
            await stock.allocate(line, "B.03.02")

    async def test_cell_of_another_warehouse_is_rejected(self, db, stock):
        line = await stock.approved_line()
        line_id = line.id
        await stock.create_warehouse(name="Overflow")
        with pytest.raises(CellUnavailable):
            await AllocationService(db, stock.settings).allocate(
                line_id, stock.cell_ids["A.01.01"], 10, 1, Decimal("1"), Decimal("0.1"),
                stock.admin, stock.admin.scope,
            )

    async def test_foreign_client_scope_is_denied(self, db, stock):
        line = await stock.approved_line(client_id=CLIENT_ID)
        outsider = Actor(user_id=uuid.uuid4(), role=ActorRole.CLIENT,
                         client_ids=frozenset({OTHER_CLIENT_ID}))
        with pytest.raises(ScopeDenied):
            await stock.allocate(line, "A.01.01", actor=outsider)

    async def test_client_needs_cell_assignment(self, db, stock, client_user):
        line = await stock.approved_line(client_id=CLIENT_ID)
        line_id = line.id
        with pytest.raises(ScopeDenied):
            await stock.allocate(line, "A.01.01", actor=client_user)

        await stock.assign("A.01.01", CLIENT_ID)
        line = await db.get(EntryOrderLine, line_id)
        allocation = await stock.allocate(line, "A.01.01", actor=client_user)
        assert allocation.remaining_quantity == 100

    async def test_cell_must_belong_to_the_orders_client(self, db, stock):
        broker = Actor(user_id=uuid.uuid4(), role=ActorRole.CLIENT,
                       client_ids=frozenset({CLIENT_ID, OTHER_CLIENT_ID}))
        await stock.assign("A.01.01", OTHER_CLIENT_ID)
        await stock.assign("A.01.02", CLIENT_ID)
        line = await stock.approved_line(client_id=CLIENT_ID)
        line_id = line.id

        with pytest.raises(ScopeDenied) as exc_info:
            await stock.allocate(line, "A.01.01", actor=broker)
        assert exc_info.value.details["client_id"] == str(CLIENT_ID)

        line = await db.get(EntryOrderLine, line_id)
        allocation = await stock.allocate(line, "A.01.02", actor=broker)
        assert allocation.cell_id == stock.cell_ids["A.01.02"]


class TestAllocationReplay:

    async def test_repeated_operation_returns_first_allocation(self, db, stock):
        line = await stock.approved_line(quantity=100)
        service = AllocationService(db, stock.settings)
        operation_id = uuid.uuid4()
        args = dict(
            line_id=line.id,
            cell_id=stock.cell_ids["A.01.01"],
            quantity=40,
            packages=4,
            weight=Decimal("20.00"),
            volume=Decimal("0.80"),
            actor=stock.admin,
            scope=stock.admin.scope,
            operation_id=operation_id,
        )

        first = await service.allocate(**args)
        second = await service.allocate(**args)

        assert second.id == first.id
        assert (await stock.cell("A.01.01")).current_quantity == 40
        logged = await db.execute(
            select(InventoryLog).where(InventoryLog.operation_id == operation_id)
        )
        assert len(logged.scalars().all()) == 1


class TestCellCapacity:

    async def test_enforced_capacity_blocks_overfill(self, db, stock):
        stock.settings = Settings(CELL_CAPACITY_POLICY="ENFORCE")
        await stock.create_warehouse(name="Cold room", max_quantity=50)
        line = await stock.approved_line(quantity=60)

        with pytest.raises(CellCapacityExceeded) as exc_info:
            await stock.allocate(line, "A.01.01")
        assert exc_info.value.details["dimension"] == "quantity"
        assert (await stock.cell("A.01.01")).current_quantity == 0

    async def test_capacity_is_informational_by_default(self, db, stock):
        await stock.create_warehouse(name="Cold room", max_quantity=50)
        line = await stock.approved_line(quantity=60)

        allocation = await stock.allocate(line, "A.01.01")
        assert allocation.remaining_quantity == 60
        assert (await stock.cell("A.01.01")).current_quantity == 60
