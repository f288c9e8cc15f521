"""
Quality-control transitions: in-place moves, splits, relocation and the
rules that refuse a transition before anything is written.
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from pharma_wms.config import Settings
from pharma_wms.core.exceptions import (
    CellUnavailable,
    ConcurrencyConflict,
    InsufficientQuantity,
    InvalidTransition,
)
from pharma_wms.models.audit_log import InventoryLog, MovementType
from pharma_wms.models.inventory import InventoryAllocation, InventoryRecord, QualityStatus
from pharma_wms.services.departure_service import DepartureService
from pharma_wms.services.fifo_service import FifoPick
from pharma_wms.services.qc_state_machine import (
    can_transition,
    cell_role_accepts,
    get_allowed_transitions,
)
from pharma_wms.services.quality_control_service import QualityControlService


async def quantity_in(db, cell_id, status):
    result = await db.execute(
        select(InventoryRecord.current_quantity).where(
            InventoryRecord.cell_id == cell_id,
            InventoryRecord.quality_status == status,
        )
    )
    return result.scalar_one_or_none()


@pytest.fixture
async def quarantined(stock):
    line = await stock.approved_line(
        quantity=100, packages=10, weight=Decimal("50.00"), volume=Decimal("2.00"),
    )
    return await stock.allocate(line, "A.01.01")


class TestStateMachine:

    def test_quarantine_fans_out(self):
        assert set(get_allowed_transitions("QUARANTINE")) == {
            "APPROVED", "RETURNS", "SAMPLES", "REJECTED",
        }

    def test_terminal_states_have_no_exits(self):
        for status in ("RETURNS", "SAMPLES", "REJECTED"):
            assert get_allowed_transitions(status) == []
            assert get_allowed_transitions(status, allow_recall=True) == []

    def test_recall_is_opt_in(self):
        assert not can_transition("APPROVED", "REJECTED")
        assert can_transition("APPROVED", "REJECTED", allow_recall=True)
        assert not can_transition("APPROVED", "QUARANTINE", allow_recall=True)

    def test_cell_roles(self):
        assert cell_role_accepts("STANDARD", "QUARANTINE")
        assert cell_role_accepts("STANDARD", "APPROVED")
        assert cell_role_accepts("REJECTED", "REJECTED")
        assert not cell_role_accepts("SAMPLES", "REJECTED")
        assert not cell_role_accepts("DAMAGED", "REJECTED")


class TestTransition:

    async def test_full_move_stays_in_place(self, db, stock, pharmacist, quarantined):
        allocation_id = quarantined.id
        cell_id = stock.cell_ids["A.01.01"]

        result = await QualityControlService(db, stock.settings).transition(
            allocation_id, "approved", 100, pharmacist, pharmacist.scope,
        )

        assert not result.was_split
        assert result.updated_allocation.id == allocation_id
        assert result.updated_allocation.quality_status == "APPROVED"
        assert result.updated_allocation.remaining_quantity == 100
        assert result.updated_allocation.version == 2
        assert await quantity_in(db, cell_id, "QUARANTINE") == 0
        assert await quantity_in(db, cell_id, "APPROVED") == 100
        assert (await stock.cell("A.01.01")).current_quantity == 100

    async def test_partial_move_splits_allocation(self, db, stock, pharmacist, quarantined):
        allocation_id = quarantined.id
        cell_id = stock.cell_ids["A.01.01"]

        result = await QualityControlService(db, stock.settings).transition(
            allocation_id, QualityStatus.APPROVED, 40, pharmacist, pharmacist.scope,
            reason="Partial release",
        )

        assert result.was_split
        original, split = result.updated_allocation, result.new_allocation
        assert original.quality_status == "QUARANTINE"
        assert original.remaining_quantity == 60
        assert original.allocated_quantity == 60
        assert split.quality_status == "APPROVED"
        assert split.parent_allocation_id == allocation_id
        assert split.remaining_quantity == 40
        assert split.remaining_packages == 4
        assert split.remaining_weight == Decimal("20.00")
        assert split.remaining_volume == Decimal("0.80")
        assert original.remaining_quantity + split.remaining_quantity == 100

        assert await quantity_in(db, cell_id, "QUARANTINE") == 60
        assert await quantity_in(db, cell_id, "APPROVED") == 40
        assert (await stock.cell("A.01.01")).current_quantity == 100

        logged = await db.execute(
            select(InventoryLog).where(
                InventoryLog.movement_type == MovementType.QUALITY_TRANSITION.value
            )
        )
        entries = logged.scalars().all()
        assert len(entries) == 2
        assert len({entry.operation_id for entry in entries}) == 1
        assert all(entry.quantity_change == 0 for entry in entries)
        assert all(entry.quantity_moved == 40 for entry in entries)

        assert result.transition_record.quantity_moved == 40
        assert result.transition_record.new_allocation_id == split.id

    async def test_relocation_moves_cell_usage(self, db, stock, pharmacist, quarantined):
        await stock.set_role("B.03.02", "REJECTED")
        target_cell = stock.cell_ids["B.03.02"]

        result = await QualityControlService(db, stock.settings).transition(
            quarantined.id, "REJECTED", 100, pharmacist, pharmacist.scope,
            new_cell_id=target_cell,
        )

        assert result.updated_allocation.cell_id == target_cell
        assert (await stock.cell("A.01.01")).current_quantity == 0
        assert (await stock.cell("B.03.02")).current_quantity == 100
        assert await quantity_in(db, target_cell, "REJECTED") == 100

    async def test_partial_relocation_keeps_both_cells_consistent(self, db, stock, pharmacist, quarantined):
        await stock.set_role("B.03.01", "SAMPLES")
        target_cell = stock.cell_ids["B.03.01"]

        result = await QualityControlService(db, stock.settings).transition(
            quarantined.id, "SAMPLES", 5, pharmacist, pharmacist.scope,
            new_cell_id=target_cell,
        )

        assert result.new_allocation.cell_id == target_cell
        assert (await stock.cell("A.01.01")).current_quantity == 95
        assert (await stock.cell("B.03.01")).current_quantity == 5

    async def test_transitions_are_listed(self, db, stock, pharmacist, quarantined):
        service = QualityControlService(db, stock.settings)
        await service.transition(quarantined.id, "APPROVED", 30, pharmacist, pharmacist.scope)

        history = await service.list_transitions(pharmacist.scope, allocation_id=quarantined.id)
        assert len(history) == 1
        assert history[0].from_status == "QUARANTINE"
        assert history[0].to_status == "APPROVED"


class TestTransitionRejections:

    async def test_assistant_cannot_change_quality(self, db, stock, assistant, quarantined):
        with pytest.raises(InvalidTransition):
            await QualityControlService(db, stock.settings).transition(
                quarantined.id, "APPROVED", 100, assistant, assistant.scope,
            )

    async def test_approved_stock_cannot_move_without_recall(self, db, stock, pharmacist):
        approved = await stock.approved_allocation()
        with pytest.raises(InvalidTransition):
            await QualityControlService(db, stock.settings).transition(
                approved.id, "SAMPLES", 10, pharmacist, pharmacist.scope,
            )

    async def test_terminal_state_is_final(self, db, stock, pharmacist, quarantined):
        service = QualityControlService(db, stock.settings)
        await service.transition(quarantined.id, "REJECTED", 100, pharmacist, pharmacist.scope)
        with pytest.raises(InvalidTransition):
            await service.transition(quarantined.id, "APPROVED", 100, pharmacist, pharmacist.scope)

    async def test_quantity_above_remaining(self, db, stock, pharmacist, quarantined):
        allocation_id = quarantined.id
        with pytest.raises(InsufficientQuantity):
            await QualityControlService(db, stock.settings).transition(
                allocation_id, "APPROVED", 150, pharmacist, pharmacist.scope,
            )
        allocation = await db.get(InventoryAllocation, allocation_id)
        assert allocation.quality_status == "QUARANTINE"
        assert allocation.remaining_quantity == 100

    async def test_stale_version_is_a_conflict(self, db, stock, pharmacist, quarantined):
        with pytest.raises(ConcurrencyConflict) as exc_info:
            await QualityControlService(db, stock.settings).transition(
                quarantined.id, "APPROVED", 100, pharmacist, pharmacist.scope,
                expected_version=7,
            )
        assert exc_info.value.details["actual_version"] == 1

    async def test_destination_cell_must_accept_status(self, db, stock, pharmacist, quarantined):
        allocation_id = quarantined.id
        await stock.set_role("B.03.02", "SAMPLES")
        with pytest.raises(CellUnavailable):
            await QualityControlService(db, stock.settings).transition(
                allocation_id, "REJECTED", 100, pharmacist, pharmacist.scope,
                new_cell_id=stock.cell_ids["B.03.02"],
            )
        assert (await stock.cell("A.01.01")).current_quantity == 100
        assert (await stock.cell("B.03.02")).current_quantity == 0

    async def test_passage_destination_is_refused(self, db, stock, pharmacist, quarantined):
        with pytest.raises(CellUnavailable):
            await QualityControlService(db, stock.settings).transition(
                quarantined.id, "APPROVED", 100, pharmacist, pharmacist.scope,
                new_cell_id=stock.cell_ids["A.02.01"],
            )


class TestRecall:

    async def test_recall_when_enabled(self, db, stock, pharmacist):
        approved = await stock.approved_allocation(quantity=50)
        settings = Settings(QC_ALLOW_RECALL_FROM_APPROVED=True)

        result = await QualityControlService(db, settings).transition(
            approved.id, "REJECTED", 50, pharmacist, pharmacist.scope,
        )
        assert result.updated_allocation.quality_status == "REJECTED"

    async def test_reserved_stock_cannot_be_recalled(self, db, stock, pharmacist, admin):
        approved = await stock.approved_allocation(quantity=50)
        allocation_id = approved.id
        _, line = await stock.departure_line(30)
        await DepartureService(db, stock.settings).reserve_for_departure(
            line.id, [FifoPick(allocation_id=allocation_id, quantity=30)], admin, admin.scope,
        )

        service = QualityControlService(db, Settings(QC_ALLOW_RECALL_FROM_APPROVED=True))
        with pytest.raises(InsufficientQuantity) as exc_info:
            await service.transition(allocation_id, "REJECTED", 30, pharmacist, pharmacist.scope)
        assert exc_info.value.details["available"] == 20

        result = await service.transition(allocation_id, "REJECTED", 20, pharmacist, pharmacist.scope)
        assert result.was_split
