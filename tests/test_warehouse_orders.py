"""Warehouse grid, cell roles and assignments, order registration and review."""
import uuid

import pytest

from pharma_wms.core.exceptions import (
    CellNotFound,
    CellUnavailable,
    InvalidOrderState,
    PermissionDenied,
    ScopeDenied,
    ValidationError,
)
from pharma_wms.schemas.orders import DepartureOrderCreate, DepartureOrderLineCreate
from pharma_wms.schemas.warehouse import WarehouseCreate
from pharma_wms.services.audit_service import AuditService
from pharma_wms.services.inventory_view_service import InventoryViewService
from pharma_wms.services.order_service import OrderService
from pharma_wms.services.quality_control_service import QualityControlService
from pharma_wms.services.warehouse_service import WarehouseService

from tests.conftest import CLIENT_ID, OTHER_CLIENT_ID, PRODUCT_ID


class TestWarehouseGrid:

    async def test_grid_and_passages(self, db, stock, admin):
        cells = await WarehouseService(db).list_cells(stock.warehouse_id, admin.scope)

        assert len(cells) == 12
        assert [c.address for c in cells][:4] == ["A.01.01", "A.01.02", "A.02.01", "A.02.02"]
        assert {c.address for c in cells if c.is_passage} == {
            "A.02.01", "A.02.02", "B.02.01", "B.02.02",
        }
        assert all(c.cell_role == "STANDARD" for c in cells)
        assert all(c.version == 1 for c in cells)

    async def test_available_cells_exclude_passages(self, db, stock, admin):
        cells = await WarehouseService(db).list_cells(stock.warehouse_id, admin.scope, only_available=True)
        assert len(cells) == 8
        assert not any(c.is_passage for c in cells)

    async def test_only_supervisors_create_warehouses(self, db, pharmacist):
        with pytest.raises(PermissionDenied):
            await WarehouseService(db).create_warehouse(
                WarehouseCreate(name="Annex", rows=["A"], bays=2, positions=2), pharmacist,
            )

    async def test_passage_bays_must_exist(self, db, admin):
        with pytest.raises(ValidationError):
            await WarehouseService(db).create_warehouse(
                WarehouseCreate(name="Annex", rows=["A"], bays=2, positions=2, passage_bays=[5]), admin,
            )

    async def test_client_sees_assigned_cells_only(self, db, stock, client_user):
        await stock.assign("B.03.01", CLIENT_ID)
        cells = await WarehouseService(db).list_cells(stock.warehouse_id, client_user.scope)
        assert [c.address for c in cells] == ["B.03.01"]

    async def test_passage_cannot_be_assigned(self, db, stock):
        with pytest.raises(CellUnavailable):
            await stock.assign("A.02.01", CLIENT_ID)


class TestCellRoles:

    async def test_admin_changes_role_and_it_is_audited(self, db, stock, admin):
        cell = await stock.set_role("B.03.02", "rejected")
        assert cell.cell_role == "REJECTED"

        logs = await AuditService(db).get_logs(entity_id=cell.id, action="CELL_ROLE_CHANGE")
        assert len(logs) == 1
        assert logs[0].old_values == {"cell_role": "STANDARD"}

    async def test_only_admin_changes_roles(self, db, stock, incharge):
        with pytest.raises(PermissionDenied):
            await WarehouseService(db).change_cell_role(
                stock.cell_ids["B.03.02"], "REJECTED", incharge, incharge.scope,
            )

    async def test_unknown_role_is_rejected(self, db, stock, admin):
        with pytest.raises(ValidationError):
            await WarehouseService(db).change_cell_role(
                stock.cell_ids["B.03.02"], "FREEZER", admin, admin.scope,
            )

    async def test_role_change_blocked_by_incompatible_stock(self, db, stock, admin):
        line = await stock.approved_line(quantity=10)
        await stock.allocate(line, "A.01.01")

        with pytest.raises(CellUnavailable) as exc_info:
            await stock.set_role("A.01.01", "REJECTED")
        assert exc_info.value.details["conflicting_allocations"] == 1
        assert (await stock.cell("A.01.01")).cell_role == "STANDARD"

    async def test_role_change_allowed_when_stock_fits(self, db, stock, pharmacist):
        line = await stock.approved_line(quantity=10)
        allocation = await stock.allocate(line, "A.01.01")
        await QualityControlService(db, stock.settings).transition(
            allocation.id, "REJECTED", 10, pharmacist, pharmacist.scope,
        )

        cell = await stock.set_role("A.01.01", "REJECTED")
        assert cell.cell_role == "REJECTED"

    async def test_unknown_cell(self, db, admin):
        with pytest.raises(CellNotFound):
            await WarehouseService(db).change_cell_role(uuid.uuid4(), "REJECTED", admin, admin.scope)


class TestOrders:

    async def test_orders_are_numbered_per_prefix(self, db, stock):
        first = await stock.approved_line()
        second = await stock.approved_line()
        departure, _ = await stock.departure_line(5)

        orders = OrderService(db, stock.settings)
        first_order, _ = await orders.get_entry_order(first.entry_order_id, stock.admin.scope)
        second_order, _ = await orders.get_entry_order(second.entry_order_id, stock.admin.scope)
        assert first_order.order_no == "OI-00001"
        assert second_order.order_no == "OI-00002"
        assert departure.order_no == "OS-00001"

    async def test_review_is_audited(self, db, stock):
        line = await stock.approved_line()
        order, _ = await OrderService(db, stock.settings).get_entry_order(
            line.entry_order_id, stock.admin.scope,
        )
        assert order.review_status == "APPROVED"
        assert order.reviewed_by == stock.pharmacist.user_id

        logs = await AuditService(db).get_logs(entity_id=order.id, action="ENTRY_ORDER_REVIEWED")
        assert logs[0].new_values["status"] == "APPROVED"

    async def test_assistant_cannot_review(self, db, stock, assistant):
        line = await stock.approved_line(approve=False)
        with pytest.raises(PermissionDenied):
            await OrderService(db, stock.settings).review_entry_order(
                line.entry_order_id, "APPROVED", assistant, assistant.scope,
            )

    async def test_revision_then_approval(self, db, stock, pharmacist):
        line = await stock.approved_line(approve=False)
        orders = OrderService(db, stock.settings)
        await orders.review_entry_order(
            line.entry_order_id, "NEEDS_REVISION", pharmacist, pharmacist.scope, comments="Lot unreadable",
        )
        order = await orders.review_entry_order(line.entry_order_id, "APPROVED", pharmacist, pharmacist.scope)
        assert order.review_status == "APPROVED"

    async def test_approved_order_cannot_be_reviewed_again(self, db, stock, pharmacist):
        line = await stock.approved_line()
        with pytest.raises(InvalidOrderState):
            await OrderService(db, stock.settings).review_entry_order(
                line.entry_order_id, "REJECTED", pharmacist, pharmacist.scope,
            )

    async def test_unknown_review_outcome(self, db, stock, pharmacist):
        line = await stock.approved_line(approve=False)
        with pytest.raises(ValidationError):
            await OrderService(db, stock.settings).review_entry_order(
                line.entry_order_id, "MAYBE", pharmacist, pharmacist.scope,
            )

    async def test_pharmacist_cannot_approve_departures(self, db, stock, pharmacist):
        order, _ = await stock.departure_line(5, approve=False)
        with pytest.raises(PermissionDenied):
            await OrderService(db, stock.settings).approve_departure_order(
                order.id, pharmacist, pharmacist.scope,
            )

    async def test_departure_approval_stamps_approver(self, db, stock, incharge):
        order, _ = await stock.departure_line(5, approve=False)
        approved = await OrderService(db, stock.settings).approve_departure_order(
            order.id, incharge, incharge.scope,
        )
        assert approved.order_status == "APPROVED"
        assert approved.approved_by == incharge.user_id
        assert approved.approved_at is not None

    async def test_client_cannot_order_for_another_client(self, db, stock, client_user):
        with pytest.raises(ScopeDenied):
            await OrderService(db, stock.settings).create_departure_order(
                DepartureOrderCreate(
                    client_id=OTHER_CLIENT_ID,
                    warehouse_id=stock.warehouse_id,
                    lines=[DepartureOrderLineCreate(product_id=PRODUCT_ID, requested_quantity=1)],
                ),
                client_user,
                client_user.scope,
            )


class TestInventoryViews:

    async def test_allocations_grouped_by_quality(self, db, stock, admin):
        await stock.approved_allocation("A.01.01", quantity=20)
        line = await stock.approved_line(quantity=15)
        await stock.allocate(line, "A.01.02")

        grouped = await InventoryViewService(db).allocations_by_quality(admin.scope, product_id=PRODUCT_ID)

        assert set(grouped) == {"QUARANTINE", "APPROVED", "RETURNS", "SAMPLES", "REJECTED"}
        assert [a.remaining_quantity for a in grouped["APPROVED"]] == [20]
        assert [a.remaining_quantity for a in grouped["QUARANTINE"]] == [15]
        assert grouped["REJECTED"] == []

    async def test_inventory_by_cell_skips_empty_records(self, db, stock, admin):
        await stock.approved_allocation("A.01.01", quantity=20)

        records = await InventoryViewService(db).inventory_by_cell(stock.cell_ids["A.01.01"], admin.scope)
        assert [(r.quality_status, r.current_quantity) for r in records] == [("APPROVED", 20)]

    async def test_client_needs_assignment_to_view_cell(self, db, stock, client_user):
        with pytest.raises(ScopeDenied):
            await InventoryViewService(db).inventory_by_cell(stock.cell_ids["A.01.01"], client_user.scope)

    async def test_unknown_cell_view(self, db, admin):
        with pytest.raises(CellNotFound):
            await InventoryViewService(db).inventory_by_cell(uuid.uuid4(), admin.scope)
