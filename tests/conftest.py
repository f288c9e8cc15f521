"""
Pytest fixtures for the warehouse core test suite.

Provides:
- A fresh SQLite database (aiosqlite) per test, created from the models
- Actors for every role
- ``stock``: a builder that sets up warehouses, approved lines and allocations
  through the real services
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import pytest
from sqlalchemy import select

from pharma_wms.config import Settings
from pharma_wms.core.scope import Actor, ActorRole
from pharma_wms.database import build_engine, build_session_factory, init_db
from pharma_wms.models.entry_order import EntryOrderLine
from pharma_wms.models.inventory import InventoryAllocation, QualityStatus
from pharma_wms.models.warehouse import WarehouseCell
from pharma_wms.schemas.orders import (
    EntryOrderCreate,
    EntryOrderLineCreate,
    DepartureOrderCreate,
    DepartureOrderLineCreate,
)
from pharma_wms.schemas.warehouse import WarehouseCreate
from pharma_wms.services.allocation_service import AllocationService
from pharma_wms.services.order_service import OrderService
from pharma_wms.services.quality_control_service import QualityControlService
from pharma_wms.services.warehouse_service import WarehouseService


CLIENT_ID = uuid.UUID("6f1c2a4e-0b7d-4c55-9a31-2d8e5f6a7b01")
OTHER_CLIENT_ID = uuid.UUID("6f1c2a4e-0b7d-4c55-9a31-2d8e5f6a7b02")
PRODUCT_ID = uuid.UUID("a3e9d1c0-5f42-4e8b-b7a6-91c0d2e3f401")


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'warehouse.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(CELL_CAPACITY_POLICY="NONE", QC_ALLOW_RECALL_FROM_APPROVED=False)


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def admin():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.ADMIN)


@pytest.fixture
def incharge():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.WAREHOUSE_INCHARGE)


@pytest.fixture
def pharmacist():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.PHARMACIST)


@pytest.fixture
def assistant():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.WAREHOUSE_ASSISTANT)


@pytest.fixture
def client_user():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.CLIENT, client_ids=frozenset({CLIENT_ID}))


# =============================================================================
# Stock builder
# =============================================================================


class StockBuilder:
    """
    Sets up stock through the public services so tests start from states the
    system itself produces.

    Grid: rows A and B, bays 1-3, positions 1-2; bay 2 is a passage.
    """

    def __init__(self, db, settings, admin, pharmacist):
        self.db = db
        self.settings = settings
        self.admin = admin
        self.pharmacist = pharmacist
        self.warehouse_id: Optional[uuid.UUID] = None
        self.cell_ids: Dict[str, uuid.UUID] = {}

    async def create_warehouse(self, **overrides):
        data = {
            "name": f"Main {uuid.uuid4().hex[:6]}",
            "rows": ["A", "B"],
            "bays": 3,
            "positions": 2,
            "passage_bays": [2],
        }
        data.update(overrides)
        warehouse, _ = await WarehouseService(self.db).create_warehouse(WarehouseCreate(**data), self.admin)
        result = await self.db.execute(
            select(WarehouseCell).where(WarehouseCell.warehouse_id == warehouse.id)
        )
        self.warehouse_id = warehouse.id
        self.cell_ids = {cell.address: cell.id for cell in result.scalars().all()}
        return warehouse

    async def cell(self, address: str) -> WarehouseCell:
        """Current state of a cell, re-read after any rollback."""
        return await self.db.get(WarehouseCell, self.cell_ids[address])

    async def set_role(self, address: str, role: str) -> WarehouseCell:
        return await WarehouseService(self.db).change_cell_role(
            self.cell_ids[address], role, self.admin, self.admin.scope,
        )

    async def assign(self, address: str, client_id: uuid.UUID = CLIENT_ID):
        return await WarehouseService(self.db).assign_cell_to_client(
            self.cell_ids[address], client_id, self.admin,
        )

    async def approved_line(
        self,
        quantity: int = 100,
        packages: int = 10,
        weight: Decimal = Decimal("50.00"),
        volume: Decimal = Decimal("2.00"),
        product_id: uuid.UUID = PRODUCT_ID,
        client_id: uuid.UUID = CLIENT_ID,
        expiration_date: Optional[date] = date(2027, 1, 1),
        received_at: Optional[datetime] = None,
        lot_number: Optional[str] = None,
        approve: bool = True,
    ) -> EntryOrderLine:
        orders = OrderService(self.db, self.settings)
        order, lines = await orders.create_entry_order(
            EntryOrderCreate(
                client_id=client_id,
                warehouse_id=self.warehouse_id,
                lines=[
                    EntryOrderLineCreate(
                        product_id=product_id,
                        lot_number=lot_number or f"LOT-{uuid.uuid4().hex[:6]}",
                        expiration_date=expiration_date,
                        quantity=quantity,
                        packages=packages,
                        weight=weight,
                        volume=volume,
                        received_at=received_at or datetime(2024, 6, 1, tzinfo=timezone.utc),
                    )
                ],
            ),
            self.admin,
            self.admin.scope,
        )
        if approve:
            await orders.review_entry_order(order.id, "APPROVED", self.pharmacist, self.pharmacist.scope)
        return lines[0]

    async def allocate(
        self,
        line: EntryOrderLine,
        address: str = "A.01.01",
        quantity: Optional[int] = None,
        packages: Optional[int] = None,
        weight: Optional[Decimal] = None,
        volume: Optional[Decimal] = None,
        actor: Optional[Actor] = None,
    ) -> InventoryAllocation:
        actor = actor or self.admin
        return await AllocationService(self.db, self.settings).allocate(
            line.id,
            self.cell_ids[address],
            quantity=line.quantity if quantity is None else quantity,
            packages=line.packages if packages is None else packages,
            weight=line.weight if weight is None else weight,
            volume=line.volume if volume is None else volume,
            actor=actor,
            scope=actor.scope,
        )

    async def approved_allocation(self, address: str = "A.01.01", **line_kwargs) -> InventoryAllocation:
        line = await self.approved_line(**line_kwargs)
        allocation = await self.allocate(line, address)
        result = await QualityControlService(self.db, self.settings).transition(
            allocation.id,
            QualityStatus.APPROVED,
            allocation.remaining_quantity,
            self.pharmacist,
            self.pharmacist.scope,
        )
        return result.updated_allocation

    async def departure_line(
        self,
        requested_quantity: int,
        product_id: uuid.UUID = PRODUCT_ID,
        client_id: uuid.UUID = CLIENT_ID,
        approve: bool = True,
    ):
        orders = OrderService(self.db, self.settings)
        order, lines = await orders.create_departure_order(
            DepartureOrderCreate(
                client_id=client_id,
                warehouse_id=self.warehouse_id,
                lines=[DepartureOrderLineCreate(product_id=product_id, requested_quantity=requested_quantity)],
            ),
            self.admin,
            self.admin.scope,
        )
        if approve:
            await orders.approve_departure_order(order.id, self.admin, self.admin.scope)
        return order, lines[0]


@pytest.fixture
async def stock(db, settings, admin, pharmacist):
    builder = StockBuilder(db, settings, admin, pharmacist)
    await builder.create_warehouse()
    return builder
