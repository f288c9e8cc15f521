"""Warehouse, storage cell and client cell assignment models."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharma_wms.database import Base
from pharma_wms.db_types import UUIDType, JSONType, MeasureType
from pharma_wms.core.enum_utils import enum_comment
from pharma_wms.core.footprint import Footprint


class CellRole(str, Enum):
    """Quality purpose a storage cell is reserved for."""
    STANDARD = "STANDARD"    # Quarantine and approved stock
    DAMAGED = "DAMAGED"
    EXPIRED = "EXPIRED"
    RETURNS = "RETURNS"
    SAMPLES = "SAMPLES"      # Retained counter-samples
    REJECTED = "REJECTED"


class CellStatus(str, Enum):
    """Occupancy status of a storage cell."""
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"


class Warehouse(Base):
    """Physical warehouse made of addressable cells."""
    __tablename__ = "warehouses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    cells: Mapped[List["WarehouseCell"]] = relationship(
        "WarehouseCell",
        back_populates="warehouse",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Warehouse(name='{self.name}')>"


class WarehouseCell(Base):
    """
    Addressable storage slot (row / bay / position) inside a warehouse.

    current_* columns hold the aggregate footprint of the ACTIVE allocations
    located in the cell. They are only written through the cell ledger.
    """
    __tablename__ = "warehouse_cells"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "row", "bay", "position", name="uq_warehouse_cell_address"),
        Index("ix_warehouse_cells_role_status", "warehouse_id", "cell_role", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Address
    row: Mapped[str] = mapped_column(String(5), nullable=False)
    bay: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    cell_role: Mapped[str] = mapped_column(
        String(20),
        default=CellRole.STANDARD.value,
        nullable=False,
        comment=enum_comment(CellRole)
    )
    is_passage: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Aisle/passage slot, never allocatable"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=CellStatus.AVAILABLE.value,
        nullable=False,
        comment=enum_comment(CellStatus)
    )

    # Capacity ceilings (NULL = unbounded)
    max_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_packages: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_weight: Mapped[Optional[Decimal]] = mapped_column(MeasureType, nullable=True)
    max_volume: Mapped[Optional[Decimal]] = mapped_column(MeasureType, nullable=True)

    # Current usage
    current_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_packages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_weight: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    current_volume: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    warehouse: Mapped["Warehouse"] = relationship("Warehouse", back_populates="cells", lazy="raise")

    __mapper_args__ = {"version_id_col": version}

    @property
    def address(self) -> str:
        return f"{self.row}.{self.bay:02d}.{self.position:02d}"

    @property
    def usage(self) -> Footprint:
        return Footprint(
            quantity=self.current_quantity or 0,
            packages=self.current_packages or 0,
            weight=self.current_weight or Decimal("0"),
            volume=self.current_volume or Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<WarehouseCell(address='{self.address}', role='{self.cell_role}', status='{self.status}')>"


class ClientCellAssignment(Base):
    """Cells a client's users are allowed to work with."""
    __tablename__ = "client_cell_assignments"
    __table_args__ = (
        UniqueConstraint("client_id", "cell_id", name="uq_client_cell_assignment"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    client_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    cell_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouse_cells.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ClientCellAssignment(client='{self.client_id}', cell='{self.cell_id}')>"
