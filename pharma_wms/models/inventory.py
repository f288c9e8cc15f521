"""Inventory allocation, inventory record and quality transition models."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from pharma_wms.database import Base
from pharma_wms.db_types import UUIDType, MeasureType
from pharma_wms.core.enum_utils import enum_comment
from pharma_wms.core.footprint import Footprint


class QualityStatus(str, Enum):
    """Pharmaceutical quality-control state of an allocation."""
    QUARANTINE = "QUARANTINE"  # Initial state on receipt
    APPROVED = "APPROVED"      # Released for dispatch
    RETURNS = "RETURNS"
    SAMPLES = "SAMPLES"        # Counter-samples kept by QA
    REJECTED = "REJECTED"


class LifecycleStatus(str, Enum):
    """Physical lifecycle of an allocation."""
    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"


class InventoryStatus(str, Enum):
    """Operational status shown on inventory records."""
    QUARANTINED = "QUARANTINED"
    AVAILABLE = "AVAILABLE"
    RETURNED = "RETURNED"
    SAMPLE_HOLD = "SAMPLE_HOLD"
    REJECTED_HOLD = "REJECTED_HOLD"
    DEPLETED = "DEPLETED"


QUALITY_TO_INVENTORY_STATUS = {
    QualityStatus.QUARANTINE.value: InventoryStatus.QUARANTINED.value,
    QualityStatus.APPROVED.value: InventoryStatus.AVAILABLE.value,
    QualityStatus.RETURNS.value: InventoryStatus.RETURNED.value,
    QualityStatus.SAMPLES.value: InventoryStatus.SAMPLE_HOLD.value,
    QualityStatus.REJECTED.value: InventoryStatus.REJECTED_HOLD.value,
}


class InventoryAllocation(Base):
    """
    Quantity of one entry-order line bound to one cell with a quality status.

    allocated_* is the share of the source line this allocation accounts for
    (reduced only when a quality split carves a new allocation out of it);
    remaining_* is what is physically still in the cell. Allocations are never
    deleted: a DEPLETED allocation stays as the audit unit for its history.
    """
    __tablename__ = "inventory_allocations"
    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_allocation_remaining_non_negative"),
        CheckConstraint("remaining_quantity <= allocated_quantity", name="ck_allocation_remaining_le_allocated"),
        Index("ix_allocations_fifo", "product_id", "quality_status", "lifecycle_status", "expiration_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Lineage
    entry_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("entry_orders.id"),
        nullable=False,
        index=True
    )
    entry_order_line_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("entry_order_lines.id"),
        nullable=False,
        index=True
    )
    parent_allocation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_allocations.id"),
        nullable=True,
        comment="Allocation this one was split from"
    )
    client_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Location
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id"),
        nullable=False,
        index=True
    )
    cell_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouse_cells.id"),
        nullable=False,
        index=True
    )

    # Share of the source line
    allocated_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    allocated_packages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    allocated_weight: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    allocated_volume: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    # Physically present
    remaining_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_packages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_weight: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    remaining_volume: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    quality_status: Mapped[str] = mapped_column(
        String(20),
        default=QualityStatus.QUARANTINE.value,
        nullable=False,
        index=True,
        comment=enum_comment(QualityStatus)
    )
    lifecycle_status: Mapped[str] = mapped_column(
        String(20),
        default=LifecycleStatus.ACTIVE.value,
        nullable=False,
        comment=enum_comment(LifecycleStatus)
    )

    presentation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    guide_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    observations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    allocated_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    last_modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def remaining(self) -> Footprint:
        return Footprint(
            quantity=self.remaining_quantity,
            packages=self.remaining_packages or 0,
            weight=self.remaining_weight or Decimal("0"),
            volume=self.remaining_volume or Decimal("0"),
        )

    @property
    def allocated(self) -> Footprint:
        return Footprint(
            quantity=self.allocated_quantity,
            packages=self.allocated_packages or 0,
            weight=self.allocated_weight or Decimal("0"),
            volume=self.allocated_volume or Decimal("0"),
        )

    @property
    def is_active(self) -> bool:
        return self.lifecycle_status == LifecycleStatus.ACTIVE.value

    def __repr__(self) -> str:
        return (
            f"<InventoryAllocation(id='{self.id}', status='{self.quality_status}', "
            f"remaining={self.remaining_quantity})>"
        )


class InventoryRecord(Base):
    """
    Current stock of one product in one cell under one quality status.

    Mirrors the allocations it aggregates; written only through the
    allocation delta primitive.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        UniqueConstraint("product_id", "cell_id", "quality_status", name="uq_inventory_record_position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id"),
        nullable=False
    )
    cell_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouse_cells.id"),
        nullable=False,
        index=True
    )
    quality_status: Mapped[str] = mapped_column(String(20), nullable=False, comment=enum_comment(QualityStatus))
    status: Mapped[str] = mapped_column(
        String(20),
        default=InventoryStatus.QUARANTINED.value,
        nullable=False,
        comment=enum_comment(InventoryStatus)
    )

    current_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_packages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_weight: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    current_volume: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    last_modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<InventoryRecord(product='{self.product_id}', status='{self.status}', qty={self.current_quantity})>"


class QualityControlTransition(Base):
    """History of quality status changes, one row per transition."""
    __tablename__ = "quality_control_transitions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    allocation_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_allocations.id"),
        nullable=False,
        index=True
    )
    new_allocation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_allocations.id"),
        nullable=True,
        comment="Set when the transition split the allocation"
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)

    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity_moved: Mapped[int] = mapped_column(Integer, nullable=False)
    packages_moved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weight_moved: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    volume_moved: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    from_cell_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), ForeignKey("warehouse_cells.id"), nullable=False)
    to_cell_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), ForeignKey("warehouse_cells.id"), nullable=False)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<QualityControlTransition({self.from_status} -> {self.to_status}, qty={self.quantity_moved})>"
