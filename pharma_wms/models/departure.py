"""Departure (outbound) order models and reservations against allocations."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text
from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from pharma_wms.database import Base
from pharma_wms.db_types import UUIDType, MeasureType
from pharma_wms.core.enum_utils import enum_comment
from pharma_wms.core.footprint import Footprint


class DepartureStatus(str, Enum):
    """Departure order status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REVISION = "REVISION"
    REJECTED = "REJECTED"
    PARTIALLY_DISPATCHED = "PARTIALLY_DISPATCHED"
    DISPATCHED = "DISPATCHED"
    COMPLETED = "COMPLETED"


class DepartureAllocationStatus(str, Enum):
    """Lifecycle of a reservation against a source allocation."""
    RESERVED = "RESERVED"      # Frozen, not yet removed from stock
    DISPATCHED = "DISPATCHED"  # Permanent, stock decremented
    RELEASED = "RELEASED"      # Reservation cancelled before dispatch


class DepartureOrder(Base):
    """Outbound order for one client."""
    __tablename__ = "departure_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_no: Mapped[str] = mapped_column(String(30), nullable=False, unique=True, index=True)
    client_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id"),
        nullable=False
    )

    order_status: Mapped[str] = mapped_column(
        String(30),
        default=DepartureStatus.PENDING.value,
        nullable=False,
        index=True,
        comment=enum_comment(DepartureStatus)
    )
    destination_point: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transport_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    observations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dispatched_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<DepartureOrder(order_no='{self.order_no}', status='{self.order_status}')>"


class DepartureOrderLine(Base):
    """Requested product quantity on a departure order."""
    __tablename__ = "departure_order_lines"
    __table_args__ = (
        CheckConstraint("requested_quantity > 0", name="ck_departure_line_requested_positive"),
        CheckConstraint("dispatched_quantity <= requested_quantity", name="ck_departure_line_not_overdispatched"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    departure_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("departure_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    product_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    requested_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    dispatched_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def is_fully_dispatched(self) -> bool:
        return self.dispatched_quantity >= self.requested_quantity

    def __repr__(self) -> str:
        return (
            f"<DepartureOrderLine(product='{self.product_id}', requested={self.requested_quantity}, "
            f"dispatched={self.dispatched_quantity})>"
        )


class DepartureAllocation(Base):
    """
    Reservation of a frozen quantity from one source allocation for one
    departure line. Becomes permanent once dispatched.
    """
    __tablename__ = "departure_allocations"
    __table_args__ = (
        CheckConstraint("reserved_quantity > 0", name="ck_departure_allocation_positive"),
        Index("ix_departure_allocations_source_status", "source_allocation_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    departure_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("departure_orders.id"),
        nullable=False,
        index=True
    )
    departure_order_line_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("departure_order_lines.id"),
        nullable=False,
        index=True
    )
    source_allocation_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_allocations.id"),
        nullable=False
    )
    cell_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouse_cells.id"),
        nullable=False
    )

    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_packages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_weight: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    reserved_volume: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=DepartureAllocationStatus.RESERVED.value,
        nullable=False,
        comment=enum_comment(DepartureAllocationStatus)
    )

    reserved_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    reserved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def footprint(self) -> Footprint:
        return Footprint(
            quantity=self.reserved_quantity,
            packages=self.reserved_packages or 0,
            weight=self.reserved_weight or Decimal("0"),
            volume=self.reserved_volume or Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<DepartureAllocation(source='{self.source_allocation_id}', qty={self.reserved_quantity}, status='{self.status}')>"
