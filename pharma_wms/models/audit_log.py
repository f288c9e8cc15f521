import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from pharma_wms.database import Base
from pharma_wms.db_types import UUIDType, JSONType, MeasureType
from pharma_wms.core.enum_utils import enum_comment


class MovementType(str, Enum):
    """Kind of quantity/state-affecting operation recorded in the inventory log."""
    RECEIPT = "RECEIPT"
    QUALITY_TRANSITION = "QUALITY_TRANSITION"
    DEPARTURE = "DEPARTURE"


class InventoryLog(Base):
    """
    Append-only inventory audit log.

    One row per resulting allocation change: a receipt, each side of a
    quality transition, each dispatched reservation. Signed *_change columns
    are the net stock delta of the product; quantity_moved with the
    from/to columns records relocations and status moves.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        UniqueConstraint("operation_id", "allocation_id", name="uq_inventory_log_operation_allocation"),
        Index("ix_inventory_logs_product_created", "product_id", "created_at"),
        Index("ix_inventory_logs_cell_created", "cell_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    operation_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)

    # Who performed the movement
    user_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)

    movement_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment=enum_comment(MovementType)
    )

    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    allocation_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    cell_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)

    # Net stock delta
    quantity_change: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    package_change: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weight_change: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    volume_change: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)

    # Status / location moves
    quantity_moved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    from_cell_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    to_cell_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Source documents
    entry_order_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    departure_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    departure_allocation_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<InventoryLog(type='{self.movement_type}', allocation='{self.allocation_id}', delta={self.quantity_change})>"


class AuditLog(Base):
    """
    Entity-level change log: cell role changes, client cell assignments,
    order reviews and approvals.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Actions: CELL_ROLE_CHANGE, CLIENT_CELL_ASSIGNED, ENTRY_ORDER_REVIEWED,
    #          DEPARTURE_ORDER_APPROVAL, RESERVATION_RELEASED, ...

    # Entity being modified
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Change tracking
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
