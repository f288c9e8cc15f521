"""Entry (inbound) order models."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Text
from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pharma_wms.database import Base
from pharma_wms.db_types import UUIDType, MeasureType
from pharma_wms.core.enum_utils import enum_comment
from pharma_wms.core.footprint import Footprint


class ReviewStatus(str, Enum):
    """Review outcome of an entry order."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVISION = "NEEDS_REVISION"


class PresentationType(str, Enum):
    """How the goods are packed on arrival."""
    CAJA = "CAJA"          # Box
    PALETA = "PALETA"      # Pallet
    SACO = "SACO"          # Sack
    UNIDAD = "UNIDAD"      # Unit
    PAQUETE = "PAQUETE"    # Pack
    TAMBOS = "TAMBOS"      # Barrels
    BULTO = "BULTO"        # Bundle
    OTRO = "OTRO"


class EntryOrder(Base):
    """Inbound order registered by (or for) a client."""
    __tablename__ = "entry_orders"

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
        nullable=False,
        index=True
    )

    review_status: Mapped[str] = mapped_column(
        String(20),
        default=ReviewStatus.PENDING.value,
        nullable=False,
        comment=enum_comment(ReviewStatus)
    )
    review_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    guide_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    observations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def is_approved(self) -> bool:
        return self.review_status == ReviewStatus.APPROVED.value

    def __repr__(self) -> str:
        return f"<EntryOrder(order_no='{self.order_no}', status='{self.review_status}')>"


class EntryOrderLine(Base):
    """One product/lot line of an entry order. Immutable once the order is approved."""
    __tablename__ = "entry_order_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_entry_line_quantity_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    entry_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("entry_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    product_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    manufacturing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    packages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weight: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    volume: Mapped[Decimal] = mapped_column(MeasureType, default=Decimal("0"), nullable=False)
    presentation: Mapped[str] = mapped_column(
        String(20),
        default=PresentationType.CAJA.value,
        nullable=False,
        comment=enum_comment(PresentationType)
    )

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def footprint(self) -> Footprint:
        return Footprint(
            quantity=self.quantity,
            packages=self.packages or 0,
            weight=self.weight or Decimal("0"),
            volume=self.volume or Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<EntryOrderLine(product='{self.product_id}', lot='{self.lot_number}', qty={self.quantity})>"
