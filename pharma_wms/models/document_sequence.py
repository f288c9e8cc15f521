"""
Order number sequences.

One counter row per prefix; incremented under SELECT FOR UPDATE so two
operators registering orders at the same time never receive the same number.

    OI-00001  entry order
    OS-00001  departure order
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from pharma_wms.database import Base
from pharma_wms.db_types import UUIDType


class DocumentSequence(Base):
    __tablename__ = "document_sequences"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    prefix: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    separator: Mapped[str] = mapped_column(String(5), default="-", nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def format_number(self, number: int) -> str:
        return f"{self.prefix}{self.separator}{str(number).zfill(self.padding_length)}"

    def get_next_number(self) -> str:
        """Increment the counter and return the formatted number."""
        self.current_number += 1
        return self.format_number(self.current_number)

    def __repr__(self) -> str:
        return f"<DocumentSequence(prefix='{self.prefix}', current={self.current_number})>"
