"""
Document Sequence Service for order numbers.

USAGE:
    service = DocumentSequenceService(db)
    order_no = await service.get_next_number(settings.ENTRY_ORDER_PREFIX)
    # Returns: OI-00001
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings, settings as default_settings
from pharma_wms.core.exceptions import ValidationError
from pharma_wms.models.document_sequence import DocumentSequence


class DocumentSequenceService:
    """
    Generates sequential order numbers.

    Uses database-level locking (SELECT FOR UPDATE) so concurrent callers
    never receive the same number. Runs inside the caller's transaction.
    """

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings

    async def _get_or_create_sequence(self, prefix: str) -> DocumentSequence:
        result = await self.db.execute(
            select(DocumentSequence)
            .where(DocumentSequence.prefix == prefix)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = DocumentSequence(
                prefix=prefix,
                current_number=0,
                padding_length=self.settings.ORDER_NUMBER_PADDING,
                separator="-",
            )
            self.db.add(sequence)
            await self.db.flush()
        return sequence

    async def get_next_number(self, prefix: str) -> str:
        """Increment the prefix's counter and return e.g. OI-00001."""
        prefix = (prefix or "").strip().upper()
        if not prefix:
            raise ValidationError("Document prefix is required")

        sequence = await self._get_or_create_sequence(prefix)
        number = sequence.get_next_number()
        await self.db.flush()
        return number

