"""
Document Sequence Service for Atomic Number Generation

Format: {PREFIX}-{YYYYMMDD}-{NNNNN}, restarting at 00001 every day.

USAGE:
    from erp_receiving.services.document_sequence_service import DocumentSequenceService

    async def create_grn(db: AsyncSession):
        grn_number = await DocumentSequenceService(db).get_next_number("GRN")
        # Returns: GRN-20261019-00001

The counter row is read with SELECT ... FOR UPDATE and incremented inside
the caller's transaction, so the lock is held until that transaction ends.
Two requests racing to create the first counter row of a day hit the
(prefix, sequence_date) unique constraint; the loser gets a PersistenceError
and can retry.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.config import settings
from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import ValidationError
from erp_receiving.models.document_sequence import DocumentSequence, DocumentPrefix


logger = logging.getLogger(__name__)

VALID_PREFIXES = {p.value for p in DocumentPrefix}


class DocumentSequenceService:
    """Service for generating date-scoped, gap-free document numbers."""

    def __init__(self, db: AsyncSession, padding: Optional[int] = None):
        self.db = db
        self.padding = padding or settings.DOCUMENT_NUMBER_PADDING

    async def get_next_number(self, prefix: str, on: Optional[date] = None) -> str:
        """
        Get next document number with atomic increment.

        Args:
            prefix: Document prefix (GRN, VR, SR, INV, PO)
            on: Day the number belongs to (UTC today by default)

        Returns:
            Formatted document number, e.g. GRN-20261019-00001

        Raises:
            ValidationError: If prefix is unknown
            PersistenceError: If the counter row could not be written
        """
        prefix = self._validate_prefix(prefix)
        sequence = await self._get_or_create_sequence(prefix, DocumentSequence.date_key(on))

        number = sequence.get_next_number()
        await flush_or_raise(self.db, f"{prefix} numbering")

        logger.debug(f"Issued document number {number}")
        return number

    async def preview_next_number(self, prefix: str, on: Optional[date] = None) -> str:
        """Preview what the next number would be without incrementing."""
        prefix = self._validate_prefix(prefix)
        date_key = DocumentSequence.date_key(on)

        result = await self.db.execute(
            select(DocumentSequence).where(
                DocumentSequence.prefix == prefix,
                DocumentSequence.sequence_date == date_key,
            )
        )
        sequence = result.scalar_one_or_none()
        if sequence:
            return sequence.preview_next_number()

        return f"{prefix}-{date_key}-{'1'.zfill(self.padding)}"

    def _validate_prefix(self, prefix: str) -> str:
        prefix = prefix.upper()
        if prefix not in VALID_PREFIXES:
            valid = ", ".join(sorted(VALID_PREFIXES))
            raise ValidationError(f"Invalid document prefix '{prefix}'. Valid prefixes: {valid}")
        return prefix

    async def _get_or_create_sequence(self, prefix: str, date_key: str) -> DocumentSequence:
        """Get the day's counter row with a row lock, creating it on first use."""
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.prefix == prefix,
                DocumentSequence.sequence_date == date_key,
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence:
            return sequence

        sequence = DocumentSequence(
            prefix=prefix,
            sequence_date=date_key,
            current_number=0,
            padding_length=self.padding,
        )
        self.db.add(sequence)
        await flush_or_raise(self.db, f"{prefix} sequence initialisation")
        logger.info(f"Started {prefix} sequence for {date_key}")
        return sequence
