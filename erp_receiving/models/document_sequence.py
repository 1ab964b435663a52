"""
Document Sequence Model for Atomic Number Generation

Numbers are date scoped and restart every day:

    GRN-20261019-00001   Goods Receipt Note
    VR-20261019-00001    Vendor Return
    SR-20261019-00001    Vendor (shortage) Request
    INV-20261019-00001   Inventory barcode
    PO-20261019-00001    Purchase Order

One counter row per (prefix, day). The row is locked while it is
incremented, so concurrent requests never compute the same number.
"""

import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_receiving.database import Base
from erp_receiving.db_types import UUIDType


class DocumentPrefix(str, Enum):
    """Document types that use sequence numbering."""
    GRN = "GRN"
    VR = "VR"
    SR = "SR"
    INV = "INV"
    PO = "PO"
    GMR = "GMR"


class DocumentSequence(Base):
    """
    Counter row for one document prefix on one day.

    Example:
        prefix = "GRN"
        sequence_date = "20261019"
        current_number = 42
        → Next GRN number: GRN-20261019-00043
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "prefix", "sequence_date",
            name="uq_document_prefix_date"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    prefix: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        comment="GRN, VR, SR, INV, PO"
    )
    sequence_date: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        comment="YYYYMMDD"
    )

    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(
        Integer,
        default=5,
        nullable=False,
        comment="Zero padding for sequence (5 = 00001)"
    )

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

    def format_number(self, number: int) -> str:
        return f"{self.prefix}-{self.sequence_date}-{str(number).zfill(self.padding_length)}"

    def get_next_number(self) -> str:
        """
        Generate next document number.

        NOTE: This method increments current_number but does NOT
        flush. The caller owns the transaction.
        """
        self.current_number += 1
        return self.format_number(self.current_number)

    def preview_next_number(self) -> str:
        """Preview next number without incrementing."""
        return self.format_number(self.current_number + 1)

    @staticmethod
    def date_key(on: Optional[date] = None) -> str:
        """YYYYMMDD key for the given day (UTC today by default)."""
        on = on or datetime.now(timezone.utc).date()
        return on.strftime("%Y%m%d")

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.prefix}-{self.sequence_date}: {self.current_number})>"
