"""
GRN mismatch request model.

Raised by inventory when a recount of a GRN shows shortages and/or overages
that need a procurement decision (accept the shortage, return the overage,
wait for the rest, ...). Lines are copied onto the request with their
computed quantities and values.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Numeric
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from erp_receiving.database import Base
from erp_receiving.db_types import JSONType, UUIDType


class MismatchType(str, Enum):
    SHORTAGE = "shortage"
    OVERAGE = "overage"
    BOTH = "both"


class MismatchRequestedAction(str, Enum):
    """What inventory asks procurement to do about the mismatch."""
    ACCEPT_SHORTAGE = "accept_shortage"
    RETURN_OVERAGE = "return_overage"
    WAIT_FOR_REMAINING = "wait_for_remaining"
    ACCEPT_AND_ADJUST = "accept_and_adjust"
    REQUEST_REPLACEMENT = "request_replacement"
    CANCEL_REMAINING = "cancel_remaining"
    OTHER = "other"


class MismatchRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class GRNMismatchRequest(Base):
    """Shortage/overage claim on a GRN awaiting procurement review."""
    __tablename__ = "grn_mismatch_requests"
    __table_args__ = (
        Index("ix_mismatch_request_grn", "grn_id"),
        Index("ix_mismatch_request_po_status", "purchase_order_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    request_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="GMR-YYYYMMDD-NNNNN"
    )

    grn_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("goods_receipt_notes.id", ondelete="CASCADE"),
        nullable=False
    )
    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False
    )
    grn_number: Mapped[str] = mapped_column(String(30), nullable=False)
    po_number: Mapped[str] = mapped_column(String(30), nullable=False)
    vendor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    mismatch_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="shortage, overage, both"
    )
    mismatch_items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    total_shortage_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_overage_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_shortage_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    total_overage_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    request_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_action: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="accept_shortage, return_overage, wait_for_remaining, accept_and_adjust, "
                "request_replacement, cancel_remaining, other"
    )
    requested_action_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=MismatchRequestStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, approved, rejected, cancelled"
    )
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
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
        return f"<GRNMismatchRequest(number='{self.request_number}', status='{self.status}')>"
