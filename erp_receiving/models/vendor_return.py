"""
Vendor claim models.

VendorReturn: a claim raised against a vendor for a received GRN (shortage
detected at receipt, rejected excess, quality issues raised manually).
VendorRequest: a request sent to the vendor to deliver the short quantities,
raised when a shortage complaint is approved.

Both embed a copy of the affected line items so the claim is unaffected by
later edits to the GRN.
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Text, Numeric, Date
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import inspect as sa_inspect

from erp_receiving.database import Base
from erp_receiving.db_types import JSONType, UUIDType


class ReturnType(str, Enum):
    """Reason a vendor return was raised."""
    SHORTAGE = "shortage"
    EXCESS = "excess"
    QUALITY_ISSUE = "quality_issue"
    WRONG_ITEM = "wrong_item"
    DAMAGED = "damaged"
    OTHER = "other"


class VendorReturnStatus(str, Enum):
    """Vendor return lifecycle."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISPUTED = "disputed"
    CLOSED = "closed"


class ResolutionType(str, Enum):
    """How a vendor return was settled."""
    CREDIT_NOTE = "credit_note"
    REPLACEMENT = "replacement"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    NONE = "none"


class VendorRequestType(str, Enum):
    SHORTAGE = "shortage"
    OVERAGE = "overage"


class VendorRequestStatus(str, Enum):
    """Vendor request lifecycle."""
    PENDING = "pending"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    IN_TRANSIT = "in_transit"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"

    @classmethod
    def open_statuses(cls) -> list[str]:
        """Requests still awaiting a fulfillment GRN."""
        return [cls.PENDING.value, cls.SENT.value, cls.ACKNOWLEDGED.value, cls.IN_TRANSIT.value]


class VendorReturn(Base):
    """Shortage/excess/quality claim against a vendor."""
    __tablename__ = "vendor_returns"
    __table_args__ = (
        Index("ix_vendor_return_po", "purchase_order_id"),
        Index("ix_vendor_return_grn_type", "grn_id", "return_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    return_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="VR-YYYYMMDD-NNNNN"
    )

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False
    )
    grn_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("goods_receipt_notes.id", ondelete="SET NULL"),
        nullable=True
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    return_type: Mapped[str] = mapped_column(
        String(30),
        default=ReturnType.SHORTAGE.value,
        nullable=False,
        index=True,
        comment="shortage, excess, quality_issue, wrong_item, damaged, other"
    )
    return_date: Mapped[date] = mapped_column(
        Date,
        default=lambda: datetime.now(timezone.utc).date(),
        nullable=False
    )

    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    total_shortage_value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0"),
        nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=VendorReturnStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, acknowledged, resolved, disputed, closed"
    )

    # Vendor response
    vendor_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vendor_response_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Resolution
    resolution_type: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="credit_note, replacement, refund, adjustment, none"
    )
    resolution_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    resolution_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
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
        try:
            if sa_inspect(self).detached:
                return f"<VendorReturn(id={self.id})>"
            return f"<VendorReturn(number='{self.return_number}', status='{self.status}')>"
        except Exception:
            return f"<VendorReturn(id={getattr(self, 'id', 'unknown')})>"


class VendorRequest(Base):
    """Request to the vendor to ship short-delivered quantities."""
    __tablename__ = "vendor_requests"
    __table_args__ = (
        Index("ix_vendor_request_po_status", "purchase_order_id", "status"),
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
        comment="SR-YYYYMMDD-NNNNN"
    )

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False
    )
    grn_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("goods_receipt_notes.id", ondelete="SET NULL"),
        nullable=True
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False
    )
    complaint_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("approvals.id", ondelete="SET NULL"),
        nullable=True,
        comment="Approval that raised this request"
    )

    request_type: Mapped[str] = mapped_column(
        String(30),
        default=VendorRequestType.SHORTAGE.value,
        nullable=False
    )
    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    total_value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0"),
        nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=VendorRequestStatus.PENDING.value,
        nullable=False,
        comment="pending, sent, acknowledged, in_transit, fulfilled, cancelled"
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    fulfillment_grn_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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
        return f"<VendorRequest(number='{self.request_number}', status='{self.status}')>"
