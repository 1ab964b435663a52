"""
Purchase Order and Goods Receipt Note models.

A PurchaseOrder owns an ordered chain of GoodsReceiptNotes: the first GRN
(``grn_sequence=1``, ``is_first_grn=True``) and any shortage-fulfillment
follow-ups, each pointing back at the first through ``original_grn_id``.

A GRN carries two independent status axes:
- ``status``: coarse document lifecycle (draft -> received -> inspected -> approved)
- ``verification_status``: quantity verification outcome
The legal combinations are declared in services/grn_state_machine.py.
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric, Date
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import inspect as sa_inspect

from erp_receiving.database import Base
from erp_receiving.db_types import JSONType, UUIDType

if TYPE_CHECKING:
    from erp_receiving.models.vendor import Vendor


class POStatus(str, Enum):
    """Purchase Order status."""
    DRAFT = "draft"
    SENT = "sent"
    GRN_REQUESTED = "grn_requested"  # Procurement asked inventory to receive
    GRN_APPROVED = "grn_approved"  # Inventory accepted the GRN request
    RECEIVED = "received"
    EXCESS_RECEIVED = "excess_received"
    REOPENED = "reopened"  # Shortage complaint approved, awaiting follow-up GRN
    COMPLETED = "completed"
    REJECTED = "rejected"


class GRNStatus(str, Enum):
    """Goods Receipt Note document status."""
    DRAFT = "draft"
    RECEIVED = "received"
    INSPECTED = "inspected"
    APPROVED = "approved"
    REJECTED = "rejected"
    VENDOR_REVERT_REQUESTED = "vendor_revert_requested"
    EXCESS_RECEIVED = "excess_received"


class VerificationStatus(str, Enum):
    """Goods Receipt Note quantity verification status."""
    PENDING = "pending"
    VERIFIED = "verified"
    DISCREPANCY = "discrepancy"
    APPROVED = "approved"  # Discrepancy accepted by a manager
    REJECTED = "rejected"


class ExcessAction(str, Enum):
    """How overage quantities on a GRN were resolved."""
    AUTO_REJECT = "auto_reject"
    APPROVE_EXCESS = "approve_excess"


class PurchaseOrder(Base):
    """
    Purchase Order header with its item snapshot.

    Items are stored as an ordered JSON list captured at order time:
    ``[{"product_name", "product_code", "quantity", "rate", "uom"}, ...]``.
    GRN lines reference them by position (``item_index``).
    """
    __tablename__ = "purchase_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    po_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="PO-YYYYMMDD-NNNNN"
    )
    po_date: Mapped[date] = mapped_column(
        Date,
        default=lambda: datetime.now(timezone.utc).date(),
        nullable=False
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(50),
        default=POStatus.SENT.value,
        nullable=False,
        index=True,
        comment="draft, sent, grn_requested, grn_approved, received, excess_received, reopened, completed, rejected"
    )

    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0")
    )

    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    received_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    grn_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    # Relationships
    vendor: Mapped["Vendor"] = relationship("Vendor")
    grns: Mapped[List["GoodsReceiptNote"]] = relationship(
        "GoodsReceiptNote",
        back_populates="purchase_order",
        order_by="GoodsReceiptNote.grn_sequence",
    )

    def __repr__(self) -> str:
        try:
            if sa_inspect(self).detached:
                return f"<PurchaseOrder(id={self.id})>"
            return f"<PurchaseOrder(number='{self.po_number}', status='{self.status}')>"
        except Exception:
            return f"<PurchaseOrder(id={getattr(self, 'id', 'unknown')})>"


class GoodsReceiptNote(Base):
    """
    Goods Receipt Note model.
    Records material received against a PO, line by line, with the
    shortage/overage computed against ordered and invoiced quantities.
    """
    __tablename__ = "goods_receipt_notes"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "grn_sequence", name="uq_grn_po_sequence"),
        Index("ix_grn_po_status", "purchase_order_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    grn_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="GRN-YYYYMMDD-NNNNN"
    )
    received_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Against PO (vendor denormalized so the GRN survives PO edits)
    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Vendor's documents
    supplier_invoice_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    supplier_invoice_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    challan_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Vendor's delivery challan number"
    )
    challan_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Line items (see services/shortage.py for the per-line fields)
    items_received: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Quantities Summary
    total_ordered_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"))
    total_received_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"))
    total_shortage_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"))
    total_overage_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"))
    total_received_value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0"),
        comment="Sum of received_quantity * rate"
    )

    # Status axes
    status: Mapped[str] = mapped_column(
        String(50),
        default=GRNStatus.RECEIVED.value,
        nullable=False,
        index=True,
        comment="draft, received, inspected, approved, rejected, vendor_revert_requested, excess_received"
    )
    verification_status: Mapped[str] = mapped_column(
        String(50),
        default=VerificationStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, verified, discrepancy, approved, rejected"
    )

    # Verification
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    verification_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    discrepancy_details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Discrepancy approval
    discrepancy_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    discrepancy_approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    discrepancy_approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Inventory posting (idempotency guard)
    inventory_added: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    inventory_added_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    inventory_location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # GRN chain
    grn_sequence: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_first_grn: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    original_grn_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("goods_receipt_notes.id", ondelete="RESTRICT"),
        nullable=True,
        comment="First GRN of the PO, set on follow-up GRNs"
    )
    vendor_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        comment="Shortage request fulfilled by this GRN"
    )
    previous_po_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="PO status before this GRN was raised, restored if the GRN is deleted"
    )

    # Vendor revert
    vendor_revert_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    vendor_revert_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vendor_revert_items: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    vendor_revert_requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    vendor_revert_requested_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Excess handling
    excess_action: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="auto_reject, approve_excess"
    )
    excess_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship(
        "PurchaseOrder",
        back_populates="grns"
    )

    @property
    def state(self) -> tuple[str, str]:
        """Current (status, verification_status) pair."""
        return (self.status, self.verification_status)

    @property
    def has_shortages(self) -> bool:
        return self._any_positive("shortage_quantity")

    @property
    def has_overages(self) -> bool:
        return self._any_positive("overage_quantity")

    def _any_positive(self, key: str) -> bool:
        from erp_receiving.services.shortage import to_decimal
        return any(to_decimal(item.get(key)) > 0 for item in self.items_received or [])

    def __repr__(self) -> str:
        try:
            if sa_inspect(self).detached:
                return f"<GoodsReceiptNote(id={self.id})>"
            return (
                f"<GoodsReceiptNote(number='{self.grn_number}', status='{self.status}', "
                f"verification='{self.verification_status}')>"
            )
        except Exception:
            return f"<GoodsReceiptNote(id={getattr(self, 'id', 'unknown')})>"
