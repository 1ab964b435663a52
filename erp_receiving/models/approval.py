"""
Approval gate model.

A single polymorphic table: ``entity_type`` + ``entity_id`` identify what is
gated, ``stage_key`` identifies why. The side effects of approving a given
(entity_type, stage_key) pair are registered in services/approval_service.py.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import inspect as sa_inspect

from erp_receiving.database import Base
from erp_receiving.db_types import JSONType, UUIDType


class ApprovalEntityType(str, Enum):
    """Types of entities that can require approval."""
    PURCHASE_ORDER = "purchase_order"
    GRN_CREATION = "grn_creation"


class ApprovalStageKey(str, Enum):
    """Known approval stages."""
    GRN_SHORTAGE_COMPLAINT = "grn_shortage_complaint"
    GRN_OVERAGE_COMPLAINT = "grn_overage_complaint"
    GRN_INVOICE_MISMATCH = "grn_invoice_mismatch"
    GRN_CREATION_REQUEST = "grn_creation_request"


class ApprovalStatus(str, Enum):
    """Status of an approval."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    CANCELED = "canceled"

    @classmethod
    def open_statuses(cls) -> set[str]:
        """Statuses from which a decision can still be made."""
        return {cls.PENDING.value, cls.IN_PROGRESS.value}


class Approval(Base):
    """Generic approval record gating progress of a PO or GRN request."""
    __tablename__ = "approvals"
    __table_args__ = (
        Index("ix_approval_entity", "entity_type", "entity_id"),
        Index("ix_approval_stage_status", "stage_key", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Entity being approved
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="purchase_order, grn_creation"
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        nullable=False,
        comment="ID of the gated entity"
    )
    stage_key: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="grn_shortage_complaint, grn_overage_complaint, grn_invoice_mismatch, grn_creation_request"
    )
    stage_label: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        default=ApprovalStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, in_progress, approved, rejected, skipped, canceled"
    )

    # Decision
    reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    decision_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    assigned_to_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    assigned_department: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Payload needed to synthesize side effects (items_affected, grn_id, ...)
    approval_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        default=dict,
        nullable=False
    )

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

    @property
    def is_open(self) -> bool:
        return self.status in ApprovalStatus.open_statuses()

    def __repr__(self) -> str:
        try:
            if sa_inspect(self).detached:
                return f"<Approval(id={self.id})>"
            return f"<Approval(stage='{self.stage_key}', status='{self.status}')>"
        except Exception:
            return f"<Approval(id={getattr(self, 'id', 'unknown')})>"
