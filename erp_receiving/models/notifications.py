"""
Notification model.

Notifications are persisted rows written by the workflow and read by the
dashboard; nothing in the workflow consumes them.
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, String, Text, Boolean, DateTime, Index

from erp_receiving.database import Base
from erp_receiving.db_types import UUIDType, JSONType


class NotificationType(str, Enum):
    """Types of workflow notifications."""
    GRN_VERIFICATION = "grn_verification"
    GRN_VERIFIED = "grn_verified"
    GRN_DISCREPANCY = "grn_discrepancy"
    GRN_DISCREPANCY_RESOLVED = "grn_discrepancy_resolved"
    GRN_REQUEST = "grn_request"
    INVENTORY_ADDED = "inventory_added"
    VENDOR_SHORTAGE = "vendor_shortage"
    VENDOR_OVERAGE = "vendor_overage"
    VENDOR_REVERT = "vendor_revert"
    VENDOR_RETURN_CREATED = "vendor_return_created"
    VENDOR_RETURN_UPDATED = "vendor_return_updated"
    VENDOR_REQUEST_SENT = "vendor_request_sent"
    APPROVAL_DECIDED = "approval_decided"
    GRN_MISMATCH_REQUEST = "grn_mismatch_request"
    GRN_MISMATCH_APPROVED = "grn_mismatch_approved"
    GRN_MISMATCH_REJECTED = "grn_mismatch_rejected"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Notification(Base):
    """
    Notification row. A null recipient with a department is a department
    broadcast; both null is a broadcast to everyone.
    """
    __tablename__ = "notifications"

    id = Column(UUIDType, primary_key=True, default=uuid4)

    # Recipient
    recipient_user_id = Column(UUIDType, index=True)
    recipient_department = Column(String(50), index=True, comment="procurement, inventory, finance, admin, ...")

    # Notification content
    notification_type = Column(String(50), nullable=False, index=True)
    priority = Column(String(20), default=NotificationPriority.MEDIUM.value, nullable=False, comment="low, medium, high, urgent")

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Reference to related entity
    entity_type = Column(String(50))  # e.g. "purchase_order", "grn", "vendor_return"
    entity_id = Column(UUIDType)
    trigger_event = Column(String(100))
    actor_id = Column(UUIDType)

    extra_data = Column(JSONType, default=dict)

    # Status
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_notifications_department_unread', 'recipient_department', 'is_read'),
        Index('ix_notifications_created', 'created_at'),
    )

    def __repr__(self):
        return f"<Notification(type='{self.notification_type}', title='{self.title}')>"
