"""Notification schemas."""
from datetime import datetime
from typing import Optional, Any
from uuid import UUID

from erp_receiving.schemas.base import BaseResponseSchema


class NotificationResponse(BaseResponseSchema):
    id: UUID
    notification_type: str
    priority: str
    title: str
    message: str
    recipient_user_id: Optional[UUID] = None
    recipient_department: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    extra_data: Optional[dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
