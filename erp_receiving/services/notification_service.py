"""
Workflow Notification Service

Writes Notification rows inside the caller's transaction, so a notification
exists only if the workflow step that produced it was committed. Delivery
(email, push) is outside this service; rows are read by the dashboard.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import NotFoundError
from erp_receiving.models.notifications import Notification, NotificationPriority, NotificationType


logger = logging.getLogger(__name__)


class NotificationService:
    """Persisted, fire-and-forget workflow notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def notify(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        department: Optional[str] = None,
        user_id: Optional[UUID] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
        trigger_event: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Queue a notification on the session.

        Args:
            notification_type: Kind of event
            title: Short title shown in the dashboard
            message: Full message
            department: Broadcast to a department (None with no user = everyone)
            user_id: Direct recipient
            priority: low / medium / high / urgent
            entity_type, entity_id: Related record
            actor_id: User who triggered the event
            trigger_event: Machine readable event key
            data: Extra payload (ids, numbers)
        """
        notification = Notification(
            notification_type=notification_type.value,
            title=title,
            message=message,
            recipient_department=department,
            recipient_user_id=user_id,
            priority=priority.value,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            trigger_event=trigger_event or notification_type.value,
            extra_data=data or {},
        )
        self.db.add(notification)
        logger.info(
            f"Notification [{notification_type.value}] to {department or user_id or 'all'}: {title}"
        )
        return notification

    async def list_notifications(
        self,
        department: Optional[str] = None,
        user_id: Optional[UUID] = None,
        unread_only: bool = False,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        """Notifications visible to a user: direct, their department's, and broadcasts."""
        query = select(Notification)
        count_query = select(func.count(Notification.id))

        conditions = []
        if department or user_id:
            audience = Notification.recipient_user_id.is_(None) & Notification.recipient_department.is_(None)
            if department:
                audience = audience | (Notification.recipient_department == department)
            if user_id:
                audience = audience | (Notification.recipient_user_id == user_id)
            conditions.append(audience)
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        for condition in conditions:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(Notification.created_at.desc()).offset((page - 1) * size).limit(size)
        items: List[Notification] = list((await self.db.execute(query)).scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def mark_read(self, notification_id: UUID) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if not notification:
            raise NotFoundError("Notification", notification_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            await flush_or_raise(self.db, "notification update")
        return notification
