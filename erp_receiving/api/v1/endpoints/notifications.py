"""Notification API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Query

from erp_receiving.api.deps import DB, CurrentUser
from erp_receiving.schemas.base import PaginatedResponse
from erp_receiving.schemas.notification import NotificationResponse
from erp_receiving.services.notification_service import NotificationService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    db: DB,
    current_user: CurrentUser,
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    """Notifications for the current user and their department. Admins see all."""
    service = NotificationService(db)
    if current_user.is_admin:
        return await service.list_notifications(unread_only=unread_only, page=page, size=size)
    return await service.list_notifications(
        department=current_user.department,
        user_id=current_user.id,
        unread_only=unread_only,
        page=page,
        size=size,
    )


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(notification_id: UUID, db: DB, current_user: CurrentUser):
    return await NotificationService(db).mark_read(notification_id)
