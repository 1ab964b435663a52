"""Persisted workflow notifications."""
import uuid

import pytest

from erp_receiving.exceptions import NotFoundError
from erp_receiving.models import NotificationType, NotificationPriority
from erp_receiving.services.notification_service import NotificationService


class TestNotifications:

    async def test_audience(self, db):
        service = NotificationService(db)
        store_keeper = uuid.uuid4()
        service.notify(NotificationType.GRN_VERIFICATION, "GRN waiting", "Verify it", department="inventory")
        service.notify(NotificationType.VENDOR_SHORTAGE, "Short", "Chase vendor", department="procurement",
                       priority=NotificationPriority.HIGH)
        service.notify(NotificationType.APPROVAL_DECIDED, "Decided", "Approved", user_id=store_keeper)
        service.notify(NotificationType.INVENTORY_ADDED, "Posted", "Stock in")
        await db.flush()

        inventory = await service.list_notifications(department="inventory")
        assert {n.title for n in inventory["items"]} == {"GRN waiting", "Posted"}

        mine = await service.list_notifications(department="inventory", user_id=store_keeper)
        assert mine["total"] == 3

        everything = await service.list_notifications()
        assert everything["total"] == 4

    async def test_trigger_event_defaults_to_type(self, db):
        notification = NotificationService(db).notify(NotificationType.GRN_VERIFIED, "Verified", "Ready")
        assert notification.trigger_event == "grn_verified"
        assert notification.priority == "medium"

    async def test_mark_read(self, db):
        service = NotificationService(db)
        notification = service.notify(NotificationType.GRN_VERIFIED, "Verified", "Ready", department="inventory")
        await db.flush()

        await service.mark_read(notification.id)

        assert notification.is_read is True
        assert notification.read_at is not None
        assert (await service.list_notifications(department="inventory", unread_only=True))["total"] == 0

    async def test_mark_read_missing(self, db):
        with pytest.raises(NotFoundError):
            await NotificationService(db).mark_read(uuid.uuid4())
