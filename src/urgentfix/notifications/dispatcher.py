"""
Notification Dispatcher adapter

The marketplace enqueues notifications by writing them to the
"notifications" collection, where the delivery workers (in-app feed, web
push, email) pick them up. A notification id that already exists means
the same notification was enqueued before - that is success, not an error.
"""

from typing import Protocol

from urgentfix.kernel.errors import DuplicateRecordError
from urgentfix.kernel.logging import get_logger
from urgentfix.notifications.models import Notification
from urgentfix.store.base import RecordStore

logger = get_logger(__name__)

NOTIFICATIONS = "notifications"


class NotificationDispatcher(Protocol):
    """Accepts a notification descriptor and enqueues delivery"""

    def dispatch(self, notification: Notification) -> bool:
        """
        Returns:
            True if enqueued now, False if already enqueued earlier
        """
        ...


class RecordStoreNotificationDispatcher:
    """Dispatcher that enqueues into the record store's notifications collection"""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def dispatch(self, notification: Notification) -> bool:
        try:
            self.store.create(NOTIFICATIONS, notification.model_dump(mode="json", exclude={"created_at"}))
        except DuplicateRecordError:
            logger.debug("Notification already enqueued", notification_id=notification.id)
            return False
        logger.info(
            "Notification enqueued",
            notification_id=notification.id,
            type=notification.type.value,
            recipient_user_id=notification.recipient_user_id,
        )
        return True

    def list_for(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        where: dict = {"recipient_user_id": user_id}
        if unread_only:
            where["read"] = False
        return [Notification.model_validate(r) for r in self.store.find(NOTIFICATIONS, where)]
