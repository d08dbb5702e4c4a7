"""
Notifications - descriptors and dispatch for bid events

The core decides who is told what; the dispatcher enqueues delivery.
"""

from urgentfix.notifications.dispatcher import (
    NotificationDispatcher,
    RecordStoreNotificationDispatcher,
)
from urgentfix.notifications.models import (
    Channel,
    Notification,
    NotificationPriority,
    NotificationType,
)
from urgentfix.notifications.notifier import BidNotifier

__all__ = [
    "Channel",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "NotificationDispatcher",
    "RecordStoreNotificationDispatcher",
    "BidNotifier",
]
