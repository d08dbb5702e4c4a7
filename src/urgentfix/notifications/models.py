"""
Notification Models

The descriptor handed to the Notification Dispatcher. Delivery across
channels is the dispatcher's business; the core only decides who is told
what, and gives each notification a deterministic id so it is sent once.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    QUOTE_RECEIVED = "quote_received"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Channel(str, Enum):
    IN_APP = "in_app"
    WEB_PUSH = "web_push"
    EMAIL = "email"
    SMS = "sms"


class Notification(BaseModel):
    """Notification descriptor: who, what, how urgent, and where to go next"""

    id: str = Field(..., description="Deterministic id: '<type>:<bid id>'")
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    priority: NotificationPriority = NotificationPriority.NORMAL
    channels: list[Channel] = Field(default_factory=lambda: [Channel.IN_APP], min_length=1)
    recipient_user_id: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    action_url: str | None = None
    action_label: str | None = None
    read: bool = False
    created_at: datetime | None = None

    model_config = {"extra": "ignore"}

    @staticmethod
    def make_id(notification_type: NotificationType, bid_id: str) -> str:
        return f"{notification_type.value}:{bid_id}"
