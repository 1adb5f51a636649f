"""Notification data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from gigescrow.utils import format_datetime, parse_datetime, utc_now


class NotificationType(str, Enum):
    """Lifecycle event a notification reports."""

    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_LOCKED = "ESCROW_LOCKED"
    ESCROW_DELIVERED = "ESCROW_DELIVERED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"


ESCROW_STATE_TYPES = {
    "CREATED": NotificationType.ESCROW_CREATED,
    "LOCKED": NotificationType.ESCROW_LOCKED,
    "DELIVERED": NotificationType.ESCROW_DELIVERED,
    "RELEASED": NotificationType.ESCROW_RELEASED,
    "REFUNDED": NotificationType.ESCROW_REFUNDED,
}

DISPUTE_STATUS_TYPES = {
    "OPEN": NotificationType.DISPUTE_OPENED,
    "RESOLVED": NotificationType.DISPUTE_RESOLVED,
}


@dataclass
class Notification:
    """An outbound message to a user. Only ``read`` ever changes."""

    id: str
    user_id: str
    type: str
    content: str
    read: bool = False
    subject: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if isinstance(self.type, NotificationType):
            self.type = self.type.value
        try:
            NotificationType(self.type)
        except ValueError:
            raise ValueError(f"Invalid notification type: {self.type}")
        self.created_at = parse_datetime(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "read": self.read,
            "content": self.content,
            "subject": self.subject,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            type=data["type"],
            content=data.get("content", ""),
            read=bool(data.get("read", False)),
            subject=data.get("subject"),
            created_at=data.get("created_at") or utc_now(),
        )
