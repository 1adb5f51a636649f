"""
Notification service.

Records notifications in the store and hands them to a delivery sink.
Notifying is best-effort: a failed write or delivery is logged and the
caller carries on, so escrow and dispute transitions never roll back
because a message could not be sent.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from gigescrow.errors import NotFoundError
from gigescrow.notifications.models import (
    DISPUTE_STATUS_TYPES,
    ESCROW_STATE_TYPES,
    Notification,
    NotificationType,
)
from gigescrow.notifications.sinks import (
    CHANNEL_EMAIL,
    CHANNEL_PUSH,
    LoggingNotificationSink,
    NotificationSink,
)
from gigescrow.storage.base import NOTIFICATIONS, RecordStore
from gigescrow.utils import generate_id

logger = logging.getLogger(__name__)


class NotificationService:
    """Creates, delivers and acknowledges user notifications.

    Args:
        store: Record store holding the ``notifications`` group
        sink: Delivery backend (defaults to logging only)
    """

    def __init__(self, store: RecordStore, sink: Optional[NotificationSink] = None):
        self.store = store
        self.sink = sink or LoggingNotificationSink()

    async def create_notification(
        self,
        user_id: str,
        type: Union[str, NotificationType],
        content: str,
        subject: Optional[str] = None,
    ) -> Optional[Notification]:
        """Persist a notification record. Returns None if the write failed."""
        try:
            notification = Notification(
                id=generate_id(),
                user_id=user_id,
                type=type,
                content=content,
                subject=subject,
            )
            self.store.insert(NOTIFICATIONS, notification.to_dict())
        except Exception as e:
            logger.error(f"Failed to record notification | user={user_id} | type={type} | {e}")
            return None
        return notification

    async def _deliver(
        self,
        notification: Notification,
        channel: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            await self.sink.deliver(notification, channel, payload)
        except Exception as e:
            logger.error(
                f"Notification delivery failed | id={notification.id} | channel={channel} | {e}"
            )
            return False
        return True

    async def send_email(
        self,
        user_id: str,
        subject: str,
        message: str,
        type: Union[str, NotificationType] = NotificationType.MESSAGE_RECEIVED,
    ) -> Optional[Notification]:
        """Record and email a notification."""
        notification = await self.create_notification(user_id, type, message, subject=subject)
        if notification is not None:
            await self._deliver(notification, CHANNEL_EMAIL)
        return notification

    async def send_push(self, user_id: str, payload: Dict[str, Any]) -> Optional[Notification]:
        """Record and push a notification built from an arbitrary payload."""
        content = payload.get("message") or payload.get("body")
        if not content:
            content = json.dumps(payload, default=str) if payload else "Push notification"
        type = payload.get("type")
        if type not in NotificationType.__members__:
            type = NotificationType.MESSAGE_RECEIVED
        notification = await self.create_notification(
            user_id, type, content, subject=payload.get("title")
        )
        if notification is not None:
            await self._deliver(notification, CHANNEL_PUSH, payload)
        return notification

    async def notify_escrow(
        self, user_id: str, escrow_id: str, state: str, message: str
    ) -> Optional[Notification]:
        """Notify a party that an escrow entered ``state``."""
        type = ESCROW_STATE_TYPES.get(str(state), NotificationType.MESSAGE_RECEIVED)
        logger.debug(f"Escrow notification | user={user_id} | escrow={escrow_id} | state={state}")
        return await self.send_email(user_id, f"Escrow {state}", message, type=type)

    async def notify_dispute(
        self, user_id: str, dispute_id: str, status: str, message: str
    ) -> Optional[Notification]:
        """Notify a participant that a dispute entered ``status``."""
        type = DISPUTE_STATUS_TYPES.get(str(status), NotificationType.DISPUTE_RESOLVED)
        logger.debug(f"Dispute notification | user={user_id} | dispute={dispute_id} | status={status}")
        return await self.send_email(user_id, f"Dispute {status}", message, type=type)

    async def get_user_notifications(
        self, user_id: str, unread_only: bool = False
    ) -> List[Notification]:
        """A user's notifications, newest first."""
        records = self.store.find(NOTIFICATIONS, user_id=user_id)
        # Newest insert first among equal timestamps
        notifications = [Notification.from_dict(r) for r in reversed(records)]
        if unread_only:
            notifications = [n for n in notifications if not n.read]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications

    async def mark_as_read(self, notification_id: str) -> Notification:
        """Acknowledge one notification.

        Raises:
            NotFoundError: If the notification does not exist
        """
        updated = self.store.update(NOTIFICATIONS, notification_id, {"read": True})
        if updated is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return Notification.from_dict(updated)

    async def mark_all_as_read(self, user_id: str) -> int:
        """Acknowledge every unread notification of a user. Returns the count."""
        count = 0
        for record in self.store.find(NOTIFICATIONS, user_id=user_id, read=False):
            if self.store.update(NOTIFICATIONS, record["id"], {"read": True}) is not None:
                count += 1
        return count
