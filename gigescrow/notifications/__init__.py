"""User notifications: records, delivery sinks and the notification service."""

from gigescrow.notifications.models import Notification, NotificationType
from gigescrow.notifications.service import NotificationService
from gigescrow.notifications.sinks import (
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
)

__all__ = [
    "LoggingNotificationSink",
    "Notification",
    "NotificationService",
    "NotificationSink",
    "NotificationType",
    "WebhookNotificationSink",
]
