"""
Notification delivery sinks.

A sink pushes an already-recorded notification out of the process. The
notification service never lets a sink failure reach business logic, so
sinks are free to raise.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from gigescrow.notifications.models import Notification

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_PUSH = "push"


class NotificationSink(Protocol):
    """Protocol for notification delivery backends."""

    async def deliver(
        self,
        notification: Notification,
        channel: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Deliver a notification over ``channel`` (email or push)."""
        ...


class LoggingNotificationSink:
    """Writes notifications to the log instead of sending them."""

    async def deliver(
        self,
        notification: Notification,
        channel: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.info(
            f"Notification delivered | channel={channel} | user={notification.user_id} | "
            f"type={notification.type} | subject={notification.subject} | "
            f"content={notification.content[:100]}"
        )


class WebhookNotificationSink:
    """POSTs notifications as JSON to a webhook (mail relay, push gateway)."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url:
            raise ValueError("Webhook sink requires a URL")
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def deliver(
        self,
        notification: Notification,
        channel: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        body = {"channel": channel, "notification": notification.to_dict()}
        if payload is not None:
            body["payload"] = payload
        response = await self._client.post(self.url, json=body)
        response.raise_for_status()
        logger.debug(f"Webhook accepted notification | id={notification.id} | status={response.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()
