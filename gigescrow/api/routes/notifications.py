"""Notification routes: listing, read acknowledgement and test sends."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from pydantic import AliasChoices, BaseModel, Field

from ..deps import AppServices
from ..logging_config import get_logger
from ..rate_limit import READ_LIMIT, WRITE_LIMIT, limiter

logger = get_logger("gigescrow.api.notifications")
router = APIRouter(prefix="/notifications", tags=["notifications"])


class EmailRequest(BaseModel):
    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)


class PushRequest(BaseModel):
    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    payload: Dict[str, Any] = Field(default_factory=dict)


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: str
    read: bool
    content: str
    subject: Optional[str] = None
    created_at: datetime


@router.get("/user/{user_id}", response_model=list[NotificationResponse])
@limiter.limit(READ_LIMIT)
async def get_user_notifications(
    request: Request,
    user_id: str,
    services: AppServices,
    unread_only: bool = Query(False, description="Return only unread notifications"),
):
    """A user's notifications, newest first."""
    notifications = await services.notifications.get_user_notifications(user_id, unread_only)
    return [n.to_dict() for n in notifications]


@router.post("/{notification_id}/read")
@limiter.limit(WRITE_LIMIT)
async def mark_notification_read(request: Request, notification_id: str, services: AppServices):
    notification = await services.notifications.mark_as_read(notification_id)
    return {
        "success": True,
        "message": "Notification marked as read",
        "notification": NotificationResponse(**notification.to_dict()),
    }


@router.post("/user/{user_id}/read-all")
@limiter.limit(WRITE_LIMIT)
async def mark_all_notifications_read(request: Request, user_id: str, services: AppServices):
    count = await services.notifications.mark_all_as_read(user_id)
    logger.info(f"POST /notifications/user/{user_id}/read-all | count={count}")
    return {"success": True, "message": "All notifications marked as read", "count": count}


@router.post("/email")
@limiter.limit(WRITE_LIMIT)
async def send_email(request: Request, body: EmailRequest, services: AppServices):
    """Send an email notification (test/ops helper)."""
    logger.info(f"POST /notifications/email | user={body.user_id}")
    notification = await services.notifications.send_email(body.user_id, body.subject, body.message)
    return {
        "success": notification is not None,
        "message": "Email notification sent" if notification else "Email notification failed",
    }


@router.post("/push")
@limiter.limit(WRITE_LIMIT)
async def send_push(request: Request, body: PushRequest, services: AppServices):
    """Send a push notification (test/ops helper)."""
    logger.info(f"POST /notifications/push | user={body.user_id}")
    notification = await services.notifications.send_push(body.user_id, body.payload)
    return {
        "success": notification is not None,
        "message": "Push notification sent" if notification else "Push notification failed",
    }
