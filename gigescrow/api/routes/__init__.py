"""API routes."""

from .disputes import router as disputes_router
from .escrows import router as escrows_router
from .notifications import router as notifications_router

__all__ = ["disputes_router", "escrows_router", "notifications_router"]
