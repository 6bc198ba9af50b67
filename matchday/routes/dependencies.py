"""
Shared FastAPI dependencies for the engine routes.
"""
from typing import Optional

from fastapi import Header, status

from matchday.database import get_session_factory
from matchday.errors import APIError, ErrorCode
from matchday.notifications.adapter import NotificationAdapter
from matchday.services.notification_service import NotificationService, get_notification_adapter


def get_participant_id(x_participant_id: Optional[str] = Header(None)) -> str:
    """Caller address supplied by the transport layer."""
    if not x_participant_id or not x_participant_id.strip():
        raise APIError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message="X-Participant-Id header is required",
            code=ErrorCode.PARTICIPANT_REQUIRED,
        )
    return x_participant_id.strip()


def get_adapter() -> NotificationAdapter:
    return get_notification_adapter()


def get_notification_service() -> NotificationService:
    """A fresh queue per request over the shared adapter."""
    return NotificationService(get_adapter())


__all__ = [
    "get_participant_id",
    "get_notification_service",
    "get_session_factory",
]
