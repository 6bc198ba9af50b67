"""
Logging Notification Adapter

Default adapter when no delivery endpoint is configured: messages go to
the application log.
"""
import logging

from .adapter import NotificationAdapter

logger = logging.getLogger(__name__)


class LoggingNotificationAdapter(NotificationAdapter):

    async def send(self, address: str, message: str) -> None:
        logger.info(f"[NOTIFY] to={address}: {message}")
